"""Command-line interface for fitbill."""
