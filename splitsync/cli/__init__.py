"""Command-line interface for splitsync."""
