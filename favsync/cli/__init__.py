"""Command-line interface for favsync."""
