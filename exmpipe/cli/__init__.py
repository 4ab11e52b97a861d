"""Command-line interface for exmpipe."""
