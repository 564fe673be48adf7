"""Command line interface for chtop."""
