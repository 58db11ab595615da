"""Command-line interface for ShakBot."""
