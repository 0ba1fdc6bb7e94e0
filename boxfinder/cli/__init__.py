"""Command-line interface for boxfinder."""
