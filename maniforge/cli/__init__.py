"""Command-line entry points for maniforge."""
