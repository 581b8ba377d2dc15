"""Command-line entry points for converge."""
