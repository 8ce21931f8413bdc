"""Command-line tools for PostForge."""
