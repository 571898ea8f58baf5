"""Command-line interface for the generation pipeline."""
