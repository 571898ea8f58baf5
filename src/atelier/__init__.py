"""Atelier: resilient submission and download pipeline for generated artifacts."""

__version__ = "0.1.0"
