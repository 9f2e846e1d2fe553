"""Opportunity ingestion and quality pipeline."""

__version__ = "0.1.0"
