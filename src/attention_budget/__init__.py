"""Attention budget: per-post content analysis, screening, and attention timing."""

__version__ = "0.1.0"
