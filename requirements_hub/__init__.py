"""Extraction, category normalization and AI grouping of procurement requirements."""

__version__ = "0.1.0"
