"""Ingestion and consistency engine for a scholarly-paper knowledge graph."""

__version__ = "0.1.0"
