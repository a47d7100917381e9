"""Repository indexing pipeline: scan, parse, embed and store code blocks."""

__version__ = "0.3.0"
