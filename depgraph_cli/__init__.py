"""DepGraph CLI: file-level dependency graphs that stay correct as files change."""

__version__ = "0.3.0"
