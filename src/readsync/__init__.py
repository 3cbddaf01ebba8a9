"""readsync - Bidirectional library and reading-progress synchronization."""

__version__ = "0.1.0"
