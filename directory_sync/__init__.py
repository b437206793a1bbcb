"""Directory synchronization and adaptive-schema persistence engine."""

__version__ = "0.1.0"
