"""HighLevel dashboard backend: OAuth brokering and incremental contact sync."""

__version__ = "0.1.0"
