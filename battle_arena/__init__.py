"""Psychology-driven team arena battle engine."""

__version__ = "0.1.0"
