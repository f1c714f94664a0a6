"""Local quiz storage and auto-save engine."""

__version__ = "1.0.0"
