"""Weenect GPS tracker position sync."""

__version__ = "0.1.0"
