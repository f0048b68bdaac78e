"""Exposure Stats - per health authority, per hour publish statistics."""

__version__ = "0.1.0"
