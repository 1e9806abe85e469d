"""Hotel card encoder control."""

__version__ = "0.1.0"
