"""Multi-user file and exec server."""

__version__ = "1.0.0"
