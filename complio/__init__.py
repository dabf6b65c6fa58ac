"""compl.io compliance API."""

__version__ = "1.0.0"
