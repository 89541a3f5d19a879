"""Pain-point discovery over ingested community text."""

__version__ = "0.1.0"
