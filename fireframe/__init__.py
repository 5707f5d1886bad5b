"""FireFrame photo-sharing service."""

__version__ = "0.1.0"
