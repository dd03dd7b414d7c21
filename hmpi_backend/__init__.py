"""Heavy Metal Pollution Index (HMPI) calculation backend."""

__version__ = "1.0.0"
