"""Port knocking daemon configuration core."""

__version__ = "0.1.0"
