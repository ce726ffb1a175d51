"""GPS run validation and tile-based territory conquest."""

__version__ = "0.1.0"
