"""image-mirror - keep a fast local copy of a slow photo repository."""

__version__ = "0.1.0"
