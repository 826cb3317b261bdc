"""Command line interface for image-mirror."""
