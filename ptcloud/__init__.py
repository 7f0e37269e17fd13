"""Point cloud file formats, tiled point databases, typed point fields and logging helpers."""

__version__ = "0.1.0"