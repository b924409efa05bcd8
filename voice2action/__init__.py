"""Voice2Action - voice command understanding pipeline."""

__version__ = "0.1.0"
