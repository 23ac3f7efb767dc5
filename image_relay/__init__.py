"""image-relay: copies newly produced images from Postgres notifications into storage."""

__version__ = "1.0.0"
