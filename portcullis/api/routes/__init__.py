"""API route modules."""
from . import health, pipeline, syncs

__all__ = ["health", "pipeline", "syncs"]
