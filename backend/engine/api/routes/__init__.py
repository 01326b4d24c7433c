"""API routes."""

from engine.api.routes import exposures, removals, scans

__all__ = ["exposures", "removals", "scans"]
