"""API routes."""

from vigil_core.api.routes import ops

__all__ = ["ops"]
