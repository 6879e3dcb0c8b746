"""API route modules."""
from __future__ import annotations

from cosmo.api.routes import cosmo, health

__all__ = ["cosmo", "health"]
