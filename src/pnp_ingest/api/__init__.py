"""Health and metrics HTTP surface (FastAPI)."""

from pnp_ingest.api.app import create_app

__all__ = ["create_app"]
