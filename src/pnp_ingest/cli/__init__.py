"""Command-line interface (``pnp-ingest``)."""

from pnp_ingest.cli.app import app

__all__ = ["app"]
