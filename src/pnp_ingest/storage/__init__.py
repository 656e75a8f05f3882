"""Relational store: SQLAlchemy tables, engine factory and the storage gateway."""

from pnp_ingest.storage.engine import check_connectivity, create_ingest_engine
from pnp_ingest.storage.gateway import BypassStorageGateway, SqlStorageGateway, StorageGateway
from pnp_ingest.storage.tables import IngestBase

__all__ = [
    "BypassStorageGateway",
    "IngestBase",
    "SqlStorageGateway",
    "StorageGateway",
    "check_connectivity",
    "create_ingest_engine",
]
