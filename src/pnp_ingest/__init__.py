"""
pnp-ingest - queue-to-database materializer for incident and maintenance events.

Sub-packages:
- pnp_ingest.core: errors, outcomes, settings, logging, hashing, timestamps
- pnp_ingest.domain: records, CRNs and the external service catalog
- pnp_ingest.pipeline: decode, normalize, reconcile, notify
- pnp_ingest.storage: SQLAlchemy tables and the storage gateway
- pnp_ingest.execution: bus adapters, retry controller, worker pool
- pnp_ingest.observability: per-message spans and metrics
- pnp_ingest.api: health and metrics HTTP surface
- pnp_ingest.cli: the pnp-ingest command
"""

__version__ = "1.0.0"
