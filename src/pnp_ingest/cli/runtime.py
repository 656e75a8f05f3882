"""
Composition root: build the pipeline's collaborators from settings.

Nothing in the pipeline reaches for globals. The database engine, the
catalog cache and the notification queue are created here once per process
and passed down explicitly.

Architecture:
    ::

        IngestSettings
            │
            ▼
        build_services()
            ├── engine + SqlStorageGateway   (or BypassStorageGateway)
            ├── CachedCatalog(HttpCatalogLoader | StaticCatalogLoader)
            ├── EligibilityChecker -> Normalizer
            ├── MessageDecoder(keys)
            ├── Reconciler(gateway)
            ├── NotificationEmitter(sink, maxsize)
            └── MessageProcessor(..., IngestMetrics)
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.engine import Engine

from pnp_ingest.core.logging import get_logger
from pnp_ingest.core.settings import IngestSettings
from pnp_ingest.domain.catalog import CachedCatalog, HttpCatalogLoader, StaticCatalogLoader
from pnp_ingest.domain.crn import EligibilityChecker
from pnp_ingest.execution.retry import RetryController
from pnp_ingest.observability.metrics import IngestMetrics
from pnp_ingest.pipeline.decoder import MessageDecoder
from pnp_ingest.pipeline.normalizer import Normalizer
from pnp_ingest.pipeline.notifications import NotificationEmitter, NotificationSink
from pnp_ingest.pipeline.processor import MessageProcessor
from pnp_ingest.pipeline.reconciler import Reconciler
from pnp_ingest.storage.engine import create_ingest_engine
from pnp_ingest.storage.gateway import BypassStorageGateway, SqlStorageGateway, StorageGateway

logger = get_logger(__name__)


@dataclass
class Services:
    settings: IngestSettings
    engine: Engine | None
    gateway: StorageGateway
    catalog: CachedCatalog
    emitter: NotificationEmitter
    metrics: IngestMetrics
    processor: MessageProcessor

    def retry_controller(self) -> RetryController:
        return RetryController(delay=self.settings.retry_delay_seconds)

    def close(self) -> None:
        self.emitter.close()
        if self.engine is not None:
            self.engine.dispose()


def build_engine(settings: IngestSettings) -> Engine | None:
    """Engine for the configured store, or ``None`` in bypass mode."""
    if settings.bypass_local_storage:
        return None
    return create_ingest_engine(
        settings.database_url,
        timeout_seconds=settings.db_timeout_seconds,
        pool_size=settings.db_pool_size,
    )


def build_catalog(settings: IngestSettings) -> CachedCatalog:
    if settings.catalog_url:
        loader = HttpCatalogLoader(settings.catalog_url, timeout=settings.catalog_timeout_seconds)
    elif settings.catalog_file:
        loader = StaticCatalogLoader.from_json_file(settings.catalog_file)
    else:
        logger.warning("catalog.not_configured", hint="set PNP_CATALOG_URL or PNP_CATALOG_FILE")
        loader = StaticCatalogLoader([])
    return CachedCatalog(loader, ttl_seconds=settings.catalog_ttl_seconds)


def build_services(settings: IngestSettings, *, sink: NotificationSink | None = None) -> Services:
    """Wire every collaborator for one process."""
    keys = settings.key_material()
    if not keys:
        raise ValueError("no encryption keys configured (PNP_ENCRYPTION_KEYS)")

    engine = build_engine(settings)
    gateway: StorageGateway = SqlStorageGateway(engine) if engine is not None else BypassStorageGateway()
    if engine is None:
        logger.warning("storage.bypass_enabled")

    catalog = build_catalog(settings)
    normalizer = Normalizer(EligibilityChecker(catalog, heartbeat_service=settings.heartbeat_service))
    emitter = NotificationEmitter(sink, maxsize=settings.notification_queue_size)
    metrics = IngestMetrics()
    processor = MessageProcessor(
        MessageDecoder(keys),
        normalizer,
        Reconciler(gateway),
        emitter=emitter,
        metrics=metrics,
    )
    return Services(
        settings=settings,
        engine=engine,
        gateway=gateway,
        catalog=catalog,
        emitter=emitter,
        metrics=metrics,
        processor=processor,
    )
