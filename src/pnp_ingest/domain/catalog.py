"""
External service catalog client with a time-based snapshot cache.

The catalog answers three questions about a service name: does it have a
status-page parent, is it PnP-enabled, and is it a GaaS program. Every CRN of
every event triggers these lookups, so the client keeps a full snapshot of the
catalog in memory and refreshes it about once an hour.

Manifesto:
    - **Stale beats blocked:** A failed refresh keeps serving the last snapshot
    - **One refresher:** Concurrent workers never stampede the upstream
    - **Loader-agnostic:** HTTP in production, static entries in tests

Architecture:
    ::

        worker threads ──► CachedCatalog.status_page_parent / is_pnp_enabled / is_gaas
                                 │
                                 ▼
                         _snapshot()  (TTL check)
                          │        │
               fresh ◄────┘        └──► refresh (single thread, non-blocking
                                        for readers that already hold a snapshot)
                                              │
                                              ▼
                                    loader() -> Iterable[CatalogEntry]
                                    HttpCatalogLoader | StaticCatalogLoader

Guardrails:
    ❌ DON'T: Call the upstream per CRN
    ✅ DO: Share one CachedCatalog across all workers

Tags:
    catalog, cache, ttl, httpx, concurrency, pnp-ingest
"""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import httpx

from pnp_ingest.core.errors import CatalogUnavailableError
from pnp_ingest.core.logging import get_logger

logger = get_logger(__name__)

GAAS_ENTRY_TYPE = "GAAS"


class CatalogClient(Protocol):
    """Lookups the pipeline needs from the service catalog."""

    def status_page_parent(self, service: str) -> str | None: ...

    def is_pnp_enabled(self, service: str) -> bool: ...

    def is_gaas(self, service: str) -> bool: ...


@dataclass(frozen=True)
class CatalogEntry:
    name: str
    parent: str | None = None
    pnp_enabled: bool = False
    entry_type: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CatalogEntry:
        return cls(
            name=str(data["name"]).lower(),
            parent=(str(data["status_page_parent"]).lower() if data.get("status_page_parent") else None),
            pnp_enabled=bool(data.get("pnp_enabled", False)),
            entry_type=str(data.get("entry_type", "")).upper(),
        )


CatalogLoader = Callable[[], Iterable[CatalogEntry]]


def _entries_from_payload(payload: Any) -> list[CatalogEntry]:
    # Either a bare list or {"resources": [...]}
    if isinstance(payload, dict):
        payload = payload.get("resources", [])
    return [CatalogEntry.from_dict(item) for item in payload if isinstance(item, dict) and item.get("name")]


class StaticCatalogLoader:
    """Serves a fixed list of entries."""

    def __init__(self, entries: Iterable[CatalogEntry]):
        self._entries = list(entries)

    @classmethod
    def from_json_file(cls, path: str | Path) -> StaticCatalogLoader:
        """Load entries from a JSON file in the same shape the HTTP endpoint serves."""
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls(_entries_from_payload(payload))

    def __call__(self) -> list[CatalogEntry]:
        return list(self._entries)


class HttpCatalogLoader:
    """Fetches the catalog as a JSON list of entries over HTTP."""

    def __init__(self, url: str, *, timeout: float = 10.0, client: httpx.Client | None = None):
        self._url = url
        self._timeout = timeout
        self._client = client

    def __call__(self) -> list[CatalogEntry]:
        try:
            if self._client is not None:
                response = self._client.get(self._url, timeout=self._timeout)
            else:
                response = httpx.get(self._url, timeout=self._timeout)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise CatalogUnavailableError(f"catalog fetch failed: {exc}", cause=exc) from exc

        return _entries_from_payload(payload)


class CachedCatalog:
    """Concurrency-safe catalog snapshot refreshed every ``ttl_seconds``.

    Example:
        catalog = CachedCatalog(HttpCatalogLoader(url), ttl_seconds=3600)
        catalog.is_pnp_enabled("cloud-object-storage")
    """

    def __init__(
        self,
        loader: CatalogLoader,
        *,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CatalogEntry] | None = None
        self._loaded_at = 0.0
        self._refresh_lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #

    def status_page_parent(self, service: str) -> str | None:
        entry = self._snapshot().get(service.lower())
        return entry.parent if entry else None

    def is_pnp_enabled(self, service: str) -> bool:
        entry = self._snapshot().get(service.lower())
        return bool(entry and entry.pnp_enabled)

    def is_gaas(self, service: str) -> bool:
        entry = self._snapshot().get(service.lower())
        return bool(entry and entry.entry_type == GAAS_ENTRY_TYPE)

    # ------------------------------------------------------------------ #
    # Cache management
    # ------------------------------------------------------------------ #

    @property
    def is_stale(self) -> bool:
        return self._entries is None or self._clock() - self._loaded_at >= self._ttl

    def invalidate(self) -> None:
        """Force a refresh on the next lookup, keeping the current snapshot as fallback."""
        self._loaded_at = float("-inf")

    def _snapshot(self) -> dict[str, CatalogEntry]:
        entries = self._entries
        if entries is not None and not self.is_stale:
            return entries

        if entries is None:
            # Cold cache: every caller has to wait for the first load
            with self._refresh_lock:
                if self._entries is None:
                    self._refresh()
                assert self._entries is not None
                return self._entries

        if not self._refresh_lock.acquire(blocking=False):
            return entries
        try:
            if self.is_stale:
                try:
                    self._refresh()
                except CatalogUnavailableError as exc:
                    # Retry after another full TTL rather than on every lookup
                    self._loaded_at = self._clock()
                    logger.warning("catalog.refresh_failed", error=str(exc), serving="stale")
        finally:
            self._refresh_lock.release()
        return self._entries or entries

    def _refresh(self) -> None:
        try:
            loaded = list(self._loader())
        except CatalogUnavailableError:
            raise
        except Exception as exc:
            raise CatalogUnavailableError(f"catalog load failed: {exc}", cause=exc) from exc

        self._entries = {entry.name: entry for entry in loaded}
        self._loaded_at = self._clock()
        logger.info("catalog.refreshed", entries=len(self._entries))
