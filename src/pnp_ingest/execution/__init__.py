"""Execution: retry loop, message bus adapters and the worker pool."""

from pnp_ingest.execution.bus import Delivery, InMemoryBus, MessageSource, RedisListBus
from pnp_ingest.execution.retry import RetryController
from pnp_ingest.execution.worker import WorkerPool, WorkerStats

__all__ = [
    "Delivery",
    "InMemoryBus",
    "MessageSource",
    "RedisListBus",
    "RetryController",
    "WorkerPool",
    "WorkerStats",
]
