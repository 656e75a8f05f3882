"""
Message bus adapters.

Manifesto:
    The pipeline assumes at-least-once delivery: a message stays owned by the
    bus until the worker acknowledges it. Adapters only have to provide
    ``receive`` and the three ways a delivery can end.

Architecture:
    ::

        MessageSource.receive(timeout) -> Delivery | None
                                            │
                      ┌─────────────────────┼──────────────────────┐
                      ▼                     ▼                      ▼
                 ack()               reject()               requeue()
              (done, drop)     (dead-letter, drop)    (back to the front)

        InMemoryBus      thread-safe queue, records outcomes (tests, local)
        RedisListBus     one Redis list per kind:
                           {prefix}:{kind}             inbound
                           {prefix}:{kind}:processing  in flight (LMOVE)
                           {prefix}:{kind}:dead        rejected

    With Redis, a worker that dies mid-message leaves the body on the
    processing list; ``recover()`` moves such bodies back to inbound at
    startup.

Tags:
    bus, redis, at-least-once, dead-letter, pnp-ingest
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from pnp_ingest.core.logging import get_logger
from pnp_ingest.domain.models import EventKind

logger = get_logger(__name__)

DEFAULT_KINDS = (EventKind.INCIDENT.value, EventKind.MAINTENANCE.value)


@dataclass
class Delivery:
    """One message handed to a worker, settled exactly once."""

    kind: str
    body: bytes
    _settle: Callable[[str], None] = field(repr=False, default=lambda outcome: None)
    settled: str | None = field(default=None, init=False)

    def _finish(self, outcome: str) -> None:
        if self.settled is not None:
            raise RuntimeError(f"delivery already settled ({self.settled})")
        self.settled = outcome
        self._settle(outcome)

    def ack(self) -> None:
        self._finish("ack")

    def reject(self) -> None:
        """Dead-letter: the message will never succeed."""
        self._finish("reject")

    def requeue(self) -> None:
        """Hand the message back for another worker (or another run)."""
        self._finish("requeue")


class MessageSource(Protocol):
    def receive(self, timeout: float) -> Delivery | None: ...


class InMemoryBus:
    """Process-local bus.

    Example:
        bus = InMemoryBus()
        bus.publish("incident", token)
        delivery = bus.receive(timeout=1.0)
        delivery.ack()
        assert bus.acked == [("incident", token)]

    ``acked``, ``rejected`` and ``requeued`` record every settled delivery
    and grow without bound unless ``max_history`` is set, in which case only
    the newest ``max_history`` entries of each are kept.
    """

    def __init__(self, *, max_history: int | None = None) -> None:
        if max_history is not None and max_history < 0:
            raise ValueError("max_history must be >= 0")
        self._max_history = max_history
        self._queue: queue.Queue[tuple[str, bytes]] = queue.Queue()
        self._lock = threading.Lock()
        self.acked: list[tuple[str, bytes]] = []
        self.rejected: list[tuple[str, bytes]] = []
        self.requeued: list[tuple[str, bytes]] = []

    def publish(self, kind: EventKind | str, body: bytes) -> None:
        self._queue.put((EventKind(kind).value, body))

    def receive(self, timeout: float) -> Delivery | None:
        try:
            kind, body = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

        def settle(outcome: str) -> None:
            with self._lock:
                if outcome == "ack":
                    self.acked.append((kind, body))
                elif outcome == "reject":
                    self.rejected.append((kind, body))
                else:
                    self.requeued.append((kind, body))
                self._trim()
            if outcome == "requeue":
                self._queue.put((kind, body))

        return Delivery(kind, body, settle)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _trim(self) -> None:
        if self._max_history is None:
            return
        for history in (self.acked, self.rejected, self.requeued):
            del history[: max(0, len(history) - self._max_history)]


class RedisListBus:
    """Reliable-queue pattern over Redis lists."""

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        prefix: str = "pnp",
        kinds: Iterable[str] = DEFAULT_KINDS,
        client: Any = None,
    ):
        if client is None:
            import redis

            client = redis.Redis.from_url(url, decode_responses=False)
        self._client = client
        self._prefix = prefix
        self._kinds = [EventKind(kind).value for kind in kinds]
        self._next = 0
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Keys
    # ------------------------------------------------------------------ #

    def inbound_key(self, kind: str) -> str:
        return f"{self._prefix}:{kind}"

    def processing_key(self, kind: str) -> str:
        return f"{self._prefix}:{kind}:processing"

    def dead_key(self, kind: str) -> str:
        return f"{self._prefix}:{kind}:dead"

    # ------------------------------------------------------------------ #
    # MessageSource
    # ------------------------------------------------------------------ #

    def publish(self, kind: EventKind | str, body: bytes) -> None:
        self._client.rpush(self.inbound_key(EventKind(kind).value), body)

    def receive(self, timeout: float) -> Delivery | None:
        """Take the next message from any kind, waiting up to *timeout* seconds.

        Kinds are polled round-robin so a backlog of one kind cannot starve
        the other.
        """
        order = self._rotation()
        for kind in order:
            body = self._client.lmove(self.inbound_key(kind), self.processing_key(kind), "LEFT", "RIGHT")
            if body is not None:
                return self._delivery(kind, body)

        # Nothing ready: block on the first kind in rotation
        kind = order[0]
        body = self._client.blmove(
            self.inbound_key(kind), self.processing_key(kind), max(timeout, 0.01), "LEFT", "RIGHT"
        )
        if body is None:
            return None
        return self._delivery(kind, body)

    def recover(self) -> int:
        """Move orphaned in-flight bodies back to their inbound lists."""
        moved = 0
        for kind in self._kinds:
            while self._client.lmove(self.processing_key(kind), self.inbound_key(kind), "RIGHT", "LEFT") is not None:
                moved += 1
        if moved:
            logger.warning("bus.recovered_in_flight", count=moved)
        return moved

    def _rotation(self) -> list[str]:
        with self._lock:
            start = self._next
            self._next = (self._next + 1) % len(self._kinds)
        return self._kinds[start:] + self._kinds[:start]

    def _delivery(self, kind: str, body: bytes) -> Delivery:
        def settle(outcome: str) -> None:
            with self._client.pipeline() as pipe:
                pipe.lrem(self.processing_key(kind), 1, body)
                if outcome == "reject":
                    pipe.rpush(self.dead_key(kind), body)
                elif outcome == "requeue":
                    pipe.lpush(self.inbound_key(kind), body)
                pipe.execute()

        return Delivery(kind, body, settle)
