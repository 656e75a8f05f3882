"""Notification intents for reconciled records.

A record transition that subscribers care about becomes a
:class:`~pnp_ingest.domain.models.NotificationIntent` on a bounded in-process
queue. A single daemon thread drains the queue into a sink; delivering the
notification itself happens downstream of the sink.

Rules:
    - ``Insert`` of a publishable record
    - ``Restore`` of a tombstoned record
    - ``Update`` that changes the short description, state or CRN set
    - never for ``Skip`` or ``Tombstone``
    - never for bulk refreshes

The queue is bounded; when it is full ``emit`` blocks the calling worker
until the drain thread catches up.
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable

from pnp_ingest.core.logging import get_logger
from pnp_ingest.domain.models import NotificationIntent, Record
from pnp_ingest.pipeline.reconciler import Action, Decision

logger = get_logger(__name__)

NOTIFY_FIELDS = ("short_description", "state", "crns")

NotificationSink = Callable[[NotificationIntent], None]

_STOP = object()


def changed_fields(record: Record, prior: Record | None) -> tuple[str, ...]:
    """Fields in :data:`NOTIFY_FIELDS` whose value differs from *prior*."""
    if prior is None:
        return NOTIFY_FIELDS
    changed = []
    for name in NOTIFY_FIELDS:
        new, old = getattr(record, name), getattr(prior, name)
        if name == "crns":
            if set(new or ()) != set(old or ()):
                changed.append(name)
        elif new != old:
            changed.append(name)
    return tuple(changed)


def should_notify(decision: Decision) -> bool:
    if decision.bulk:
        return False
    if decision.action is Action.INSERT:
        return decision.record.publishable
    if decision.action is Action.RESTORE:
        return True
    if decision.action is Action.UPDATE:
        return bool(changed_fields(decision.record, decision.prior))
    return False


def intent_for(decision: Decision) -> NotificationIntent | None:
    """Build the intent for *decision*, or ``None`` if nobody should hear about it."""
    if not should_notify(decision):
        return None
    record = decision.record
    return NotificationIntent(
        kind=record.kind,
        record_id=record.record_id,
        source_id=record.source_id,
        change=decision.action.value,
        changed_fields=changed_fields(record, decision.prior),
        crns=tuple(record.crns or ()),
    )


class LoggingSink:
    """Default sink: one structured log line per intent."""

    def __call__(self, intent: NotificationIntent) -> None:
        logger.info("notification.intent", **intent.to_dict())


class NotificationEmitter:
    """Bounded queue of intents drained by a background thread.

    Example:
        emitter = NotificationEmitter(LoggingSink(), maxsize=1000)
        emitter.notify(decision)
        ...
        emitter.close()
    """

    def __init__(self, sink: NotificationSink | None = None, *, maxsize: int = 1000):
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        self._sink = sink or LoggingSink()
        self._queue: queue.Queue[object] = queue.Queue(maxsize=maxsize)
        self._closed = False
        self._lock = threading.Lock()
        self.delivered = 0
        self.failed = 0
        self._thread = threading.Thread(target=self._drain, daemon=True, name="pnp-notifications")
        self._thread.start()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, intent: NotificationIntent) -> None:
        """Queue *intent*, blocking while the queue is full."""
        if self._closed:
            raise RuntimeError("notification emitter is closed")
        self._queue.put(intent)

    def notify(self, decision: Decision) -> NotificationIntent | None:
        """Emit the intent for *decision*, if any, and return it."""
        intent = intent_for(decision)
        if intent is not None:
            self.emit(intent)
        return intent

    def close(self, timeout: float | None = 5.0) -> None:
        """Deliver everything already queued, then stop the drain thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._queue.put(_STOP)
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning("notification.close_timeout", pending=self.pending)

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._sink(item)  # type: ignore[arg-type]
                self.delivered += 1
            except Exception:
                self.failed += 1
                logger.exception("notification.sink_failed")
            finally:
                self._queue.task_done()
