"""Worker pool: N threads, one message at a time each.

Usage (programmatic)::

    from pnp_ingest.execution.worker import WorkerPool

    pool = WorkerPool(bus, processor, workers=4)
    pool.run()  # blocking -- runs until SIGINT/SIGTERM

Usage (CLI)::

    pnp-ingest run --workers 4

Shutdown sequence:
    1. stop receiving (every worker finishes its current message)
    2. wait up to ``shutdown_grace`` seconds for in-flight messages
    3. cancel retry sleeps; interrupted messages are requeued
    4. join the threads

Workers share nothing but the processor's collaborators (database pool,
catalog cache, notification queue), all of which are thread-safe.
"""

from __future__ import annotations

import signal
import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pnp_ingest.core.logging import get_logger
from pnp_ingest.core.result import Cancelled, Ok, PermanentErr
from pnp_ingest.execution.bus import Delivery, MessageSource
from pnp_ingest.execution.retry import RetryController

if TYPE_CHECKING:
    from pnp_ingest.pipeline.processor import MessageProcessor

logger = get_logger(__name__)

# Pause after a failed receive before polling the source again
RECEIVE_BACKOFF_SECONDS = 1.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class WorkerStats:
    """Aggregate statistics for the pool."""

    received: int = 0
    acked: int = 0
    rejected: int = 0
    requeued: int = 0
    crashed: int = 0
    receive_errors: int = 0
    in_flight: int = 0
    started_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "received": self.received,
            "acked": self.acked,
            "rejected": self.rejected,
            "requeued": self.requeued,
            "crashed": self.crashed,
            "receive_errors": self.receive_errors,
            "in_flight": self.in_flight,
            "uptime_seconds": round((_utcnow() - self.started_at).total_seconds(), 2),
        }


class WorkerPool:
    """Pulls deliveries from a :class:`MessageSource` and processes them."""

    def __init__(
        self,
        source: MessageSource,
        processor: MessageProcessor,
        *,
        workers: int = 4,
        retry_delay: float = 5.0,
        shutdown_grace: float = 5.0,
        dead_letter_permanent: bool = True,
        receive_timeout: float = 1.0,
        receive_backoff: float = RECEIVE_BACKOFF_SECONDS,
    ):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._source = source
        self._processor = processor
        self._workers = workers
        self._shutdown_grace = shutdown_grace
        self._dead_letter_permanent = dead_letter_permanent
        self._receive_timeout = receive_timeout
        self._receive_backoff = receive_backoff

        self._stopping = threading.Event()
        self._cancel = threading.Event()
        self._retry = RetryController(delay=retry_delay, stop_event=self._cancel)
        self._threads: list[threading.Thread] = []
        self._stats = WorkerStats()
        self._stats_lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    @property
    def stats(self) -> WorkerStats:
        return self._stats

    @property
    def is_running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        """Start the worker threads and return immediately."""
        if self._threads:
            raise RuntimeError("worker pool already started")
        logger.info("workers.starting", workers=self._workers)
        for index in range(self._workers):
            thread = threading.Thread(target=self._loop, name=f"pnp-worker-{index}", daemon=True)
            thread.start()
            self._threads.append(thread)

    def run(self) -> None:
        """Start the pool and block until a shutdown signal arrives."""
        self._install_signal_handlers()
        self.start()
        try:
            while not self._stopping.wait(0.5):
                pass
        finally:
            self.shutdown()

    def stop(self) -> None:
        """Stop receiving new messages."""
        self._stopping.set()

    def shutdown(self) -> None:
        """Stop, wait the grace period for in-flight work, then cancel retries."""
        self.stop()
        deadline = time.monotonic() + self._shutdown_grace
        for thread in self._threads:
            thread.join(timeout=max(0.0, deadline - time.monotonic()))

        if self.is_running:
            logger.warning("workers.grace_expired", in_flight=self._stats.in_flight)
        self._cancel.set()
        for thread in self._threads:
            thread.join()
        logger.info("workers.stopped", **self._stats.to_dict())

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            logger.debug("workers.signals_skipped", reason="not main thread")
            return
        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

    def _handle_signal(self, signum: int, frame: Any) -> None:
        logger.info("workers.signal", signal=signal.Signals(signum).name)
        self.stop()

    # ------------------------------------------------------------------ #
    # Worker loop
    # ------------------------------------------------------------------ #

    def _loop(self) -> None:
        while not self._stopping.is_set():
            try:
                delivery = self._source.receive(self._receive_timeout)
            except Exception:
                self._bump(receive_errors=1)
                logger.exception("workers.receive_failed")
                self._stopping.wait(self._receive_backoff)
                continue
            if delivery is None:
                continue
            self._bump(received=1, in_flight=1)
            try:
                self.handle(delivery)
            except Exception:
                self._bump(crashed=1)
                logger.exception("workers.delivery_crashed", kind=delivery.kind)
                if delivery.settled is None:
                    delivery.requeue()
                    self._bump(requeued=1)
            finally:
                self._bump(in_flight=-1)

    def handle(self, delivery: Delivery) -> None:
        """Process one delivery and settle it with the bus."""
        outcome = self._processor.process(delivery.kind, delivery.body, self._retry)
        if isinstance(outcome, Ok):
            delivery.ack()
            self._bump(acked=1)
        elif isinstance(outcome, PermanentErr):
            if self._dead_letter_permanent:
                delivery.reject()
                self._bump(rejected=1)
            else:
                delivery.ack()
                self._bump(acked=1)
        else:
            if isinstance(outcome, Cancelled):
                logger.info("workers.requeue_cancelled", kind=delivery.kind, attempts=outcome.attempts)
            delivery.requeue()
            self._bump(requeued=1)

    def _bump(self, **deltas: int) -> None:
        with self._stats_lock:
            for name, delta in deltas.items():
                setattr(self._stats, name, getattr(self._stats, name) + delta)
