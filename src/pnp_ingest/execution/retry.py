"""Fixed-delay retry loop around one pipeline attempt.

Transient failures are retried forever with a constant delay; the bus owns
dead-lettering after excessive redelivery, so the controller never gives up
on its own. The sleep is an ``Event.wait`` so shutdown interrupts it.

Example:
    >>> from pnp_ingest.execution.retry import RetryController
    >>>
    >>> controller = RetryController(delay=5.0)
    >>> outcome = controller.run(lambda: processor.attempt("incident", body))
    >>> # Ok | PermanentErr, or Cancelled if controller.stop_event was set
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from pnp_ingest.core.logging import get_logger
from pnp_ingest.core.result import Cancelled, Ok, Outcome, PermanentErr, TransientErr, classify

logger = get_logger(__name__)

DEFAULT_RETRY_DELAY = 5.0


@dataclass
class RetryController:
    """Constant-delay, unbounded retry with cancellable sleeps.

    Attributes:
        delay: Seconds to wait after each transient failure
        stop_event: Set at shutdown; wakes any sleeping retry
        on_retry: Optional callback ``(attempt, error, delay)`` before each sleep
    """

    delay: float = DEFAULT_RETRY_DELAY
    stop_event: threading.Event = field(default_factory=threading.Event)
    on_retry: Callable[[int, BaseException, float], None] | None = None

    def cancel(self) -> None:
        """Interrupt every retry sleep, now and in future attempts."""
        self.stop_event.set()

    @property
    def cancelled(self) -> bool:
        return self.stop_event.is_set()

    def run(self, attempt: Callable[[], Outcome]) -> Ok | PermanentErr | Cancelled:
        """Call *attempt* until it returns a final outcome or shutdown begins.

        An exception escaping *attempt* is classified the same way a returned
        error would be.
        """
        attempts = 0
        while True:
            attempts += 1
            try:
                outcome = attempt()
            except Exception as exc:
                outcome = classify(exc)

            if not isinstance(outcome, TransientErr):
                return outcome

            logger.warning(
                "retry.scheduled",
                attempt=attempts,
                delay_seconds=self.delay,
                error=str(outcome.error),
                error_type=type(outcome.error).__name__,
            )
            if self.on_retry is not None:
                self.on_retry(attempts, outcome.error, self.delay)

            if self.stop_event.wait(self.delay):
                logger.info("retry.cancelled", attempts=attempts)
                return Cancelled(attempts=attempts, last_error=outcome.error)
