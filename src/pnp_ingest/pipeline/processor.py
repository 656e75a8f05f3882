"""
One message through the pipeline.

Architecture:
    ::

        process(kind, body)
          └── message_span(kind)
                └── RetryController.run(attempt)
                      └── attempt(kind, body) -> Outcome
                            decode ──► normalize ──► reconcile ──► notify
                            (each record of a bulk envelope in turn)

    ``attempt`` never raises: every error is classified into
    ``TransientErr`` or ``PermanentErr`` at this boundary. Reconciliation is
    idempotent, so re-running a whole attempt after a transient failure only
    repeats work that had not been committed yet.

Tags:
    pipeline, processor, retry, pnp-ingest
"""

from __future__ import annotations

from typing import Any

from pnp_ingest.core.errors import PnpError, error_tag
from pnp_ingest.core.logging import LogContext, get_logger, redact_attributes
from pnp_ingest.core.result import Cancelled, Ok, Outcome, PermanentErr, TransientErr, classify
from pnp_ingest.domain.models import EventKind
from pnp_ingest.execution.retry import RetryController
from pnp_ingest.observability.metrics import IngestMetrics
from pnp_ingest.observability.span import MessageSpan, message_span
from pnp_ingest.pipeline.decoder import MessageDecoder
from pnp_ingest.pipeline.normalizer import Normalizer
from pnp_ingest.pipeline.notifications import NotificationEmitter
from pnp_ingest.pipeline.reconciler import Decision, Reconciler

logger = get_logger(__name__)

BULK_OPERATION = "bulk"


class MessageProcessor:
    """Wires decoder, normalizer, reconciler and emitter for one message."""

    def __init__(
        self,
        decoder: MessageDecoder,
        normalizer: Normalizer,
        reconciler: Reconciler,
        emitter: NotificationEmitter | None = None,
        metrics: IngestMetrics | None = None,
    ):
        self._decoder = decoder
        self._normalizer = normalizer
        self._reconciler = reconciler
        self._emitter = emitter
        self.metrics = metrics or IngestMetrics()

    def attempt(self, kind: EventKind | str, body: bytes, span: MessageSpan | None = None) -> Outcome:
        """Run decode, normalize, reconcile and notify once.

        Returns ``Ok(list[Decision])`` on success.
        """
        kind = EventKind(kind)
        attrs: dict[str, Any] | None = None
        try:
            attrs = self._decoder.decode(body)
            records = self._normalizer.normalize(kind, attrs)
            if span is not None and records:
                span.tag(source=records[0].source, source_id=records[0].source_id)

            decisions: list[Decision] = []
            for record in records:
                with LogContext(source_id=record.source_id, record_id=record.record_id):
                    decision = self._reconciler.reconcile(record)
                    if self._emitter is not None:
                        self._emitter.notify(decision)
                decisions.append(decision)
        except Exception as exc:
            outcome = classify(exc)
            self._log_failure(outcome, exc, attrs)
            return outcome
        return Ok(decisions)

    def process(
        self,
        kind: EventKind | str,
        body: bytes,
        retry: RetryController | None = None,
    ) -> Ok | TransientErr | PermanentErr | Cancelled:
        """Process one message to a final outcome, retrying transient failures.

        Without a *retry* controller a single attempt is made and a
        ``TransientErr`` may be returned.
        """
        kind = EventKind(kind).value
        with message_span(kind) as span:

            def run() -> Outcome:
                span.attempts += 1
                outcome = self.attempt(kind, body, span)
                if isinstance(outcome, (TransientErr, PermanentErr)):
                    span.record_error(outcome.error)
                    tag = error_tag(outcome.error)
                    self.metrics.errors.labels(kind=kind, tag=tag.value if tag else "Unclassified").inc()
                    if isinstance(outcome, TransientErr):
                        self.metrics.retries.labels(kind=kind).inc()
                return outcome

            outcome = retry.run(run) if retry is not None else run()
            span.operation = _operation(outcome)
            span.outcome = _outcome_name(outcome)

        self.metrics.messages.labels(kind=kind, operation=span.operation).inc()
        self.metrics.duration.labels(kind=kind).observe(span.duration_seconds)
        return outcome

    def _log_failure(self, outcome: TransientErr | PermanentErr, exc: Exception, attrs: dict[str, Any] | None) -> None:
        details = exc.to_dict() if isinstance(exc, PnpError) else {"error_type": type(exc).__name__, "message": str(exc)}
        if isinstance(outcome, TransientErr):
            logger.warning("message.transient_failure", **details)
            return
        if attrs is not None:
            details["attributes"] = redact_attributes(attrs)
        logger.error("message.permanent_failure", permanent_kind=outcome.kind.value, **details)


def _operation(outcome: Any) -> str:
    if isinstance(outcome, Ok):
        decisions = outcome.value
        if len(decisions) == 1:
            return decisions[0].action.value
        return BULK_OPERATION
    if isinstance(outcome, PermanentErr):
        return "drop"
    if isinstance(outcome, Cancelled):
        return "cancelled"
    return "retry"


def _outcome_name(outcome: Any) -> str:
    if isinstance(outcome, Ok):
        return "ok"
    if isinstance(outcome, PermanentErr):
        return outcome.kind.value
    if isinstance(outcome, Cancelled):
        return "cancelled"
    return "transient"
