"""
Per-message spans.

Every message gets exactly one span. The span carries the tags an operator
filters on (source system, source ID, kind, chosen operation, duration and
the error taxonomy tag) and is closed with a single ``message.end`` log
event that contains all of them.

Usage:
    with message_span("incident") as span:
        record = ...
        span.tag(source=record.source, source_id=record.source_id)
        span.operation = decision.action.value

    # Logs:
    # DEBUG message.start span_id=1f2e3d4c kind=incident
    # INFO  message.end   span_id=1f2e3d4c kind=incident source_id=INC0012345
    #                     operation=insert outcome=ok duration_ms=14.2

Design:
    - ``span_id`` and ``kind`` are bound into the structlog contextvars for
      the span's lifetime, so nested log lines are correlated for free
    - An exception escaping the block is tagged, logged and re-raised
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from pnp_ingest.core.errors import ErrorTag, error_tag
from pnp_ingest.core.logging import bind_context, get_logger, unbind_context

logger = get_logger(__name__)


def _span_id() -> str:
    return uuid.uuid4().hex[:8]


@dataclass
class MessageSpan:
    kind: str
    span_id: str = field(default_factory=_span_id)
    source: str | None = None
    source_id: str | None = None
    operation: str | None = None
    outcome: str | None = None
    error_tag: ErrorTag | None = None
    attempts: int = 0
    started_at: float = field(default_factory=time.perf_counter)
    ended_at: float | None = None

    def tag(self, **tags: Any) -> MessageSpan:
        for key, value in tags.items():
            if not hasattr(self, key):
                raise AttributeError(f"unknown span tag {key!r}")
            setattr(self, key, value)
        return self

    def record_error(self, error: BaseException) -> MessageSpan:
        self.error_tag = error_tag(error) or self.error_tag
        return self

    def stop(self) -> MessageSpan:
        self.ended_at = time.perf_counter()
        return self

    @property
    def duration_seconds(self) -> float:
        end = self.ended_at if self.ended_at is not None else time.perf_counter()
        return end - self.started_at

    @property
    def duration_ms(self) -> float:
        return self.duration_seconds * 1000

    def tags(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "span_id": self.span_id,
            "kind": self.kind,
            "duration_ms": round(self.duration_ms, 2),
        }
        for key in ("source", "source_id", "operation", "outcome"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.error_tag is not None:
            result["error_tag"] = self.error_tag.value
        if self.attempts:
            result["attempts"] = self.attempts
        return result


@contextmanager
def message_span(kind: str) -> Iterator[MessageSpan]:
    span = MessageSpan(kind=kind)
    bind_context(span_id=span.span_id, kind=kind)
    logger.debug("message.start")
    try:
        yield span
    except Exception as exc:
        span.stop()
        span.record_error(exc)
        span.outcome = span.outcome or "error"
        logger.error("message.error", error=str(exc), error_type=type(exc).__name__, **span.tags())
        raise
    finally:
        span.stop()
        unbind_context("span_id", "kind")
    logger.info("message.end", **span.tags())
