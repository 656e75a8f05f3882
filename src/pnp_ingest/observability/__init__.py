"""Per-message spans and in-process metrics.

Architecture::

    span.py       message_span() / MessageSpan -- tags + start/end log events
    metrics.py    MetricsRegistry, Counter, Histogram, IngestMetrics
"""

from pnp_ingest.observability.metrics import Counter, Histogram, IngestMetrics, MetricsRegistry
from pnp_ingest.observability.span import MessageSpan, message_span

__all__ = [
    "Counter",
    "Histogram",
    "IngestMetrics",
    "MessageSpan",
    "MetricsRegistry",
    "message_span",
]
