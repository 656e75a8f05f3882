"""Message pipeline: decode, normalize, reconcile, notify.

Architecture::

    decoder.py         MessageDecoder (Fernet + JSON)
    normalizer.py      Normalizer, long-description build/split/merge
    reconciler.py      Reconciler, Decision, Action
    notifications.py   should_notify, NotificationEmitter, LoggingSink
    processor.py       MessageProcessor (one attempt, span, retry)
"""

from pnp_ingest.pipeline.decoder import MessageDecoder
from pnp_ingest.pipeline.normalizer import (
    Normalizer,
    build_long_description,
    merge_long_description,
    split_long_description,
)
from pnp_ingest.pipeline.notifications import LoggingSink, NotificationEmitter, should_notify
from pnp_ingest.pipeline.processor import MessageProcessor
from pnp_ingest.pipeline.reconciler import Action, Decision, Reconciler, decide

__all__ = [
    "Action",
    "Decision",
    "LoggingSink",
    "MessageDecoder",
    "MessageProcessor",
    "Normalizer",
    "NotificationEmitter",
    "Reconciler",
    "build_long_description",
    "decide",
    "merge_long_description",
    "should_notify",
    "split_long_description",
]
