"""
Reconciler: decide what a canonical event does to the stored record.

Manifesto:
    Delivery is at-least-once and unordered. The reconciler is what makes the
    store converge anyway: it keys every event by its deterministic record
    ID, refuses anything not strictly newer than what is stored, and folds
    partial events onto the prior record instead of overwriting it.

Architecture:
    ::

                              publishable ∧ newer
                ┌──────────────────────────────────────────┐
                ▼                                          │
          ┌──────────┐   publishable, new id       ┌─────────────┐
          │  absent  │ ───────────────────────────►│   present   │
          └──────────┘        (Insert)             └──────┬──────┘
                ▲                                         │ not publishable
                │ publishable again (Restore)             ▼ (Tombstone)
                └────────────────────────────────── ┌─────────────┐
                                                    │ tombstoned  │
                                                    └─────────────┘

    Decision rules, in order:

    1. read prior by record ID (errors are transient)
    2. prior exists and event is not strictly newer      -> Skip
    3. merge event onto prior, compute publishability
    4. not publishable: prior -> Tombstone, else          -> Skip
    5. prior tombstoned and publishable                   -> Restore
    6. no prior and publishable                           -> Insert
    7. otherwise                                          -> Update
    8. maintenance whose content hash equals the prior's  -> Skip
       (the stored update time still advances to the event's)

    The write itself is guarded (``source_update_time < new``); a write the
    store refuses because a newer event got there first becomes a Skip.

Guardrails:
    ❌ DON'T: Compare update times in Python and then write unconditionally
    ✅ DO: Let the gateway's conditional update have the final word

Tags:
    reconciliation, idempotency, state-machine, tombstone, pnp-ingest
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pnp_ingest.core.errors import StoreUnavailableError
from pnp_ingest.core.hashing import maintenance_record_hash
from pnp_ingest.core.logging import get_logger
from pnp_ingest.core.timestamps import compare_times
from pnp_ingest.domain.models import Incident, Maintenance, MaintenanceState, Record
from pnp_ingest.pipeline.normalizer import merge_incident, merge_maintenance
from pnp_ingest.storage.gateway import StorageGateway

logger = get_logger(__name__)

UNCHANGED = "unchanged"


class Action(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    SKIP = "skip"
    TOMBSTONE = "tombstone"
    RESTORE = "restore"


@dataclass(frozen=True)
class Decision:
    """Outcome of reconciling one event.

    ``record`` is what was written (or, for Skip, the event as merged so far);
    ``prior`` is the stored record before the write.
    """

    action: Action
    record: Record
    prior: Record | None = None
    reason: str = ""

    @property
    def bulk(self) -> bool:
        return self.record.bulk

    @property
    def wrote(self) -> bool:
        return self.action is not Action.SKIP


def _merge(event: Record, prior: Record | None) -> Record:
    if isinstance(event, Incident):
        return merge_incident(event, prior)  # type: ignore[arg-type]
    return merge_maintenance(event, prior)  # type: ignore[arg-type]


def decide(event: Record, prior: Record | None) -> Decision:
    """Pure decision for *event* given the stored *prior* record."""
    if prior is not None and compare_times(event.source_update_time, prior.source_update_time) <= 0:
        return Decision(Action.SKIP, event, prior, reason="stale")

    merged = _merge(event, prior)

    if not merged.publishable:
        if prior is None:
            return Decision(Action.SKIP, merged, None, reason="not publishable")
        action = Action.TOMBSTONE
        record = merged.evolve(pnp_removed=True)
    elif prior is None:
        if isinstance(merged, Maintenance) and merged.state == MaintenanceState.COMPLETE.value:
            return Decision(Action.SKIP, merged, None, reason="complete before first sighting")
        action = Action.INSERT
        record = merged.evolve(pnp_removed=False)
    elif prior.pnp_removed:
        action = Action.RESTORE
        record = merged.evolve(pnp_removed=False)
    else:
        action = Action.UPDATE
        record = merged.evolve(pnp_removed=False)

    if isinstance(record, Maintenance):
        record = record.evolve(record_hash=maintenance_record_hash(record))
        if prior is not None and prior.record_hash == record.record_hash:
            return Decision(Action.SKIP, record, prior, reason=UNCHANGED)

    return Decision(action, record, prior)


class Reconciler:
    """Applies :func:`decide` against a :class:`StorageGateway`."""

    def __init__(self, gateway: StorageGateway):
        self._gateway = gateway

    def reconcile(self, event: Record) -> Decision:
        """Decide and execute the action for *event*.

        Raises:
            StoreUnavailableError: read or write failed transiently.
            StoreValidationError: the store rejected the record.
        """
        return self._reconcile(event, retried=False)

    def _reconcile(self, event: Record, *, retried: bool) -> Decision:
        prior = self._gateway.read(event.kind, event.record_id)
        decision = decide(event, prior)

        if decision.action is Action.SKIP:
            logger.info("reconcile.skip", record_id=event.record_id, reason=decision.reason)
            if decision.reason == UNCHANGED and decision.record.source_update_time:
                # Same content, newer event: move the watermark so older events stay stale
                self._gateway.touch(event.kind, event.record_id, decision.record.source_update_time)
            return decision

        if decision.action is Action.INSERT:
            if self._gateway.insert(decision.record):
                return decision
            # Another worker inserted first; decide again against its row
            if retried:
                raise StoreUnavailableError(
                    "insert keeps colliding with an existing row",
                    context={"record_id": event.record_id},
                )
            logger.info("reconcile.insert_collision", record_id=event.record_id)
            return self._reconcile(event, retried=True)

        if not self._gateway.update(decision.record):
            logger.info("reconcile.superseded", record_id=event.record_id, action=decision.action.value)
            return Decision(Action.SKIP, decision.record, prior, reason="superseded")
        return decision
