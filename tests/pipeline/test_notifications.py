"""Tests for ``pnp_ingest.pipeline.notifications``: intent rules and the bounded emitter."""

from __future__ import annotations

import threading
import time

import pytest

from pnp_ingest.domain.models import EventKind, NotificationIntent
from pnp_ingest.pipeline.notifications import (
    NotificationEmitter,
    changed_fields,
    intent_for,
    should_notify,
)
from pnp_ingest.pipeline.reconciler import Action, Decision

OTHER_CRN = "crn:v1:bluemix:public:containers-kubernetes:eu-de::::"


def _intent(source_id: str = "INC1") -> NotificationIntent:
    return NotificationIntent(kind=EventKind.INCIDENT, record_id=f"id-{source_id}", source_id=source_id, change="insert")


class TestChangedFields:
    def test_no_prior_reports_everything(self, make_incident):
        assert changed_fields(make_incident(), None) == ("short_description", "state", "crns")

    def test_only_watched_fields(self, make_incident):
        prior = make_incident()
        record = make_incident(state="resolved", long_description="more text", severity="2")
        assert changed_fields(record, prior) == ("state",)

    def test_crn_order_ignored(self, make_incident):
        cos = make_incident().crns[0]
        prior = make_incident(crns=(cos, OTHER_CRN))
        assert changed_fields(make_incident(crns=(OTHER_CRN, cos)), prior) == ()


class TestShouldNotify:
    def test_insert_publishable(self, make_incident):
        assert should_notify(Decision(Action.INSERT, make_incident()))

    def test_restore(self, make_incident):
        assert should_notify(Decision(Action.RESTORE, make_incident(), make_incident(pnp_removed=True)))

    def test_update_with_visible_change(self, make_incident):
        assert should_notify(Decision(Action.UPDATE, make_incident(state="resolved"), make_incident()))

    def test_update_without_visible_change(self, make_incident):
        decision = Decision(Action.UPDATE, make_incident(long_description="details"), make_incident())
        assert not should_notify(decision)

    @pytest.mark.parametrize("action", [Action.SKIP, Action.TOMBSTONE])
    def test_never_on_skip_or_tombstone(self, make_incident, action):
        assert not should_notify(Decision(action, make_incident(state="resolved"), make_incident()))

    def test_bulk_suppressed(self, make_incident):
        assert not should_notify(Decision(Action.INSERT, make_incident(bulk=True)))

    def test_intent_for(self, make_incident):
        prior = make_incident()
        record = make_incident(state="resolved")
        intent = intent_for(Decision(Action.UPDATE, record, prior))
        assert intent == NotificationIntent(
            kind=EventKind.INCIDENT,
            record_id=record.record_id,
            source_id=record.source_id,
            change="update",
            changed_fields=("state",),
            crns=record.crns,
        )
        assert intent.to_dict()["kind"] == "incident"

    def test_intent_for_skip(self, make_incident):
        assert intent_for(Decision(Action.SKIP, make_incident())) is None


class TestNotificationEmitter:
    def test_delivers_in_order(self):
        received: list[NotificationIntent] = []
        emitter = NotificationEmitter(received.append)
        for source_id in ("INC1", "INC2", "INC3"):
            emitter.emit(_intent(source_id))
        emitter.close()
        assert [intent.source_id for intent in received] == ["INC1", "INC2", "INC3"]
        assert emitter.delivered == 3
        assert emitter.closed

    def test_notify_filters(self, make_incident):
        received: list[NotificationIntent] = []
        emitter = NotificationEmitter(received.append)
        assert emitter.notify(Decision(Action.SKIP, make_incident())) is None
        intent = emitter.notify(Decision(Action.INSERT, make_incident()))
        emitter.close()
        assert received == [intent]

    def test_emit_after_close(self):
        emitter = NotificationEmitter(lambda intent: None)
        emitter.close()
        with pytest.raises(RuntimeError):
            emitter.emit(_intent())

    def test_sink_failure_does_not_stop_draining(self):
        received: list[str] = []

        def flaky(intent: NotificationIntent) -> None:
            if intent.source_id == "INC1":
                raise ConnectionError("sink down")
            received.append(intent.source_id)

        emitter = NotificationEmitter(flaky)
        emitter.emit(_intent("INC1"))
        emitter.emit(_intent("INC2"))
        emitter.close()
        assert received == ["INC2"]
        assert emitter.failed == 1
        assert emitter.delivered == 1

    def test_full_queue_blocks_producer(self):
        """Backpressure: emit waits while the queue is full."""
        entered = threading.Event()
        release = threading.Event()
        received: list[str] = []

        def slow(intent: NotificationIntent) -> None:
            entered.set()
            release.wait(5)
            received.append(intent.source_id)

        emitter = NotificationEmitter(slow, maxsize=1)
        emitter.emit(_intent("INC1"))
        assert entered.wait(5)
        emitter.emit(_intent("INC2"))

        producer = threading.Thread(target=emitter.emit, args=(_intent("INC3"),))
        producer.start()
        time.sleep(0.1)
        assert producer.is_alive()

        release.set()
        producer.join(5)
        assert not producer.is_alive()
        emitter.close()
        assert received == ["INC1", "INC2", "INC3"]

    def test_rejects_bad_maxsize(self):
        with pytest.raises(ValueError):
            NotificationEmitter(maxsize=0)
