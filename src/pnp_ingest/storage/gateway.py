"""
Storage gateway: typed reads and guarded writes over the ingest tables.

Manifesto:
    The reconciler decides; the gateway enforces. Every write is validated
    against the closed set of store rules before it reaches SQL, and every
    update carries its own freshness guard so two workers racing on the same
    record cannot regress it.

Architecture:
    ::

        Reconciler
            │ read(kind, record_id) / insert(record) / update(record) / touch(...)
            ▼
        StorageGateway (protocol)
            ├── SqlStorageGateway     SQLAlchemy, one transaction per call
            │       ├── validate_record()        -> StoreValidationError
            │       ├── incident_table / maintenance_table
            │       └── *_junction_table  (joined on resource_table by
            │                              service name + location)
            └── BypassStorageGateway  no database (local development)

    SQLAlchemy connectivity, lock and deadline failures surface as
    ``StoreUnavailableError`` (transient). A duplicate-key insert is not an
    error: ``insert`` returns ``False`` and the caller re-reads.

Guardrails:
    ❌ DON'T: ``UPDATE ... WHERE record_id = :id`` without the time guard
    ✅ DO: ``WHERE record_id = :id AND source_update_time < :new``

Tags:
    storage, sqlalchemy, gateway, validation, pnp-ingest
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import fields
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import delete, or_, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from pnp_ingest.core import hashing
from pnp_ingest.core.errors import StoreUnavailableError, StoreValidationError, ValidationCode
from pnp_ingest.core.logging import get_logger
from pnp_ingest.core.timestamps import from_naive_utc, to_naive_utc, utcnow
from pnp_ingest.domain.crn import InvalidCRNError, check_crn_format, parse_crn
from pnp_ingest.domain.models import (
    Classification,
    EventKind,
    Incident,
    IncidentState,
    Maintenance,
    MaintenanceState,
    Record,
)
from pnp_ingest.storage.engine import IngestSession, ingest_session_factory
from pnp_ingest.storage.tables import (
    IncidentJunctionRow,
    IncidentRow,
    MaintenanceJunctionRow,
    MaintenanceRow,
    ResourceRow,
)

logger = get_logger(__name__)

_INCIDENT_STATES = frozenset(s.value for s in IncidentState)
_CLASSIFICATIONS = frozenset(c.value for c in Classification)
_MAINTENANCE_STATES = frozenset(s.value for s in MaintenanceState)

_TIME_FIELDS = ("source_creation_time", "source_update_time", "start_time", "end_time")
_NOT_STORED = ("crns", "bulk")

_MODELS: dict[EventKind, tuple[type, type, str, type]] = {
    EventKind.INCIDENT: (IncidentRow, IncidentJunctionRow, "incident_id", Incident),
    EventKind.MAINTENANCE: (MaintenanceRow, MaintenanceJunctionRow, "maintenance_id", Maintenance),
}


class StorageGateway(Protocol):
    """What the reconciler needs from the store."""

    def read(self, kind: EventKind, record_id: str) -> Record | None: ...

    def insert(self, record: Record) -> bool:
        """Insert a new row. ``False`` if the record ID already exists."""
        ...

    def update(self, record: Record) -> bool:
        """Guarded update. ``False`` if the stored row is not older."""
        ...

    def touch(self, kind: EventKind, record_id: str, source_update_time: str) -> bool:
        """Advance only ``source_update_time``, under the same guard as ``update``."""
        ...


def validate_record(record: Record) -> None:
    """Apply the store's write rules.

    Raises:
        StoreValidationError: with the first failing ``ValidationCode``.
    """
    context = {"record_id": record.record_id, "source_id": record.source_id}

    if not record.source:
        raise StoreValidationError(ValidationCode.NO_SOURCE, context=context)
    if not record.source_id:
        raise StoreValidationError(ValidationCode.NO_SOURCE_ID, context=context)

    if isinstance(record, Incident):
        if record.state not in _INCIDENT_STATES:
            raise StoreValidationError(ValidationCode.BAD_STATE, f"bad incident state {record.state!r}", context=context)
        if record.classification not in _CLASSIFICATIONS:
            raise StoreValidationError(
                ValidationCode.BAD_CLASSIFICATION,
                f"bad classification {record.classification!r}",
                context=context,
            )
    elif record.state not in _MAINTENANCE_STATES:
        raise StoreValidationError(ValidationCode.BAD_STATE, f"bad maintenance state {record.state!r}", context=context)

    if not record.pnp_removed and not record.crns:
        raise StoreValidationError(ValidationCode.NO_CRN, context=context)
    for crn in record.crns or ():
        code = check_crn_format(crn)
        if code is not None:
            raise StoreValidationError(code, f"{code.value}: {crn}", context=context)


def _row_values(record: Record) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for f in fields(record):
        if f.name in _NOT_STORED:
            continue
        value = getattr(record, f.name)
        if f.name in _TIME_FIELDS:
            value = to_naive_utc(value)
        values[f.name] = value
    values["crn_full"] = list(record.crns or ())
    if isinstance(record, Maintenance):
        values["disruptive"] = bool(record.disruptive)
    return values


def _to_record(row: Any, record_type: type) -> Record:
    kwargs: dict[str, Any] = {}
    for f in fields(record_type):
        if f.name in _NOT_STORED:
            continue
        value = getattr(row, f.name)
        if f.name in _TIME_FIELDS:
            value = from_naive_utc(value)
        kwargs[f.name] = value
    kwargs["crns"] = tuple(row.crn_full or ())
    return record_type(**kwargs)


def _now() -> datetime:
    return utcnow().replace(tzinfo=None)


class SqlStorageGateway:
    """SQLAlchemy-backed gateway. Safe to share across worker threads."""

    def __init__(self, engine: Engine, *, clock: Callable[[], datetime] = _now):
        self._engine = engine
        self._sessions = ingest_session_factory(engine)
        self._clock = clock

    @contextmanager
    def _transaction(self, operation: str, record_id: str) -> Iterator[IngestSession]:
        try:
            with self._sessions() as session, session.begin():
                yield session
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(
                f"{operation} failed: {exc.__class__.__name__}",
                context={"operation": operation, "record_id": record_id},
                cause=exc,
            ) from exc

    # ------------------------------------------------------------------ #
    # StorageGateway
    # ------------------------------------------------------------------ #

    def read(self, kind: EventKind, record_id: str) -> Record | None:
        model, _, _, record_type = _MODELS[EventKind(kind)]
        with self._transaction("read", record_id) as session:
            row = session.get(model, record_id)
            if row is None:
                return None
            return _to_record(row, record_type)

    def insert(self, record: Record) -> bool:
        validate_record(record)
        model = _MODELS[record.kind][0]
        now = self._clock()
        try:
            with self._transaction("insert", record.record_id) as session:
                session.add(model(**_row_values(record), pnp_creation_time=now, pnp_update_time=now))
                session.flush()
                self._replace_links(session, record)
        except IntegrityError:
            logger.info("storage.duplicate_insert", record_id=record.record_id, kind=record.kind.value)
            return False
        logger.debug("storage.inserted", record_id=record.record_id, kind=record.kind.value)
        return True

    def update(self, record: Record) -> bool:
        validate_record(record)
        model = _MODELS[record.kind][0]
        values = _row_values(record)
        new_time = values["source_update_time"]

        guard = model.source_update_time.is_(None)
        if new_time is not None:
            guard = or_(guard, model.source_update_time < new_time)

        stmt = (
            update(model)
            .where(model.record_id == record.record_id)
            .where(guard)
            .values(**values, pnp_update_time=self._clock())
            .execution_options(synchronize_session=False)
        )
        try:
            with self._transaction("update", record.record_id) as session:
                result = session.execute(stmt)
                if result.rowcount == 0:
                    return False
                self._replace_links(session, record)
        except IntegrityError as exc:
            raise StoreUnavailableError(
                "update violated a constraint",
                context={"operation": "update", "record_id": record.record_id},
                cause=exc,
            ) from exc
        logger.debug("storage.updated", record_id=record.record_id, kind=record.kind.value)
        return True

    def touch(self, kind: EventKind, record_id: str, source_update_time: str) -> bool:
        """Record that an unchanged event was seen at *source_update_time*.

        Content columns and ``pnp_update_time`` are left alone; only the
        freshness watermark moves, so an older event arriving later is still
        refused.
        """
        model = _MODELS[EventKind(kind)][0]
        new_time = to_naive_utc(source_update_time)
        stmt = (
            update(model)
            .where(model.record_id == record_id)
            .where(or_(model.source_update_time.is_(None), model.source_update_time < new_time))
            .values(source_update_time=new_time)
            .execution_options(synchronize_session=False)
        )
        with self._transaction("touch", record_id) as session:
            touched = session.execute(stmt).rowcount > 0
        logger.debug("storage.touched", record_id=record_id, kind=EventKind(kind).value, applied=touched)
        return touched

    # ------------------------------------------------------------------ #
    # Junctions
    # ------------------------------------------------------------------ #

    def _replace_links(self, session: IngestSession, record: Record) -> None:
        _, junction, column, _ = _MODELS[record.kind]
        session.execute(delete(junction).where(getattr(junction, column) == record.record_id))
        for resource_id in self._resource_ids(session, record.crns or ()):
            session.add(
                junction(
                    record_id=hashing.record_id(resource_id, record.record_id),
                    resource_id=resource_id,
                    **{column: record.record_id},
                )
            )

    def _resource_ids(self, session: IngestSession, crns: Iterable[str]) -> list[str]:
        found: dict[str, None] = {}
        for text in crns:
            try:
                crn = parse_crn(text)
            except InvalidCRNError:
                continue
            stmt = select(ResourceRow.record_id).where(ResourceRow.service_name == crn.service)
            if crn.location:
                stmt = stmt.where(ResourceRow.location == crn.location)
            else:
                stmt = stmt.where(or_(ResourceRow.location.is_(None), ResourceRow.location == ""))
            for resource_id in session.scalars(stmt):
                found.setdefault(resource_id, None)
        return list(found)


class BypassStorageGateway:
    """Gateway for running without a database.

    Records are still validated so local runs surface the same permanent
    failures production would. Nothing is read back, so every publishable
    event reconciles as an insert.
    """

    def read(self, kind: EventKind, record_id: str) -> Record | None:
        return None

    def insert(self, record: Record) -> bool:
        validate_record(record)
        logger.info("storage.bypassed", operation="insert", record_id=record.record_id)
        return True

    def update(self, record: Record) -> bool:
        validate_record(record)
        logger.info("storage.bypassed", operation="update", record_id=record.record_id)
        return True

    def touch(self, kind: EventKind, record_id: str, source_update_time: str) -> bool:
        return True
