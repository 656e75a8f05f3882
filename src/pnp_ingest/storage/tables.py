"""Declarative tables for the incident and maintenance stores.

Uses SQLAlchemy 2.0 ``DeclarativeBase`` with a ``type_annotation_map`` so
``Mapped`` columns can use plain Python types:

* ``str``   → ``Text``
* ``int``   → ``Integer``
* ``bool``  → ``Boolean``
* ``datetime.datetime`` → ``DateTime`` (naive UTC)
* ``list``  → ``JSON``

Only these five tables matter to the pipeline. ``resource_table`` is owned by
the resource importer and is read-only here.
"""

from __future__ import annotations

import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class IngestBase(DeclarativeBase):
    """Shared declarative base for the ingest tables."""

    type_annotation_map = {
        str: Text,
        int: Integer,
        bool: Boolean,
        datetime.datetime: DateTime,
        list: JSON,
    }


class ResourceRow(IngestBase):
    __tablename__ = "resource_table"

    record_id: Mapped[str] = mapped_column(primary_key=True)
    crn_full: Mapped[str]
    cname: Mapped[str | None]
    ctype: Mapped[str | None]
    service_name: Mapped[str]
    location: Mapped[str | None]
    source: Mapped[str | None]
    source_id: Mapped[str | None]
    pnp_creation_time: Mapped[datetime.datetime | None]

    __table_args__ = (Index("ix_resource_service_location", "service_name", "location"),)


class IncidentRow(IngestBase):
    __tablename__ = "incident_table"

    record_id: Mapped[str] = mapped_column(primary_key=True)
    pnp_creation_time: Mapped[datetime.datetime]
    pnp_update_time: Mapped[datetime.datetime]
    source_creation_time: Mapped[datetime.datetime | None]
    source_update_time: Mapped[datetime.datetime | None]
    start_time: Mapped[datetime.datetime | None]
    end_time: Mapped[datetime.datetime | None]
    short_description: Mapped[str | None]
    long_description: Mapped[str | None]
    state: Mapped[str]
    classification: Mapped[str]
    severity: Mapped[str | None]
    crn_full: Mapped[list] = mapped_column(default=list)
    source_id: Mapped[str]
    source: Mapped[str]
    regulatory_domain: Mapped[str | None]
    affected_activity: Mapped[str | None]
    customer_impact_description: Mapped[str | None]
    pnp_removed: Mapped[bool] = mapped_column(default=False)
    targeted_url: Mapped[str | None]
    audience: Mapped[str | None]


class IncidentJunctionRow(IngestBase):
    __tablename__ = "incident_junction_table"

    record_id: Mapped[str] = mapped_column(primary_key=True)
    resource_id: Mapped[str] = mapped_column(ForeignKey("resource_table.record_id"))
    incident_id: Mapped[str] = mapped_column(ForeignKey("incident_table.record_id", ondelete="CASCADE"), index=True)


class MaintenanceRow(IngestBase):
    __tablename__ = "maintenance_table"

    record_id: Mapped[str] = mapped_column(primary_key=True)
    pnp_creation_time: Mapped[datetime.datetime]
    pnp_update_time: Mapped[datetime.datetime]
    source_creation_time: Mapped[datetime.datetime | None]
    source_update_time: Mapped[datetime.datetime | None]
    start_time: Mapped[datetime.datetime | None]
    end_time: Mapped[datetime.datetime | None]
    short_description: Mapped[str | None]
    long_description: Mapped[str | None]
    crn_full: Mapped[list] = mapped_column(default=list)
    state: Mapped[str]
    disruptive: Mapped[bool] = mapped_column(default=False)
    source_id: Mapped[str]
    source: Mapped[str]
    regulatory_domain: Mapped[str | None]
    record_hash: Mapped[str | None]
    maintenance_duration: Mapped[int | None]
    disruption_type: Mapped[str | None]
    disruption_description: Mapped[str | None]
    disruption_duration: Mapped[int | None]
    completion_code: Mapped[str | None]
    pnp_removed: Mapped[bool] = mapped_column(default=False)
    targeted_url: Mapped[str | None]
    audience: Mapped[str | None]


class MaintenanceJunctionRow(IngestBase):
    __tablename__ = "maintenance_junction_table"

    record_id: Mapped[str] = mapped_column(primary_key=True)
    resource_id: Mapped[str] = mapped_column(ForeignKey("resource_table.record_id"))
    maintenance_id: Mapped[str] = mapped_column(
        ForeignKey("maintenance_table.record_id", ondelete="CASCADE"), index=True
    )
