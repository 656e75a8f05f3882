"""
Canonical event records.

The decoder hands the normalizer a loose attribute map; everything after the
normalizer works on these two tagged variants instead. Optional fields use
``None`` to mean *absent from the event* and ``""`` to mean *present but
empty*. The distinction drives update merging: absent fields inherit the
stored value, empty ones overwrite it.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

SOURCE_SERVICENOW = "servicenow"

# Audience sentinel stored when the source explicitly sends none
AUDIENCE_NONE = "none"

# Canonical sentinel for enumeration values the mappings do not recognise
UNKNOWN = "unknown"


class EventKind(str, Enum):
    INCIDENT = "incident"
    MAINTENANCE = "maintenance"


class IncidentState(str, Enum):
    NEW = "new"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"


class Classification(str, Enum):
    CONFIRMED_CIE = "confirmed-cie"
    POTENTIAL_CIE = "potential-cie"
    NORMAL = "normal"


class MaintenanceState(str, Enum):
    NEW = "new"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in-progress"
    COMPLETE = "complete"


PUBLISHABLE_SEVERITIES = frozenset({"1", "2"})
PUBLISHABLE_CLASSIFICATIONS = frozenset({Classification.CONFIRMED_CIE.value, Classification.POTENTIAL_CIE.value})


@dataclass
class Incident:
    """An operational incident as stored in ``incident_table``."""

    record_id: str
    source: str
    source_id: str
    source_creation_time: str | None = None
    source_update_time: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    short_description: str | None = None
    long_description: str | None = None
    state: str | None = None
    classification: str | None = None
    severity: str | None = None
    crns: tuple[str, ...] | None = None
    audience: str | None = None
    targeted_url: str | None = None
    affected_activity: str | None = None
    customer_impact_description: str | None = None
    regulatory_domain: str | None = None
    pnp_removed: bool = False
    # Transport flag, not persisted
    bulk: bool = field(default=False, compare=False)

    kind = EventKind.INCIDENT

    @property
    def publishable(self) -> bool:
        """Severity 1/2, a CIE classification and at least one eligible CRN."""
        return (
            self.severity in PUBLISHABLE_SEVERITIES
            and self.classification in PUBLISHABLE_CLASSIFICATIONS
            and bool(self.crns)
        )

    def evolve(self, **changes: Any) -> Incident:
        return replace(self, **changes)


@dataclass
class Maintenance:
    """A maintenance window as stored in ``maintenance_table``."""

    record_id: str
    source: str
    source_id: str
    source_creation_time: str | None = None
    source_update_time: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    short_description: str | None = None
    long_description: str | None = None
    state: str | None = None
    disruptive: bool | None = None
    crns: tuple[str, ...] | None = None
    disruption_type: str | None = None
    disruption_description: str | None = None
    disruption_duration: int | None = None
    maintenance_duration: int | None = None
    completion_code: str | None = None
    audience: str | None = None
    targeted_url: str | None = None
    regulatory_domain: str | None = None
    record_hash: str | None = None
    pnp_removed: bool = False
    bulk: bool = field(default=False, compare=False)

    kind = EventKind.MAINTENANCE

    @property
    def publishable(self) -> bool:
        """Disruptive, past the ``new`` state and at least one eligible CRN."""
        return (
            bool(self.disruptive)
            and self.state not in (None, MaintenanceState.NEW.value)
            and bool(self.crns)
        )

    def evolve(self, **changes: Any) -> Maintenance:
        return replace(self, **changes)


Record = Incident | Maintenance


@dataclass(frozen=True)
class NotificationIntent:
    """Downstream request to notify subscribers about a record transition."""

    kind: EventKind
    record_id: str
    source_id: str
    change: str
    changed_fields: tuple[str, ...] = ()
    crns: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "record_id": self.record_id,
            "source_id": self.source_id,
            "change": self.change,
            "changed_fields": list(self.changed_fields),
            "crns": list(self.crns),
        }
