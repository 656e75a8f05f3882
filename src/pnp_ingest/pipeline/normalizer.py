"""
Normalizer: attribute map to canonical Incident / Maintenance records.

Manifesto:
    The ticketing system speaks in display strings, numeric codes and naive
    timestamps. Nothing downstream of this module should ever see one of
    those: records leave here with canonical enumerations, UTC timestamps,
    normalized CRNs and resolved templates.

Architecture:
    ::

        attribute map ──► Normalizer.normalize(kind, attrs)
                              │
                   ┌──────────┴───────────┐
                   ▼                      ▼
            incident(attrs)        maintenances(attrs)
                   │                      │  (bulk envelope fans out)
                   ▼                      ▼
              Incident            list[Maintenance]

        merge_incident / merge_maintenance(event, prior) fold absent fields
        and empty long-description sections onto the stored record.

Features:
    - **Enumeration mapping:** state, classification, severity, completion code
    - **Timestamp normalization:** ``YYYY-MM-DD HH:MM:SS`` -> ``...Z``
    - **CRN normalization:** lowercase, legacy prefix, status-page parent,
      de-duplication, eligibility filtering
    - **Long description:** three sections joined by fixed headers; exact
      inverse split for section-wise merging
    - **Templating:** ``$SN_RECORD_ID`` in targeted URLs

Guardrails:
    ❌ DON'T: Treat a missing field as an empty one
    ✅ DO: Return ``None`` for absent fields so updates inherit prior values

    ❌ DON'T: Reject unknown enumeration values
    ✅ DO: Map them to their sentinel and let publishability decide

Tags:
    normalization, enumeration-mapping, crn, templating, pnp-ingest
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import fields
from typing import Any

from pnp_ingest.core.errors import MissingFieldError, PayloadParseError
from pnp_ingest.core.hashing import record_id
from pnp_ingest.core.timestamps import minutes_between, normalize_timestamp, parse_timestamp
from pnp_ingest.domain.crn import EligibilityChecker
from pnp_ingest.domain.models import (
    AUDIENCE_NONE,
    SOURCE_SERVICENOW,
    UNKNOWN,
    Classification,
    EventKind,
    Incident,
    IncidentState,
    Maintenance,
    MaintenanceState,
    Record,
)

BULK_MARKER = "BULK"
BULK_ENVELOPE_KEY = "result_from_sn"
RECORD_ID_TOKEN = "$SN_RECORD_ID"

# =============================================================================
# ENUMERATION MAPS
# =============================================================================

_INCIDENT_STATES = {
    "1": IncidentState.NEW.value,
    "new": IncidentState.NEW.value,
    "6": IncidentState.RESOLVED.value,
    "resolved": IncidentState.RESOLVED.value,
    "7": IncidentState.RESOLVED.value,
    "closed": IncidentState.RESOLVED.value,
}

_CLASSIFICATIONS = {
    "20": Classification.POTENTIAL_CIE.value,
    "potential cie": Classification.POTENTIAL_CIE.value,
    "21": Classification.CONFIRMED_CIE.value,
    "confirmed cie": Classification.CONFIRMED_CIE.value,
}

_SEVERITY_RE = re.compile(r"^(?:sev\s*-\s*)?([1-4])$", re.IGNORECASE)

_MAINTENANCE_STATES = {
    "new": MaintenanceState.NEW.value,
    "scheduled": MaintenanceState.SCHEDULED.value,
    "implement": MaintenanceState.IN_PROGRESS.value,
    "in-progress": MaintenanceState.IN_PROGRESS.value,
    "in progress": MaintenanceState.IN_PROGRESS.value,
    "review": MaintenanceState.COMPLETE.value,
    "closed": MaintenanceState.COMPLETE.value,
    "cancelled": MaintenanceState.COMPLETE.value,
    "canceled": MaintenanceState.COMPLETE.value,
    "complete": MaintenanceState.COMPLETE.value,
}

COMPLETION_CODES = {
    "successful": "successful",
    "successful_issues": "successful",
    "unsuccessful": "failed",
    "cancelled": "cancelled",
    "canceled": "cancelled",
    "missed-window": "missed-window",
}
DEFAULT_COMPLETION_CODE = "successful"


def incident_state(raw: str) -> str:
    """``1``/New -> new, ``6``/``7``/Resolved/Closed -> resolved, ``""`` -> ``""``.

    Any other ticket state is one of the intermediate working states.
    """
    if raw == "":
        return ""
    return _INCIDENT_STATES.get(raw.strip().lower(), IncidentState.IN_PROGRESS.value)


def classification(raw: str) -> str:
    if raw == "":
        return ""
    return _CLASSIFICATIONS.get(raw.strip().lower(), Classification.NORMAL.value)


def severity(raw: str) -> str:
    """``"1"``..``"4"`` and ``"Sev - N"`` -> ``"N"``; anything else -> unknown."""
    match = _SEVERITY_RE.match(raw.strip())
    if match is None:
        return UNKNOWN
    return match.group(1)


def maintenance_state(raw: str) -> str:
    return _MAINTENANCE_STATES.get(raw.strip().lower(), UNKNOWN)


def completion_code(close_code: str) -> str:
    return COMPLETION_CODES.get(close_code.strip().lower(), DEFAULT_COMPLETION_CODE)


# =============================================================================
# LONG DESCRIPTION
# =============================================================================

LONG_DESCRIPTION_PREFIX = "Description:\n"
_STATUS_HEADER = "Current Status and Next Steps:"
_IMPACT_HEADER = "Description of Customer Facing Impact:"
STATUS_SEPARATOR = f"\n\n{_STATUS_HEADER}\n"
IMPACT_SEPARATOR = f"\n\n{_IMPACT_HEADER}\n"

# A header line inside a section gets one extra backslash so it can never be
# mistaken for a separator; split removes exactly one again.
_HEADERS = f"(?:{re.escape(_STATUS_HEADER)}|{re.escape(_IMPACT_HEADER)})"
_ESCAPE_RE = re.compile(rf"\n\n(\\*)({_HEADERS})")
_UNESCAPE_RE = re.compile(rf"\n\n(\\*)\\({_HEADERS})")


def _escape(section: str) -> str:
    return _ESCAPE_RE.sub(lambda m: "\n\n" + m.group(1) + "\\" + m.group(2), section)


def _unescape(section: str) -> str:
    return _UNESCAPE_RE.sub(lambda m: "\n\n" + m.group(1) + m.group(2), section)


def build_long_description(description: str, status: str, impact: str) -> str:
    """Compose the three long-description sections."""
    return (
        LONG_DESCRIPTION_PREFIX
        + _escape(description)
        + STATUS_SEPARATOR
        + _escape(status)
        + IMPACT_SEPARATOR
        + _escape(impact)
    )


def split_long_description(text: str | None) -> tuple[str, str, str]:
    """Inverse of :func:`build_long_description`.

    Text that was not built by this module is returned as the description
    section with empty status and impact.
    """
    if not text:
        return ("", "", "")
    if not text.startswith(LONG_DESCRIPTION_PREFIX):
        return (text, "", "")

    body = text[len(LONG_DESCRIPTION_PREFIX):]
    status_at = body.find(STATUS_SEPARATOR)
    if status_at < 0:
        return (_unescape(body), "", "")
    description = body[:status_at]
    rest = body[status_at + len(STATUS_SEPARATOR):]

    impact_at = rest.find(IMPACT_SEPARATOR)
    if impact_at < 0:
        return (_unescape(description), _unescape(rest), "")
    status = rest[:impact_at]
    impact = rest[impact_at + len(IMPACT_SEPARATOR):]
    return (_unescape(description), _unescape(status), _unescape(impact))


def merge_long_description(new: str | None, prior: str | None) -> str | None:
    """Section-wise merge: an empty section in *new* inherits from *prior*."""
    if new is None:
        return prior
    if prior is None:
        return new
    new_parts = split_long_description(new)
    prior_parts = split_long_description(prior)
    merged = [n if n else p for n, p in zip(new_parts, prior_parts)]
    return build_long_description(*merged)


# =============================================================================
# FIELD HELPERS
# =============================================================================


def _text(attrs: Mapping[str, Any], key: str) -> str | None:
    if key not in attrs:
        return None
    value = attrs[key]
    if isinstance(value, str):
        return value
    if isinstance(value, (list, dict)):
        raise PayloadParseError(f"field {key!r} must be a string")
    return str(value)


def _required(attrs: Mapping[str, Any], key: str) -> str:
    value = _text(attrs, key)
    if value is None or not value.strip():
        raise MissingFieldError(key)
    return value.strip()


def _timestamp(attrs: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        if key in attrs:
            value = attrs[key]
            if value == "":
                return ""
            return normalize_timestamp(value, field_name=key)
    return None


def _int(attrs: Mapping[str, Any], key: str) -> int | None:
    if key not in attrs or attrs[key] == "":
        return None
    try:
        return int(attrs[key])
    except (TypeError, ValueError) as exc:
        raise PayloadParseError(f"field {key!r} must be an integer", cause=exc) from exc


def _bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def _crn_list(attrs: Mapping[str, Any]) -> list[str]:
    if "crn" not in attrs:
        raise MissingFieldError("crn")
    raw = attrs["crn"]
    if isinstance(raw, str):
        return raw.split(",")
    if isinstance(raw, list):
        return [item for item in raw if isinstance(item, str)]
    raise PayloadParseError("field 'crn' must be a list of strings")


def _audience(attrs: Mapping[str, Any]) -> str | None:
    value = _text(attrs, "u_audience")
    if value is None:
        return None
    return value if value.strip() else AUDIENCE_NONE


def _targeted_url(attrs: Mapping[str, Any], source_id: str) -> str | None:
    value = _text(attrs, "u_targeted_notification_url")
    if value is None:
        return None
    return value.replace(RECORD_ID_TOKEN, source_id)


def _is_bulk(attrs: Mapping[str, Any]) -> bool:
    return str(attrs.get("Process", "")).upper() == BULK_MARKER


def _latest_communication(communications: Any) -> str | None:
    """Text of the most recently updated communication, if any parse."""
    if not isinstance(communications, list):
        return None
    latest_text = None
    latest_at = None
    for item in communications:
        if not isinstance(item, Mapping):
            continue
        updated = parse_timestamp(item.get("sys_updated_on"))
        if updated is None:
            continue
        if latest_at is None or updated > latest_at:
            latest_at = updated
            latest_text = item.get("text", "")
    if latest_text is not None and not isinstance(latest_text, str):
        raise PayloadParseError("communication 'text' must be a string")
    return latest_text


# =============================================================================
# NORMALIZER
# =============================================================================


class Normalizer:
    """Builds canonical records from decoded attribute maps."""

    def __init__(self, eligibility: EligibilityChecker, *, source: str = SOURCE_SERVICENOW):
        self._eligibility = eligibility
        self._source = source

    def normalize(self, kind: EventKind | str, attrs: Mapping[str, Any]) -> list[Record]:
        """Normalize one decoded payload. Bulk envelopes yield several records."""
        kind = EventKind(kind)
        try:
            if kind is EventKind.INCIDENT:
                return [self.incident(attrs)]
            return list(self.maintenances(attrs))
        except (TypeError, AttributeError, ValueError) as exc:
            # A field of an unexpected JSON type; retrying cannot fix it
            raise PayloadParseError(
                f"unexpected {kind.value} payload shape: {exc}",
                context={"kind": kind.value},
                cause=exc,
            ) from exc

    # ------------------------------------------------------------------ #
    # Incidents
    # ------------------------------------------------------------------ #

    def incident(self, attrs: Mapping[str, Any]) -> Incident:
        source_id = _required(attrs, "number")

        description = _text(attrs, "description")
        status = _text(attrs, "u_current_status")
        impact = _text(attrs, "u_description_customer_impact")
        long_description = None
        if description is not None or status is not None or impact is not None:
            long_description = build_long_description(description or "", status or "", impact or "")

        raw_state = _text(attrs, "incident_state")
        raw_class = _text(attrs, "u_status")
        raw_priority = _text(attrs, "priority")

        return Incident(
            record_id=record_id(self._source, source_id),
            source=self._source,
            source_id=source_id,
            source_creation_time=_timestamp(attrs, "sys_created_on"),
            source_update_time=_timestamp(attrs, "sys_updated_on"),
            start_time=_timestamp(attrs, "u_disruption_began"),
            end_time=_timestamp(attrs, "u_disruption_ended"),
            short_description=_text(attrs, "short_description"),
            long_description=long_description,
            state=incident_state(raw_state) if raw_state is not None else None,
            classification=classification(raw_class) if raw_class is not None else None,
            severity=severity(raw_priority) if raw_priority is not None else None,
            crns=self._eligibility.normalize_all(_crn_list(attrs)),
            audience=_audience(attrs),
            targeted_url=_targeted_url(attrs, source_id),
            affected_activity=_text(attrs, "u_affected_activity"),
            customer_impact_description=impact,
            regulatory_domain=_text(attrs, "regulatory_domain"),
            bulk=_is_bulk(attrs),
        )

    # ------------------------------------------------------------------ #
    # Maintenance
    # ------------------------------------------------------------------ #

    def maintenances(self, attrs: Mapping[str, Any]) -> list[Maintenance]:
        envelope = attrs.get(BULK_ENVELOPE_KEY)
        if envelope is None:
            return [self.maintenance(attrs)]
        if not isinstance(envelope, list):
            raise PayloadParseError(f"{BULK_ENVELOPE_KEY!r} must be a list")
        records = []
        for item in envelope:
            if not isinstance(item, Mapping):
                raise PayloadParseError(f"{BULK_ENVELOPE_KEY!r} entries must be objects")
            records.append(self.maintenance(item, bulk=True))
        return records

    def maintenance(self, attrs: Mapping[str, Any], *, bulk: bool = False) -> Maintenance:
        source_id = _required(attrs, "number")
        raw_state = _required(attrs, "state")
        state = maintenance_state(raw_state)

        start_time = _timestamp(attrs, "start_date", "planned_start")
        end_time = _timestamp(attrs, "end_date", "planned_end")

        outage_seconds = _int(attrs, "u_outage_duration")
        if "disruptive" in attrs:
            disruptive: bool | None = _bool(attrs["disruptive"])
        elif outage_seconds is not None:
            disruptive = outage_seconds > 0
        else:
            disruptive = None

        disruption_duration = _int(attrs, "disruption_duration")
        if disruption_duration is None and outage_seconds is not None and outage_seconds > 0:
            disruption_duration = max(1, outage_seconds // 60)

        maintenance_duration = _int(attrs, "maintenance_duration")
        if maintenance_duration is None and start_time and end_time:
            maintenance_duration = minutes_between(start_time, end_time)

        code = _text(attrs, "completion_code")
        if code is None and state == MaintenanceState.COMPLETE.value:
            close_code = _text(attrs, "close_code")
            if raw_state.strip().lower() in ("cancelled", "canceled"):
                code = "cancelled"
            elif close_code is not None:
                code = completion_code(close_code)

        long_description = _text(attrs, "long_description")
        if long_description is None:
            long_description = _latest_communication(attrs.get("communications"))

        return Maintenance(
            record_id=record_id(self._source, source_id),
            source=self._source,
            source_id=source_id,
            source_creation_time=_timestamp(attrs, "sys_created_on"),
            source_update_time=_timestamp(attrs, "sys_updated_on"),
            start_time=start_time,
            end_time=end_time,
            short_description=_text(attrs, "short_description"),
            long_description=long_description,
            state=state,
            disruptive=disruptive,
            crns=self._eligibility.normalize_all(_crn_list(attrs)),
            disruption_type=_text(attrs, "disruption_type"),
            disruption_description=_text(attrs, "disruption_description"),
            disruption_duration=disruption_duration,
            maintenance_duration=maintenance_duration,
            completion_code=code,
            audience=_audience(attrs),
            targeted_url=_targeted_url(attrs, source_id),
            regulatory_domain=_text(attrs, "regulatory_domain"),
            bulk=bulk or _is_bulk(attrs),
        )


# =============================================================================
# MERGE
# =============================================================================

_NOT_MERGED = frozenset({"record_id", "source", "source_id", "pnp_removed", "record_hash", "bulk"})


def _merge(event: Record, prior: Record) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    for f in fields(event):
        if f.name in _NOT_MERGED:
            continue
        if getattr(event, f.name) is None:
            changes[f.name] = getattr(prior, f.name)
    return changes


def merge_incident(event: Incident, prior: Incident | None) -> Incident:
    """Fold *event* onto the stored *prior* record.

    Absent fields inherit, long descriptions merge section by section and
    the audience falls back to the sentinel if neither side has one.
    """
    if prior is None:
        return event.evolve(audience=event.audience if event.audience is not None else AUDIENCE_NONE)
    changes = _merge(event, prior)
    changes["long_description"] = merge_long_description(event.long_description, prior.long_description)
    merged = event.evolve(**changes)
    if merged.audience is None:
        merged = merged.evolve(audience=AUDIENCE_NONE)
    return merged


def merge_maintenance(event: Maintenance, prior: Maintenance | None) -> Maintenance:
    """Fold *event* onto the stored *prior* record (absent fields inherit)."""
    if prior is None:
        merged = event
    else:
        merged = event.evolve(**_merge(event, prior))
    if merged.audience is None:
        merged = merged.evolve(audience=AUDIENCE_NONE)
    if merged.disruptive is None:
        merged = merged.evolve(disruptive=False)
    return merged
