"""Tests for ``pnp_ingest.pipeline.normalizer``."""

from __future__ import annotations

import pytest

from pnp_ingest.core.errors import BadTimestampError, MissingFieldError, PayloadParseError
from pnp_ingest.core.hashing import record_id
from pnp_ingest.domain.models import EventKind, Incident, Maintenance
from pnp_ingest.pipeline.normalizer import (
    IMPACT_SEPARATOR,
    LONG_DESCRIPTION_PREFIX,
    STATUS_SEPARATOR,
    build_long_description,
    classification,
    completion_code,
    incident_state,
    maintenance_state,
    merge_incident,
    merge_long_description,
    merge_maintenance,
    severity,
    split_long_description,
)

COS_CRN = "crn:v1:bluemix:public:cloud-object-storage:us-south::::"


class TestEnumerations:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("1", "new"),
            ("New", "new"),
            ("6", "resolved"),
            ("7", "resolved"),
            ("Resolved", "resolved"),
            ("closed", "resolved"),
            ("2", "in-progress"),
            ("Work in Progress", "in-progress"),
            ("", ""),
        ],
    )
    def test_incident_state(self, raw, expected):
        assert incident_state(raw) == expected

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("20", "potential-cie"),
            ("Potential CIE", "potential-cie"),
            ("21", "confirmed-cie"),
            ("confirmed cie", "confirmed-cie"),
            ("Normal", "normal"),
            ("anything else", "normal"),
            ("", ""),
        ],
    )
    def test_classification(self, raw, expected):
        assert classification(raw) == expected

    @pytest.mark.parametrize(
        "raw, expected",
        [("1", "1"), ("Sev - 2", "2"), ("sev-3", "3"), ("SEV - 4", "4"), ("5", "unknown"), ("high", "unknown")],
    )
    def test_severity(self, raw, expected):
        assert severity(raw) == expected

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("New", "new"),
            ("Scheduled", "scheduled"),
            ("Implement", "in-progress"),
            ("in progress", "in-progress"),
            ("Review", "complete"),
            ("Closed", "complete"),
            ("Canceled", "complete"),
            ("weird", "unknown"),
        ],
    )
    def test_maintenance_state(self, raw, expected):
        assert maintenance_state(raw) == expected

    def test_completion_code(self):
        assert completion_code("unsuccessful") == "failed"
        assert completion_code("successful_issues") == "successful"
        assert completion_code("") == "successful"


class TestLongDescription:
    def test_layout(self):
        text = build_long_description("what", "status", "impact")
        assert text == LONG_DESCRIPTION_PREFIX + "what" + STATUS_SEPARATOR + "status" + IMPACT_SEPARATOR + "impact"

    @pytest.mark.parametrize(
        "sections",
        [
            ("what", "status", "impact"),
            ("", "", ""),
            ("a\n\nCurrent Status and Next Steps:\nnot a header", "b", "c"),
            ("a", "b\n\nDescription of Customer Facing Impact:\nfake", "c"),
            ("a\n\n\\Current Status and Next Steps:", "\n", "\n\n"),
            ("Description:\nnested", "x\n\n", "\nDescription of Customer Facing Impact:\n"),
        ],
    )
    def test_split_inverts_build(self, sections):
        assert split_long_description(build_long_description(*sections)) == sections

    def test_split_foreign_text(self):
        assert split_long_description("free text") == ("free text", "", "")
        assert split_long_description(None) == ("", "", "")

    def test_merge_inherits_empty_sections(self):
        prior = build_long_description("what", "investigating", "uploads fail")
        new = build_long_description("", "mitigated", "")
        assert split_long_description(merge_long_description(new, prior)) == ("what", "mitigated", "uploads fail")

    def test_merge_absent(self):
        prior = build_long_description("a", "b", "c")
        assert merge_long_description(None, prior) == prior
        assert merge_long_description(prior, None) == prior


class TestIncident:
    def test_full_payload(self, normalizer, incident_payload):
        incident = normalizer.incident(incident_payload())
        assert isinstance(incident, Incident)
        assert incident.record_id == record_id("servicenow", "INC0012345")
        assert incident.source == "servicenow"
        assert incident.source_update_time == "2024-01-01T00:00:01Z"
        assert incident.start_time == "2024-01-01T00:00:00Z"
        assert incident.end_time is None
        assert incident.state == "new"
        assert incident.classification == "confirmed-cie"
        assert incident.severity == "1"
        assert incident.crns == (COS_CRN,)
        assert incident.audience == "Public"
        assert incident.targeted_url == "https://status.example.com/incidents/INC0012345"
        assert incident.customer_impact_description == "Uploads fail"
        assert split_long_description(incident.long_description) == (
            "Requests are failing",
            "Investigating",
            "Uploads fail",
        )
        assert incident.bulk is False
        assert incident.publishable

    def test_absent_vs_empty(self, normalizer, incident_payload):
        incident = normalizer.incident(
            incident_payload(short_description=None, u_audience="", description=None, u_current_status=None,
                             u_description_customer_impact=None)
        )
        assert incident.short_description is None
        assert incident.audience == "none"
        assert incident.long_description is None

    def test_comma_separated_crns(self, normalizer, incident_payload):
        incident = normalizer.incident(
            incident_payload(crn=f"{COS_CRN},crn:v1:bluemix:public:internal-tool:us-south::::")
        )
        assert incident.crns == (COS_CRN,)

    def test_no_eligible_crns(self, normalizer, incident_payload):
        incident = normalizer.incident(incident_payload(crn=[]))
        assert incident.crns == ()
        assert not incident.publishable

    @pytest.mark.parametrize("missing", ["number", "crn"])
    def test_required_fields(self, normalizer, incident_payload, missing):
        with pytest.raises(MissingFieldError) as exc_info:
            normalizer.incident(incident_payload(**{missing: None}))
        assert exc_info.value.field_name == missing

    def test_blank_number(self, normalizer, incident_payload):
        with pytest.raises(MissingFieldError):
            normalizer.incident(incident_payload(number="   "))

    def test_bad_timestamp(self, normalizer, incident_payload):
        with pytest.raises(BadTimestampError):
            normalizer.incident(incident_payload(sys_updated_on="not-a-date"))

    def test_empty_timestamp_kept_empty(self, normalizer, incident_payload):
        assert normalizer.incident(incident_payload(u_disruption_ended="")).end_time == ""

    def test_bad_crn_type(self, normalizer, incident_payload):
        with pytest.raises(PayloadParseError):
            normalizer.incident(incident_payload(crn={"a": 1}))

    def test_bulk_marker(self, normalizer, incident_payload):
        assert normalizer.incident(incident_payload(Process="BULK")).bulk is True

    @pytest.mark.parametrize(
        "overrides",
        [{"priority": "Sev - 3"}, {"u_status": "Normal"}, {"crn": ["crn:v1:bluemix:public:internal-tool:us-south::::"]}],
    )
    def test_not_publishable(self, normalizer, incident_payload, overrides):
        assert not normalizer.incident(incident_payload(**overrides)).publishable

    def test_normalize_dispatch(self, normalizer, incident_payload):
        records = normalizer.normalize("incident", incident_payload())
        assert len(records) == 1
        assert records[0].kind is EventKind.INCIDENT


class TestMaintenance:
    def test_full_payload(self, normalizer, maintenance_payload):
        maintenance = normalizer.maintenance(maintenance_payload())
        assert isinstance(maintenance, Maintenance)
        assert maintenance.state == "scheduled"
        assert maintenance.start_time == "2024-02-01T10:00:00Z"
        assert maintenance.end_time == "2024-02-01T12:00:00Z"
        assert maintenance.disruptive is True
        assert maintenance.disruption_duration == 30
        assert maintenance.maintenance_duration == 120
        assert maintenance.completion_code is None
        assert maintenance.publishable

    def test_zero_outage_not_disruptive(self, normalizer, maintenance_payload):
        maintenance = normalizer.maintenance(maintenance_payload(u_outage_duration="0"))
        assert maintenance.disruptive is False
        assert maintenance.disruption_duration is None
        assert not maintenance.publishable

    def test_explicit_disruptive_wins(self, normalizer, maintenance_payload):
        assert normalizer.maintenance(maintenance_payload(disruptive="false")).disruptive is False

    def test_bad_integer(self, normalizer, maintenance_payload):
        with pytest.raises(PayloadParseError):
            normalizer.maintenance(maintenance_payload(u_outage_duration="soon"))

    def test_state_required(self, normalizer, maintenance_payload):
        with pytest.raises(MissingFieldError):
            normalizer.maintenance(maintenance_payload(state=None))

    def test_unknown_state(self, normalizer, maintenance_payload):
        assert normalizer.maintenance(maintenance_payload(state="Paused")).state == "unknown"

    def test_closed_unsuccessful(self, normalizer, maintenance_payload):
        maintenance = normalizer.maintenance(maintenance_payload(state="Closed", close_code="unsuccessful"))
        assert maintenance.state == "complete"
        assert maintenance.completion_code == "failed"

    def test_cancelled(self, normalizer, maintenance_payload):
        maintenance = normalizer.maintenance(maintenance_payload(state="Cancelled"))
        assert maintenance.state == "complete"
        assert maintenance.completion_code == "cancelled"

    def test_latest_communication(self, normalizer, maintenance_payload):
        maintenance = normalizer.maintenance(
            maintenance_payload(
                communications=[
                    {"text": "first", "sys_updated_on": "2024-02-01 01:00:00"},
                    {"text": "latest", "sys_updated_on": "2024-02-01 03:00:00"},
                    {"text": "undated"},
                    {"text": "middle", "sys_updated_on": "2024-02-01 02:00:00"},
                ]
            )
        )
        assert maintenance.long_description == "latest"

    def test_communication_with_non_string_time_is_ignored(self, normalizer, maintenance_payload):
        maintenance = normalizer.maintenance(
            maintenance_payload(
                communications=[
                    {"text": "dated", "sys_updated_on": "2024-02-01 01:00:00"},
                    {"text": "numeric", "sys_updated_on": 12345},
                ]
            )
        )
        assert maintenance.long_description == "dated"

    def test_communication_with_non_string_text(self, normalizer, maintenance_payload):
        payload = maintenance_payload(communications=[{"text": 7, "sys_updated_on": "2024-02-01 01:00:00"}])
        with pytest.raises(PayloadParseError):
            normalizer.normalize(EventKind.MAINTENANCE, payload)

    @pytest.mark.parametrize("kind", [EventKind.INCIDENT, EventKind.MAINTENANCE])
    def test_wrong_document_shape_is_parse_error(self, normalizer, kind):
        """Shape errors from deep inside normalization never escape as raw exceptions."""
        with pytest.raises(PayloadParseError) as exc_info:
            normalizer.normalize(kind, ["number", "state", "crn"])
        assert isinstance(exc_info.value.__cause__, (TypeError, AttributeError))

    def test_bulk_envelope(self, normalizer, maintenance_payload):
        envelope = {
            "result_from_sn": [
                maintenance_payload(),
                maintenance_payload(number="CHG0001001"),
            ]
        }
        records = normalizer.normalize(EventKind.MAINTENANCE, envelope)
        assert [r.source_id for r in records] == ["CHG0001000", "CHG0001001"]
        assert all(r.bulk for r in records)

    @pytest.mark.parametrize("envelope", [{"result_from_sn": "x"}, {"result_from_sn": ["x"]}])
    def test_bad_envelope(self, normalizer, envelope):
        with pytest.raises(PayloadParseError):
            normalizer.maintenances(envelope)


class TestMerge:
    def test_incident_inherits_absent_fields(self, make_incident):
        prior = make_incident(short_description="stored", audience="public")
        event = make_incident(
            short_description=None,
            audience=None,
            source_update_time="2024-01-01T00:00:02Z",
        )
        merged = merge_incident(event, prior)
        assert merged.short_description == "stored"
        assert merged.audience == "public"
        assert merged.source_update_time == "2024-01-01T00:00:02Z"

    def test_incident_empty_overwrites(self, make_incident):
        merged = merge_incident(make_incident(short_description=""), make_incident(short_description="stored"))
        assert merged.short_description == ""

    def test_incident_audience_sentinel(self, make_incident):
        assert merge_incident(make_incident(audience=None), None).audience == "none"
        assert merge_incident(make_incident(audience=None), make_incident(audience=None)).audience == "none"

    def test_incident_long_description_sections(self, make_incident):
        prior = make_incident(long_description=build_long_description("what", "old status", "impact"))
        event = make_incident(long_description=build_long_description("", "new status", ""))
        merged = merge_incident(event, prior)
        assert split_long_description(merged.long_description) == ("what", "new status", "impact")

    def test_identity_not_merged(self, make_incident):
        prior = make_incident(pnp_removed=True)
        assert merge_incident(make_incident(), prior).pnp_removed is False

    def test_maintenance_defaults(self, make_maintenance):
        merged = merge_maintenance(make_maintenance(disruptive=None, audience=None), None)
        assert merged.disruptive is False
        assert merged.audience == "none"

    def test_maintenance_inherits(self, make_maintenance):
        prior = make_maintenance(disruption_type="network")
        merged = merge_maintenance(make_maintenance(disruption_type=None), prior)
        assert merged.disruption_type == "network"
