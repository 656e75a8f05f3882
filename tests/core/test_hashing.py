"""Tests for ``pnp_ingest.core.hashing``."""

from __future__ import annotations

import hashlib

from pnp_ingest.core.hashing import maintenance_record_hash, record_id


class TestRecordId:
    def test_deterministic(self):
        assert record_id("servicenow", "INC1") == record_id("servicenow", "INC1")

    def test_matches_sha256_of_joined_key(self):
        assert record_id("servicenow", "INC1") == hashlib.sha256(b"servicenow+INC1").hexdigest()

    def test_source_matters(self):
        assert record_id("servicenow", "INC1") != record_id("other", "INC1")


class TestMaintenanceRecordHash:
    def test_ignores_source_times(self, make_maintenance):
        first = make_maintenance()
        replay = first.evolve(source_update_time="2030-01-01T00:00:00Z", source_creation_time=None)
        assert maintenance_record_hash(first) == maintenance_record_hash(replay)

    def test_content_changes_hash(self, make_maintenance):
        first = make_maintenance()
        assert maintenance_record_hash(first) != maintenance_record_hash(first.evolve(short_description="new"))
        assert maintenance_record_hash(first) != maintenance_record_hash(first.evolve(pnp_removed=True))

    def test_crn_order_irrelevant(self, make_maintenance):
        a = "crn:v1:bluemix:public:a:us-south::::"
        b = "crn:v1:bluemix:public:b:us-south::::"
        assert maintenance_record_hash(make_maintenance(crns=(a, b))) == maintenance_record_hash(
            make_maintenance(crns=(b, a))
        )

    def test_record_hash_field_ignored(self, make_maintenance):
        first = make_maintenance()
        assert maintenance_record_hash(first) == maintenance_record_hash(first.evolve(record_hash="abc"))
