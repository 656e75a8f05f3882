"""
Shared pytest fixtures and configuration for pnp-ingest tests.

This module provides:
- A throwaway Fernet key and decoder
- A static service catalog with enabled, child, GaaS and disabled services
- An in-memory SQLite store seeded with one resource row
- Payload factories for incident and maintenance events

Usage:
    Fixtures are auto-discovered by pytest. Use them as test arguments:

    def test_insert(reconciler, make_incident):
        ...
"""

import sys
from pathlib import Path
from typing import Any, Callable

import pytest
from cryptography.fernet import Fernet

# Ensure pnp_ingest is importable without an editable install
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from pnp_ingest.core.hashing import record_id
from pnp_ingest.domain.catalog import CachedCatalog, CatalogEntry, StaticCatalogLoader
from pnp_ingest.domain.crn import EligibilityChecker
from pnp_ingest.domain.models import Incident, Maintenance
from pnp_ingest.pipeline.decoder import MessageDecoder
from pnp_ingest.pipeline.normalizer import Normalizer
from pnp_ingest.pipeline.reconciler import Reconciler
from pnp_ingest.storage.engine import create_ingest_engine, create_schema, ingest_session_factory
from pnp_ingest.storage.gateway import SqlStorageGateway
from pnp_ingest.storage.tables import ResourceRow

COS_CRN = "crn:v1:bluemix:public:cloud-object-storage:us-south::::"
KUBE_CRN = "crn:v1:bluemix:public:containers-kubernetes:eu-de::::"
GAAS_CRN = "crn:v1:staging:dedicated:gaas-program:::::"
DISABLED_CRN = "crn:v1:bluemix:public:internal-tool:us-south::::"

CATALOG_ENTRIES = [
    CatalogEntry("cloud-object-storage", pnp_enabled=True),
    CatalogEntry("containers-kubernetes", pnp_enabled=True),
    CatalogEntry("kube-dashboard", parent="containers-kubernetes"),
    CatalogEntry("gaas-program", entry_type="GAAS"),
    CatalogEntry("internal-tool", pnp_enabled=False),
]


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Decryption
# =============================================================================


@pytest.fixture
def fernet_key() -> bytes:
    return Fernet.generate_key()


@pytest.fixture
def decoder(fernet_key: bytes) -> MessageDecoder:
    return MessageDecoder([fernet_key])


# =============================================================================
# Catalog / CRNs
# =============================================================================


@pytest.fixture
def catalog() -> CachedCatalog:
    return CachedCatalog(StaticCatalogLoader(CATALOG_ENTRIES))


@pytest.fixture
def eligibility(catalog: CachedCatalog) -> EligibilityChecker:
    return EligibilityChecker(catalog)


@pytest.fixture
def normalizer(eligibility: EligibilityChecker) -> Normalizer:
    return Normalizer(eligibility)


# =============================================================================
# Storage
# =============================================================================


@pytest.fixture
def engine():
    """In-memory SQLite with the ingest schema and one COS resource."""
    engine = create_ingest_engine("sqlite://")
    create_schema(engine)
    with ingest_session_factory(engine).begin() as session:
        session.add(
            ResourceRow(
                record_id=record_id("resource", COS_CRN),
                crn_full=COS_CRN,
                cname="bluemix",
                ctype="public",
                service_name="cloud-object-storage",
                location="us-south",
                source="globalCatalog",
                source_id="cloud-object-storage",
            )
        )
    yield engine
    engine.dispose()


@pytest.fixture
def cos_resource_id() -> str:
    return record_id("resource", COS_CRN)


@pytest.fixture
def gateway(engine) -> SqlStorageGateway:
    return SqlStorageGateway(engine)


@pytest.fixture
def reconciler(gateway: SqlStorageGateway) -> Reconciler:
    return Reconciler(gateway)


# =============================================================================
# Records
# =============================================================================


@pytest.fixture
def make_incident() -> Callable[..., Incident]:
    """Factory for a publishable incident record."""

    def _make(source_id: str = "INC0012345", **overrides: Any) -> Incident:
        values: dict[str, Any] = {
            "record_id": record_id("servicenow", source_id),
            "source": "servicenow",
            "source_id": source_id,
            "source_creation_time": "2024-01-01T00:00:00Z",
            "source_update_time": "2024-01-01T00:00:01Z",
            "start_time": "2024-01-01T00:00:00Z",
            "short_description": "Object storage errors",
            "state": "new",
            "classification": "confirmed-cie",
            "severity": "1",
            "crns": (COS_CRN,),
            "audience": "public",
        }
        values.update(overrides)
        return Incident(**values)

    return _make


@pytest.fixture
def make_maintenance() -> Callable[..., Maintenance]:
    """Factory for a publishable, scheduled maintenance record."""

    def _make(source_id: str = "CHG0001000", **overrides: Any) -> Maintenance:
        values: dict[str, Any] = {
            "record_id": record_id("servicenow", source_id),
            "source": "servicenow",
            "source_id": source_id,
            "source_creation_time": "2024-02-01T00:00:00Z",
            "source_update_time": "2024-02-01T00:00:01Z",
            "start_time": "2024-02-01T10:00:00Z",
            "end_time": "2024-02-01T12:00:00Z",
            "short_description": "Storage firmware upgrade",
            "state": "scheduled",
            "disruptive": True,
            "crns": (COS_CRN,),
            "maintenance_duration": 120,
            "disruption_duration": 30,
        }
        values.update(overrides)
        return Maintenance(**values)

    return _make


# =============================================================================
# Payloads (decoded attribute maps)
# =============================================================================


@pytest.fixture
def incident_payload() -> Callable[..., dict[str, Any]]:
    """Factory for a ServiceNow incident attribute map."""

    def _make(**overrides: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "number": "INC0012345",
            "sys_created_on": "2024-01-01 00:00:00",
            "sys_updated_on": "2024-01-01 00:00:01",
            "u_disruption_began": "2024-01-01 00:00:00",
            "short_description": "Object storage errors",
            "description": "Requests are failing",
            "u_current_status": "Investigating",
            "u_description_customer_impact": "Uploads fail",
            "incident_state": "New",
            "u_status": "Confirmed CIE",
            "priority": "Sev - 1",
            "crn": ["CRN:V1:BLUEMIX:PUBLIC:cloud-object-storage:us-south::::"],
            "u_audience": "Public",
            "u_targeted_notification_url": "https://status.example.com/incidents/$SN_RECORD_ID",
        }
        payload.update(overrides)
        return {k: v for k, v in payload.items() if v is not None}

    return _make


@pytest.fixture
def maintenance_payload() -> Callable[..., dict[str, Any]]:
    """Factory for a ServiceNow change-request attribute map."""

    def _make(**overrides: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "number": "CHG0001000",
            "sys_created_on": "2024-02-01 00:00:00",
            "sys_updated_on": "2024-02-01 00:00:01",
            "planned_start": "2024-02-01 10:00:00",
            "planned_end": "2024-02-01 12:00:00",
            "short_description": "Storage firmware upgrade",
            "state": "Scheduled",
            "u_outage_duration": "1800",
            "crn": [COS_CRN],
        }
        payload.update(overrides)
        return {k: v for k, v in payload.items() if v is not None}

    return _make
