"""Domain records, resource identifiers and the external service catalog."""

from pnp_ingest.domain.catalog import CachedCatalog, CatalogClient, CatalogEntry
from pnp_ingest.domain.crn import CRN, EligibilityChecker, normalize_crn, parse_crn
from pnp_ingest.domain.models import (
    AUDIENCE_NONE,
    Classification,
    EventKind,
    Incident,
    IncidentState,
    Maintenance,
    MaintenanceState,
    NotificationIntent,
)

__all__ = [
    "AUDIENCE_NONE",
    "CRN",
    "CachedCatalog",
    "CatalogClient",
    "CatalogEntry",
    "Classification",
    "EligibilityChecker",
    "EventKind",
    "Incident",
    "IncidentState",
    "Maintenance",
    "MaintenanceState",
    "NotificationIntent",
    "normalize_crn",
    "parse_crn",
]
