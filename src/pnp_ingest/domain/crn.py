"""
Cloud Resource Names (CRNs).

A CRN is ten colon-separated fields::

    crn:v1:bluemix:public:cloud-object-storage:us-south:a/123:inst:bucket:photos
    │   │  │       │      │                    │        │     │    │      └ resource
    │   │  │       │      │                    │        │     │    └ resource type
    │   │  │       │      │                    │        │     └ service instance
    │   │  │       │      │                    │        └ scope
    │   │  │       │      │                    └ location
    │   │  │       │      └ service name
    │   │  │       └ ctype
    │   │  └ cname
    │   └ version
    └ scheme

Events reference resources by CRN. Before an event is stored every CRN is
normalized (lowercase, legacy ``softlayer`` cname rewritten to ``bluemix``),
coalesced onto its status-page parent service, de-duplicated, and filtered
down to the ones the public status surface may show.

Examples:
    >>> normalize_crn("CRN:V1:SOFTLAYER:public:is:us-east::::")
    'crn:v1:bluemix:public:is:us-east::::'
    >>> parse_crn("crn:v1:bluemix:public:is:us-east::::").service
    'is'
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace

from pnp_ingest.core.errors import ValidationCode
from pnp_ingest.core.logging import get_logger
from pnp_ingest.domain.catalog import CatalogClient

logger = get_logger(__name__)

CRN_SCHEME = "crn"
CRN_SEPARATOR = ":"
CRN_FIELD_COUNT = 10
PUBLIC_CNAME = "bluemix"
PUBLIC_CTYPE = "public"
LEGACY_PREFIX = "crn:v1:softlayer:"
CANONICAL_PREFIX = "crn:v1:bluemix:"


class InvalidCRNError(ValueError):
    """Text is not a ten-field CRN."""


@dataclass(frozen=True)
class CRN:
    scheme: str
    version: str
    cname: str
    ctype: str
    service: str
    location: str
    scope: str
    service_instance: str
    resource_type: str
    resource: str

    def __str__(self) -> str:
        return CRN_SEPARATOR.join(
            (
                self.scheme,
                self.version,
                self.cname,
                self.ctype,
                self.service,
                self.location,
                self.scope,
                self.service_instance,
                self.resource_type,
                self.resource,
            )
        )

    @property
    def key(self) -> tuple[str, str]:
        """Comparison key used to join against the resource table."""
        return (self.service, self.location)

    @property
    def is_public(self) -> bool:
        return self.cname == PUBLIC_CNAME and self.ctype == PUBLIC_CTYPE

    def with_service(self, service: str) -> CRN:
        return replace(self, service=service)


def parse_crn(text: str) -> CRN:
    """Split *text* into its ten fields.

    Raises:
        InvalidCRNError: wrong field count or scheme.
    """
    parts = text.split(CRN_SEPARATOR)
    if len(parts) != CRN_FIELD_COUNT:
        raise InvalidCRNError(f"expected {CRN_FIELD_COUNT} fields, got {len(parts)}: {text!r}")
    if parts[0] != CRN_SCHEME:
        raise InvalidCRNError(f"scheme must be {CRN_SCHEME!r}: {text!r}")
    return CRN(*parts)


def normalize_crn(text: str) -> str:
    """Lowercase and rewrite the legacy cname. Idempotent."""
    text = text.strip().lower()
    if text.startswith(LEGACY_PREFIX):
        text = CANONICAL_PREFIX + text[len(LEGACY_PREFIX):]
    return text


def service_of(text: str) -> str:
    """Service name of a CRN, or ``""`` if it does not parse."""
    try:
        return parse_crn(text).service
    except InvalidCRNError:
        return ""


def check_crn_format(text: str) -> ValidationCode | None:
    """Structural check applied by the store before any write.

    Returns the first matching validation code, or ``None`` if *text* is
    acceptable. Non-public (GaaS) CRNs may legitimately omit ctype and
    location; a ``bluemix`` CRN may not.
    """
    try:
        crn = parse_crn(text)
    except InvalidCRNError:
        return ValidationCode.BAD_CRN_FORMAT
    if not crn.version:
        return ValidationCode.NO_CRN_VERSION
    if not crn.service:
        return ValidationCode.NO_SERVICE
    if not crn.cname and crn.ctype:
        return ValidationCode.NO_CNAME
    if crn.cname == PUBLIC_CNAME:
        if not crn.ctype:
            return ValidationCode.NO_CTYPE
        if not crn.location:
            return ValidationCode.NO_LOCATION
    return None


class EligibilityChecker:
    """Decides which CRNs an event may carry into the store.

    A CRN is eligible when it parses and either

    - it is a public-cloud CRN whose service is PnP-enabled in the catalog,
    - its service is a catalog-registered GaaS program, or
    - its service is the heartbeat service used for end-to-end checks.
    """

    def __init__(self, catalog: CatalogClient, heartbeat_service: str = "pnp-api-oss"):
        self._catalog = catalog
        self._heartbeat_service = heartbeat_service

    def is_eligible(self, text: str) -> bool:
        try:
            crn = parse_crn(normalize_crn(text))
        except InvalidCRNError:
            return False
        if crn.service == self._heartbeat_service:
            return True
        if not crn.service:
            return False
        if crn.is_public and self._catalog.is_pnp_enabled(crn.service):
            return True
        return self._catalog.is_gaas(crn.service)

    def coalesce(self, text: str) -> str:
        """Rewrite the service of *text* to its status-page parent, if any.

        Raises:
            CatalogUnavailableError: the catalog could not answer; the message
                is retried rather than stored under the child service.
        """
        try:
            crn = parse_crn(text)
        except InvalidCRNError:
            return text
        parent = self._catalog.status_page_parent(crn.service)
        if parent and parent != crn.service:
            return str(crn.with_service(parent))
        return text

    def normalize_all(self, crns: Iterable[str]) -> tuple[str, ...]:
        """Normalize, coalesce, de-duplicate and filter a CRN list.

        Order of first appearance is preserved.
        """
        seen: dict[str, None] = {}
        for raw in crns:
            if not isinstance(raw, str) or not raw.strip():
                continue
            text = self.coalesce(normalize_crn(raw))
            seen.setdefault(text, None)

        eligible = []
        for text in seen:
            if self.is_eligible(text):
                eligible.append(text)
            else:
                logger.info("crn.dropped", crn=text, reason="not eligible")
        return tuple(eligible)
