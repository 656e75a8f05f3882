"""PnP Ingest Core -- shared primitives for the materialization pipeline.

Architecture::

    errors.py          Error hierarchy (PnpError, TransientError) + ErrorTag
    result.py          Attempt outcome (Ok / TransientErr / PermanentErr)
    settings.py        IngestSettings (pydantic-settings, PNP_ prefix)
    logging.py         structlog configuration and context helpers
    hashing.py         Record IDs and maintenance content hashes
    timestamps.py      Source timestamp grammar and comparison
"""

from pnp_ingest.core.errors import (
    ErrorTag,
    MalformedMessageError,
    PnpError,
    StoreUnavailableError,
    StoreValidationError,
    TransientError,
    ValidationCode,
)
from pnp_ingest.core.hashing import maintenance_record_hash, record_id
from pnp_ingest.core.result import Cancelled, Ok, Outcome, PermanentErr, PermanentKind, TransientErr

__all__ = [
    "Cancelled",
    "ErrorTag",
    "MalformedMessageError",
    "Ok",
    "Outcome",
    "PermanentErr",
    "PermanentKind",
    "PnpError",
    "StoreUnavailableError",
    "StoreValidationError",
    "TransientError",
    "ValidationCode",
    "maintenance_record_hash",
    "record_id",
]
