"""
Structured error types for the materialization pipeline.

Every failure a message can hit is one of three things: the message itself is
unusable (malformed), the store refused the record (validation), or something
around us is temporarily broken (transient). The error classes here carry that
decision with them so the retry controller never has to guess from a message
string.

Manifesto:
    - **Typed hierarchy:** Permanent and transient failures are distinct classes
    - **Explicit retry semantics:** Each error knows if it's retryable
    - **Closed taxonomy:** Every error maps onto one ErrorTag for alerting
    - **Error chaining:** The original exception is kept as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                          PnpError                                │
        │          (tag, retryable, context, cause)                        │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  MalformedMessageError        StoreValidationError               │
        │  (permanent, bad-message)     (permanent, ValidationCode)        │
        │       │                                                          │
        │  DecryptionFailedError        TransientError                     │
        │  PayloadParseError            (retryable=True)                   │
        │  MissingFieldError                 │                             │
        │  BadTimestampError            StoreUnavailableError (DBFailure)  │
        │                               CatalogUnavailableError            │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> err = StoreValidationError(ValidationCode.BAD_STATE, "State is not valid")
    >>> err.retryable
    False
    >>> err.tag
    <ErrorTag.VALIDATION: 'ValidationError'>

    >>> try:
    ...     raise ConnectionRefusedError("pg down")
    ... except ConnectionRefusedError as e:
    ...     err = StoreUnavailableError("read failed", cause=e)
    >>> err.retryable
    True

Guardrails:
    ❌ DON'T: Raise StoreValidationError for connectivity problems
    ✅ DO: Wrap driver errors in StoreUnavailableError so they are retried

    ❌ DON'T: Retry a MalformedMessageError
    ✅ DO: Let the worker ack (or dead-letter) it and move on

Tags:
    error-handling, exception-hierarchy, retry-logic, taxonomy, pnp-ingest

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorTag(str, Enum):
    """Closed error taxonomy attached to spans and metrics."""

    DECRYPTION = "DecryptionError"
    PARSE = "ParseError"
    VALIDATION = "ValidationError"
    DB_FAILURE = "DBFailure"


class ValidationCode(str, Enum):
    """
    Closed set of reasons the store rejects a record.

    These are never retried: the same record would be rejected again.
    """

    NO_SERVICE = "NoService"
    NO_CNAME = "NoCname"
    BAD_CLASSIFICATION = "BadClassification"
    BAD_CRN_FORMAT = "BadCrnFormat"
    BAD_STATE = "BadState"
    NO_CRN = "NoCrn"
    NO_CRN_VERSION = "NoCrnVersion"
    NO_CTYPE = "NoCtype"
    NO_LOCATION = "NoLocation"
    NO_SOURCE = "NoSource"
    NO_SOURCE_ID = "NoSourceId"


class PnpError(Exception):
    """
    Base exception for pipeline errors.

    Subclasses set ``default_tag`` and ``default_retryable``. ``context`` is a
    flat dict merged into log events, so keep values small and never put
    payload text in it.
    """

    default_tag: ErrorTag | None = None
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        tag: ErrorTag | None = None,
        retryable: bool | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.tag = tag or self.default_tag
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = dict(context or {})
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> PnpError:
        """Add context to this error (fluent API)."""
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.tag is not None:
            result["error_tag"] = self.tag.value
        if self.context:
            result["context"] = dict(self.context)
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        tag = self.tag.value if self.tag else None
        return f"{self.__class__.__name__}({self.message!r}, tag={tag})"


# =============================================================================
# PERMANENT: BAD MESSAGE
# =============================================================================


class MalformedMessageError(PnpError):
    """The message cannot be turned into a record. Never retried."""

    default_tag = ErrorTag.PARSE


class DecryptionFailedError(MalformedMessageError):
    """Payload could not be decrypted under any configured key."""

    default_tag = ErrorTag.DECRYPTION


class PayloadParseError(MalformedMessageError):
    """Decrypted payload is not a JSON object, or a field has the wrong shape."""


class MissingFieldError(MalformedMessageError):
    """A required attribute is absent or empty."""

    def __init__(self, field_name: str, **kwargs: Any):
        super().__init__(f"required field {field_name!r} is missing", **kwargs)
        self.field_name = field_name


class BadTimestampError(MalformedMessageError):
    """Timestamp does not match the source grammar."""

    def __init__(self, field_name: str, value: Any, **kwargs: Any):
        super().__init__(f"field {field_name!r} has invalid timestamp {value!r}", **kwargs)
        self.field_name = field_name
        self.value = value


# =============================================================================
# PERMANENT: STORE VALIDATION
# =============================================================================


class StoreValidationError(PnpError):
    """The store rejected the record with a member of the closed code set."""

    default_tag = ErrorTag.VALIDATION

    def __init__(self, code: ValidationCode, message: str | None = None, **kwargs: Any):
        super().__init__(message or code.value, **kwargs)
        self.code = code

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["validation_code"] = self.code.value
        return result


# =============================================================================
# TRANSIENT
# =============================================================================


class TransientError(PnpError):
    """Temporary failure; the same attempt may succeed later."""

    default_retryable = True


class StoreUnavailableError(TransientError):
    """Database connectivity, contention or deadline failure."""

    default_tag = ErrorTag.DB_FAILURE


class CatalogUnavailableError(TransientError):
    """External catalog could not be reached and no cached copy exists."""


def is_retryable(error: BaseException) -> bool:
    """Check if an error should be retried.

    Non-PnpError exceptions are treated as transient: an unexpected failure in
    a collaborator is more likely an outage than a property of the message.
    """
    if isinstance(error, PnpError):
        return error.retryable
    return True


def error_tag(error: BaseException) -> ErrorTag | None:
    """Return the taxonomy tag for an error, if it has one."""
    if isinstance(error, PnpError):
        return error.tag
    return None
