"""
Attempt outcomes for one pass through the pipeline.

A pipeline attempt ends in exactly one of three ways, and the retry controller
only needs to know which:

- ``Ok(value)``: the message was materialized (or deliberately skipped)
- ``TransientErr(error)``: something around us failed; try again later
- ``PermanentErr(error, kind)``: the message can never succeed

``Cancelled`` is a fourth, controller-only outcome: shutdown interrupted the
retry loop before a final answer.

Examples:
    >>> from pnp_ingest.core.errors import StoreUnavailableError
    >>> from pnp_ingest.core.result import Ok, classify
    >>> classify(StoreUnavailableError("down")).is_final()
    False
    >>> match Ok(42):
    ...     case Ok(value):
    ...         print(value)
    42

Tags:
    result-type, outcome, retry-logic, pnp-ingest
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from pnp_ingest.core.errors import MalformedMessageError, StoreValidationError, is_retryable

T = TypeVar("T")


class PermanentKind(str, Enum):
    """Why a message was given up on."""

    BAD_MESSAGE = "bad-message"
    VALIDATION_FAILURE = "validation-failure"


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful attempt."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_final(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class TransientErr:
    """Attempt failed for a reason worth retrying."""

    error: BaseException

    def is_ok(self) -> bool:
        return False

    def is_final(self) -> bool:
        return False


@dataclass(frozen=True, slots=True)
class PermanentErr:
    """Attempt failed for a reason that retrying cannot fix."""

    error: BaseException
    kind: PermanentKind

    def is_ok(self) -> bool:
        return False

    def is_final(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Cancelled:
    """Retry loop was interrupted by shutdown."""

    attempts: int
    last_error: BaseException | None = None

    def is_ok(self) -> bool:
        return False

    def is_final(self) -> bool:
        return False


Outcome = Ok[Any] | TransientErr | PermanentErr


def classify(error: BaseException) -> TransientErr | PermanentErr:
    """Map a raised error onto the matching outcome variant."""
    if isinstance(error, StoreValidationError):
        return PermanentErr(error, PermanentKind.VALIDATION_FAILURE)
    if isinstance(error, MalformedMessageError):
        return PermanentErr(error, PermanentKind.BAD_MESSAGE)
    if is_retryable(error):
        return TransientErr(error)
    return PermanentErr(error, PermanentKind.BAD_MESSAGE)
