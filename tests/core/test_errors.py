"""Tests for ``pnp_ingest.core.errors``: taxonomy, retry flags, context."""

from __future__ import annotations

import pytest

from pnp_ingest.core.errors import (
    BadTimestampError,
    CatalogUnavailableError,
    DecryptionFailedError,
    ErrorTag,
    MalformedMessageError,
    MissingFieldError,
    PayloadParseError,
    PnpError,
    StoreUnavailableError,
    StoreValidationError,
    TransientError,
    ValidationCode,
    error_tag,
    is_retryable,
)


class TestTaxonomy:
    @pytest.mark.parametrize(
        "error, tag",
        [
            (DecryptionFailedError("x"), ErrorTag.DECRYPTION),
            (PayloadParseError("x"), ErrorTag.PARSE),
            (MissingFieldError("number"), ErrorTag.PARSE),
            (BadTimestampError("sys_updated_on", "soon"), ErrorTag.PARSE),
            (StoreValidationError(ValidationCode.NO_CRN), ErrorTag.VALIDATION),
            (StoreUnavailableError("down"), ErrorTag.DB_FAILURE),
        ],
    )
    def test_tags(self, error, tag):
        assert error.tag is tag
        assert error_tag(error) is tag

    def test_catalog_outage_has_no_tag(self):
        """Catalog outages are retried but not counted under a store tag."""
        assert error_tag(CatalogUnavailableError("catalog down")) is None

    def test_foreign_exception_has_no_tag(self):
        assert error_tag(ValueError("x")) is None

    def test_decryption_is_malformed(self):
        assert issubclass(DecryptionFailedError, MalformedMessageError)

    def test_validation_codes_are_closed(self):
        assert {code.value for code in ValidationCode} == {
            "NoService",
            "NoCname",
            "BadClassification",
            "BadCrnFormat",
            "BadState",
            "NoCrn",
            "NoCrnVersion",
            "NoCtype",
            "NoLocation",
            "NoSource",
            "NoSourceId",
        }


class TestRetryability:
    def test_malformed_not_retryable(self):
        assert is_retryable(PayloadParseError("not json")) is False

    def test_validation_not_retryable(self):
        assert is_retryable(StoreValidationError(ValidationCode.BAD_STATE)) is False

    def test_transient_retryable(self):
        assert is_retryable(StoreUnavailableError("down")) is True
        assert issubclass(CatalogUnavailableError, TransientError)

    def test_unknown_exceptions_are_transient(self):
        """Unexpected collaborator failures look like outages, not bad messages."""
        assert is_retryable(RuntimeError("boom")) is True

    def test_override_retryable(self):
        err = PnpError("x", retryable=True)
        assert err.retryable is True


class TestErrorDetails:
    def test_missing_field_message(self):
        err = MissingFieldError("crn")
        assert err.field_name == "crn"
        assert "'crn'" in err.message

    def test_bad_timestamp_keeps_value(self):
        err = BadTimestampError("sys_updated_on", "yesterday")
        assert err.field_name == "sys_updated_on"
        assert err.value == "yesterday"

    def test_validation_message_defaults_to_code(self):
        err = StoreValidationError(ValidationCode.NO_CRN)
        assert err.message == "NoCrn"
        assert err.to_dict()["validation_code"] == "NoCrn"

    def test_cause_chained(self):
        original = ConnectionRefusedError("refused")
        err = StoreUnavailableError("read failed", cause=original)
        assert err.__cause__ is original
        assert err.to_dict()["cause"] == "refused"

    def test_with_context_is_fluent(self):
        err = StoreUnavailableError("down").with_context(record_id="abc")
        assert err.context == {"record_id": "abc"}
        assert err.to_dict()["context"] == {"record_id": "abc"}

    def test_to_dict_shape(self):
        data = DecryptionFailedError("bad token").to_dict()
        assert data == {
            "error_type": "DecryptionFailedError",
            "message": "bad token",
            "retryable": False,
            "error_tag": "DecryptionError",
        }

    def test_repr(self):
        assert repr(StoreUnavailableError("down")) == "StoreUnavailableError('down', tag=DBFailure)"
