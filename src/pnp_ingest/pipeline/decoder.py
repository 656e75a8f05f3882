"""
MessageDecoder: encrypted bus payload to attribute map.

Payloads are Fernet tokens (AES-128-CBC + HMAC-SHA256) wrapping a UTF-8 JSON
object. Several keys can be configured for rotation; the first one is used to
encrypt and every one is tried to decrypt.

The decoder keeps JSON's own absent-versus-empty distinction: a key missing
from the document is missing from the map, ``""`` stays ``""``. JSON ``null``
is dropped so it behaves like an absent key.

Examples:
    >>> from cryptography.fernet import Fernet
    >>> key = Fernet.generate_key()
    >>> decoder = MessageDecoder([key])
    >>> decoder.decode(decoder.encrypt({"number": "INC001", "u_audience": ""}))
    {'number': 'INC001', 'u_audience': ''}
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from pnp_ingest.core.errors import DecryptionFailedError, PayloadParseError
from pnp_ingest.core.logging import get_logger

logger = get_logger(__name__)

AttributeMap = dict[str, Any]


def _drop_nulls(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _drop_nulls(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_drop_nulls(v) for v in value]
    return value


class MessageDecoder:
    """Decrypts and parses bus payloads."""

    def __init__(self, keys: Sequence[bytes | str]):
        if not keys:
            raise ValueError("at least one encryption key is required")
        try:
            self._fernet = MultiFernet([Fernet(key) for key in keys])
        except ValueError as exc:
            raise ValueError(f"invalid encryption key: {exc}") from exc

    def decrypt(self, payload: bytes) -> bytes:
        try:
            return self._fernet.decrypt(payload)
        except (InvalidToken, TypeError) as exc:
            raise DecryptionFailedError("payload could not be decrypted", cause=exc) from exc

    def parse(self, plaintext: bytes) -> AttributeMap:
        try:
            document = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise PayloadParseError(f"payload is not valid JSON: {exc}", cause=exc) from exc
        if not isinstance(document, dict):
            raise PayloadParseError(f"payload must be a JSON object, got {type(document).__name__}")
        return _drop_nulls(document)

    def decode(self, payload: bytes) -> AttributeMap:
        """Decrypt then parse.

        Raises:
            DecryptionFailedError: no configured key opens the token.
            PayloadParseError: the plaintext is not a JSON object.
        """
        return self.parse(self.decrypt(payload))

    def encrypt(self, document: AttributeMap) -> bytes:
        """Encrypt *document* with the primary key (producer side and tests)."""
        return self._fernet.encrypt(json.dumps(document).encode("utf-8"))
