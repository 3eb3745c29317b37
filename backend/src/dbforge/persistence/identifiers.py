"""Identifier normalization between canonical strings and backend-native ids.

Every identifier crossing the adapter boundary goes through a normalizer:
``to_native`` on the way in, ``to_string`` on the way out. For valid ids
``to_string(to_native(s)) == s``.
"""

import base64
import hashlib
import hmac
import re
from typing import Any, Protocol, runtime_checkable

from bson import ObjectId
from bson.errors import InvalidId

from dbforge.errors import InvalidIdentifierError

_DECIMAL_PATTERN = re.compile(r"^(0|-?[1-9][0-9]*)$")
_OBJECT_ID_PATTERN = re.compile(r"^[0-9a-f]{24}$")


@runtime_checkable
class IdNormalizer(Protocol):
    """Converts identifiers between canonical string form and native form."""

    def to_native(self, value: Any) -> Any:
        """Validate and convert a canonical id. Raises InvalidIdentifierError."""
        ...

    def to_string(self, value: Any) -> str:
        """Convert a native id to its canonical string."""
        ...


class StringIdNormalizer:
    """Text primary keys: any non-empty string."""

    def to_native(self, value: Any) -> str:
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise InvalidIdentifierError(value, "expected a string")
        text = str(value)
        if not text:
            raise InvalidIdentifierError(value, "empty identifier")
        return text

    def to_string(self, value: Any) -> str:
        return str(value)


class IntegerIdNormalizer:
    """Integer primary keys, canonical form is the decimal string."""

    def to_native(self, value: Any) -> int:
        if isinstance(value, bool):
            raise InvalidIdentifierError(value, "expected an integer")
        if isinstance(value, int):
            return value
        if isinstance(value, str) and _DECIMAL_PATTERN.match(value):
            return int(value)
        raise InvalidIdentifierError(value, "expected a decimal integer")

    def to_string(self, value: Any) -> str:
        return str(int(value))


class ObjectIdNormalizer:
    """MongoDB ObjectIds, canonical form is 24 lowercase hex characters."""

    def to_native(self, value: Any) -> ObjectId:
        if isinstance(value, ObjectId):
            return value
        if not isinstance(value, str) or not _OBJECT_ID_PATTERN.match(value):
            raise InvalidIdentifierError(value, "expected 24 lowercase hex characters")
        try:
            return ObjectId(value)
        except InvalidId as exc:
            raise InvalidIdentifierError(value, str(exc)) from exc

    def to_string(self, value: Any) -> str:
        return str(value)


class SecureIdCodec:
    """Reversible, keyed obfuscation of identifiers.

    Tokens are deterministic: the same id and secret always give the same
    token, so encoded ids can be compared and used in filters. Layout is
    ``base64url(tag || ciphertext)`` where the tag is a truncated HMAC of
    the plaintext and seeds the keystream.
    """

    TAG_SIZE = 6

    def __init__(self, secret: str | bytes):
        if not secret:
            raise ValueError("SecureIdCodec requires a non-empty secret")
        self.secret = secret.encode() if isinstance(secret, str) else secret

    def encode(self, value: Any) -> str:
        if value is None:
            raise InvalidIdentifierError(value, "cannot encode an empty identifier")
        plaintext = str(value).encode()
        tag = self._mac(b"tag:" + plaintext)[: self.TAG_SIZE]
        ciphertext = bytes(a ^ b for a, b in zip(plaintext, self._keystream(tag, len(plaintext))))
        return base64.urlsafe_b64encode(tag + ciphertext).rstrip(b"=").decode()

    def decode(self, token: Any) -> str:
        if not isinstance(token, str) or not token:
            raise InvalidIdentifierError(token, "expected an encoded identifier")
        try:
            raw = base64.urlsafe_b64decode(token + "=" * (-len(token) % 4))
        except (ValueError, TypeError) as exc:
            raise InvalidIdentifierError(token, "not a valid encoded identifier") from exc
        if len(raw) <= self.TAG_SIZE:
            raise InvalidIdentifierError(token, "not a valid encoded identifier")
        tag, ciphertext = raw[: self.TAG_SIZE], raw[self.TAG_SIZE :]
        plaintext = bytes(a ^ b for a, b in zip(ciphertext, self._keystream(tag, len(ciphertext))))
        expected = self._mac(b"tag:" + plaintext)[: self.TAG_SIZE]
        if not hmac.compare_digest(tag, expected):
            raise InvalidIdentifierError(token, "signature mismatch")
        try:
            return plaintext.decode()
        except UnicodeDecodeError as exc:
            raise InvalidIdentifierError(token, "not a valid encoded identifier") from exc

    def _mac(self, payload: bytes) -> bytes:
        return hmac.new(self.secret, payload, hashlib.sha256).digest()

    def _keystream(self, tag: bytes, length: int) -> bytes:
        blocks = []
        counter = 0
        while sum(len(b) for b in blocks) < length:
            blocks.append(self._mac(b"key:" + tag + counter.to_bytes(4, "big")))
            counter += 1
        return b"".join(blocks)[:length]
