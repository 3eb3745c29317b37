"""Tests for identifier normalizers and the secure id codec."""

import pytest
from bson import ObjectId

from dbforge.errors import InvalidIdentifierError
from dbforge.persistence import (
    IdNormalizer,
    IntegerIdNormalizer,
    ObjectIdNormalizer,
    SecureIdCodec,
    StringIdNormalizer,
)


class TestNormalizers:
    @pytest.mark.parametrize(
        "normalizer,canonical",
        [
            (StringIdNormalizer(), "abc-123"),
            (IntegerIdNormalizer(), "42"),
            (IntegerIdNormalizer(), "-7"),
            (ObjectIdNormalizer(), "65f1c0ffee0123456789abcd"),
        ],
    )
    def test_round_trip(self, normalizer, canonical):
        assert isinstance(normalizer, IdNormalizer)
        assert normalizer.to_string(normalizer.to_native(canonical)) == canonical

    def test_string_rejects_empty_and_bool(self):
        with pytest.raises(InvalidIdentifierError):
            StringIdNormalizer().to_native("")
        with pytest.raises(InvalidIdentifierError):
            StringIdNormalizer().to_native(True)

    @pytest.mark.parametrize("value", ["abc", "01", "1.5", "", True])
    def test_integer_rejects(self, value):
        with pytest.raises(InvalidIdentifierError):
            IntegerIdNormalizer().to_native(value)

    def test_integer_native(self):
        assert IntegerIdNormalizer().to_native("15") == 15
        assert IntegerIdNormalizer().to_native(15) == 15

    @pytest.mark.parametrize("value", ["xyz", "65F1C0FFEE0123456789ABCD", "65f1c0ffee0123", 12])
    def test_object_id_rejects(self, value):
        with pytest.raises(InvalidIdentifierError):
            ObjectIdNormalizer().to_native(value)

    def test_object_id_passthrough(self):
        oid = ObjectId()
        assert ObjectIdNormalizer().to_native(oid) is oid


class TestSecureIdCodec:
    def test_round_trip_and_determinism(self):
        codec = SecureIdCodec("s3cret")
        token = codec.encode("user-42")
        assert token != "user-42"
        assert codec.encode("user-42") == token
        assert codec.decode(token) == "user-42"

    def test_url_safe(self):
        token = SecureIdCodec("s3cret").encode("a" * 40)
        assert "=" not in token
        assert "/" not in token and "+" not in token

    def test_other_secret_rejected(self):
        token = SecureIdCodec("one").encode("42")
        with pytest.raises(InvalidIdentifierError, match="signature"):
            SecureIdCodec("two").decode(token)

    def test_tampered_token(self):
        codec = SecureIdCodec("s3cret")
        token = codec.encode("12345")
        tampered = ("B" if token[0] == "A" else "A") + token[1:]
        with pytest.raises(InvalidIdentifierError):
            codec.decode(tampered)

    @pytest.mark.parametrize("token", ["", "abc", None, 5])
    def test_garbage(self, token):
        with pytest.raises(InvalidIdentifierError):
            SecureIdCodec("s3cret").decode(token)

    def test_empty_secret(self):
        with pytest.raises(ValueError):
            SecureIdCodec("")
