"""
Tests for the gateway signature codec.

Tests: canonicalization schemes, HMAC encodings, verification failure modes.
"""
import base64
import hashlib
import hmac

import pytest

from services.signature_service import (
    CALLBACK_CONCAT_FIELDS,
    SignatureCodec,
    SignatureEncoding,
    SignatureScheme,
    callback_codec,
    canonicalize,
    outbound_codec,
)

SECRET = "s3cret"
FIELDS = [
    ("random_nr", "abc123"),
    ("platform_order_id", "ECO123456789"),
    ("total_amount", "300.00"),
    ("currency", "TL"),
]


def _hmac(canonical: str) -> bytes:
    return hmac.new(SECRET.encode(), canonical.encode(), hashlib.sha256).digest()


class TestCanonicalize:

    @pytest.mark.unit
    def test_sorted_key_value_sorts_and_joins(self):
        result = canonicalize([("b", "2"), ("a", "1"), ("c", "3")], SignatureScheme.SORTED_KEY_VALUE)
        assert result == "a=1&b=2&c=3"

    @pytest.mark.unit
    def test_sorted_key_value_excludes_signature(self):
        result = canonicalize([("a", "1"), ("signature", "zzz")], SignatureScheme.SORTED_KEY_VALUE)
        assert result == "a=1"

    @pytest.mark.unit
    def test_concatenated_uses_fixed_order(self):
        shuffled = list(reversed(FIELDS))
        result = canonicalize(
            shuffled,
            SignatureScheme.CONCATENATED,
            concat_order=("random_nr", "platform_order_id", "total_amount", "currency"),
        )
        assert result == "abc123ECO123456789300.00TL"

    @pytest.mark.unit
    def test_concatenated_missing_field_is_empty(self):
        result = canonicalize([("a", "1")], SignatureScheme.CONCATENATED, concat_order=("a", "b"))
        assert result == "1"

    @pytest.mark.unit
    def test_schemes_are_not_interchangeable(self):
        """The same fields sign differently under the two schemes."""
        kv = SignatureCodec(SECRET, "sorted_key_value", "hex")
        concat = SignatureCodec(SECRET, "concatenated", "hex", concat_order=[k for k, _ in FIELDS])
        assert kv.sign(FIELDS) != concat.sign(FIELDS)
        assert not concat.verify(FIELDS, kv.sign(FIELDS))


class TestSignatureCodec:

    @pytest.mark.unit
    def test_hex_matches_reference_hmac(self):
        codec = SignatureCodec(SECRET, SignatureScheme.SORTED_KEY_VALUE, SignatureEncoding.HEX)
        expected = _hmac(canonicalize(FIELDS, SignatureScheme.SORTED_KEY_VALUE)).hex()
        assert codec.sign(FIELDS) == expected

    @pytest.mark.unit
    def test_base64_matches_reference_hmac(self):
        codec = SignatureCodec(SECRET, SignatureScheme.SORTED_KEY_VALUE, SignatureEncoding.BASE64)
        digest = _hmac(canonicalize(FIELDS, SignatureScheme.SORTED_KEY_VALUE))
        assert codec.sign(FIELDS) == base64.b64encode(digest).decode()

    @pytest.mark.unit
    def test_sign_is_deterministic(self):
        codec = SignatureCodec(SECRET, "sorted_key_value", "base64")
        assert codec.sign(FIELDS) == codec.sign(list(FIELDS))

    @pytest.mark.unit
    def test_utf8_values(self):
        codec = SignatureCodec(SECRET, "sorted_key_value", "hex")
        fields = [("buyer_name", "Şükrü Öztürk")]
        assert codec.sign(fields) == _hmac("buyer_name=Şükrü Öztürk").hex()

    @pytest.mark.unit
    def test_verify_accepts_valid(self):
        codec = SignatureCodec(SECRET, "sorted_key_value", "base64")
        assert codec.verify(FIELDS, codec.sign(FIELDS)) is True

    @pytest.mark.unit
    def test_verify_hex_is_case_insensitive(self):
        codec = SignatureCodec(SECRET, "sorted_key_value", "hex")
        assert codec.verify(FIELDS, codec.sign(FIELDS).upper()) is True

    @pytest.mark.unit
    def test_verify_rejects_tampered_field(self):
        codec = SignatureCodec(SECRET, "sorted_key_value", "base64")
        signature = codec.sign(FIELDS)
        tampered = [(k, "1.00" if k == "total_amount" else v) for k, v in FIELDS]
        assert codec.verify(tampered, signature) is False

    @pytest.mark.unit
    def test_verify_rejects_wrong_secret(self):
        signer = SignatureCodec("other-secret", "sorted_key_value", "base64")
        verifier = SignatureCodec(SECRET, "sorted_key_value", "base64")
        assert verifier.verify(FIELDS, signer.sign(FIELDS)) is False

    @pytest.mark.unit
    @pytest.mark.parametrize("received", [None, "", "not-base64-at-all!!"])
    def test_verify_rejects_missing_or_garbage(self, received):
        codec = SignatureCodec(SECRET, "sorted_key_value", "base64")
        assert codec.verify(FIELDS, received) is False

    @pytest.mark.unit
    def test_verify_fails_closed_without_secret(self):
        codec = SignatureCodec("", "sorted_key_value", "base64")
        assert codec.verify(FIELDS, "anything") is False

    @pytest.mark.unit
    def test_sign_without_secret_raises(self):
        codec = SignatureCodec("", "sorted_key_value", "base64")
        with pytest.raises(ValueError):
            codec.sign(FIELDS)

    @pytest.mark.unit
    def test_unknown_scheme_rejected(self):
        with pytest.raises(ValueError):
            SignatureCodec(SECRET, "md5-of-everything", "hex")


class TestConfiguredCodecs:

    @pytest.mark.unit
    def test_encodings_follow_config_per_side(self, gateway_config):
        from dataclasses import replace

        config = replace(gateway_config, outbound_encoding="hex", callback_encoding="base64")
        assert outbound_codec(config).encoding is SignatureEncoding.HEX
        assert callback_codec(config).encoding is SignatureEncoding.BASE64

    @pytest.mark.unit
    def test_callback_concat_order_includes_outcome(self, gateway_config):
        codec = callback_codec(gateway_config)
        assert codec.concat_order == CALLBACK_CONCAT_FIELDS
        assert "status" in codec.concat_order and "payment_id" in codec.concat_order
