"""
Signature codec for the hosted payment gateway.

Computes and verifies the HMAC-SHA256 signature the gateway uses to
authenticate both the outbound payment form and the inbound callback.

Two canonicalization schemes exist and they are NOT interchangeable:

    concatenated       values of a fixed, ordered subset of fields joined with
                       no separator (e.g. random_nr + order id + amount + currency)
    sorted_key_value   every field except `signature`, sorted by key and
                       joined as key=value pairs with "&"

A deployment selects exactly one scheme (GATEWAY_SIGNATURE_SCHEME) and it is
used on both sides of the exchange. The output encoding is chosen per side,
because the form field and the callback field may be encoded differently.

Verification never raises: a missing secret, a missing signature or a
mismatch all return False and the caller decides what to do.
"""
import base64
import hashlib
import hmac
import logging
from enum import Enum
from typing import Iterable, Sequence

logger = logging.getLogger(__name__)

SIGNATURE_FIELD = "signature"

# Field order for the concatenated scheme
OUTBOUND_CONCAT_FIELDS = ("random_nr", "platform_order_id", "total_amount", "currency")
CALLBACK_CONCAT_FIELDS = (
    "random_nr",
    "platform_order_id",
    "total_amount",
    "currency",
    "status",
    "payment_id",
)


class SignatureScheme(str, Enum):
    CONCATENATED = "concatenated"
    SORTED_KEY_VALUE = "sorted_key_value"


class SignatureEncoding(str, Enum):
    HEX = "hex"
    BASE64 = "base64"


Fields = Sequence[tuple[str, str]]


def canonicalize(
    fields: Fields,
    scheme: SignatureScheme,
    concat_order: Iterable[str] = (),
) -> str:
    """
    Build the canonical string that gets signed.

    `concat_order` is only used by the concatenated scheme; fields it names
    that are absent contribute an empty string.
    """
    scheme = SignatureScheme(scheme)
    if scheme is SignatureScheme.CONCATENATED:
        values = dict(fields)
        return "".join(values.get(name, "") for name in concat_order)

    pairs = sorted((k, v) for k, v in fields if k != SIGNATURE_FIELD)
    return "&".join(f"{k}={v}" for k, v in pairs)


class SignatureCodec:
    """HMAC-SHA256 signer/verifier bound to one secret, scheme and encoding."""

    def __init__(
        self,
        secret: str,
        scheme: SignatureScheme | str,
        encoding: SignatureEncoding | str,
        concat_order: Sequence[str] = (),
    ):
        self.secret = secret
        self.scheme = SignatureScheme(scheme)
        self.encoding = SignatureEncoding(encoding)
        self.concat_order = tuple(concat_order)

    def _digest(self, canonical: str) -> bytes:
        return hmac.new(
            self.secret.encode("utf-8"),
            canonical.encode("utf-8"),
            hashlib.sha256,
        ).digest()

    def _encode(self, digest: bytes) -> str:
        if self.encoding is SignatureEncoding.HEX:
            return digest.hex()
        return base64.b64encode(digest).decode("ascii")

    def sign(self, fields: Fields) -> str:
        """Return the encoded signature for `fields`."""
        if not self.secret:
            raise ValueError("Gateway secret is not configured; cannot sign payment requests")
        canonical = canonicalize(fields, self.scheme, self.concat_order)
        return self._encode(self._digest(canonical))

    def verify(self, fields: Fields, received: str | None) -> bool:
        """
        Check `received` against the signature recomputed over `fields`.

        FAILS CLOSED when the secret is not configured.
        """
        if not self.secret:
            logger.error("Gateway secret not configured — rejecting signature")
            return False
        if not received:
            logger.warning("Signature missing from gateway message")
            return False

        expected = self._encode(self._digest(canonicalize(fields, self.scheme, self.concat_order)))
        if self.encoding is SignatureEncoding.HEX:
            received = received.strip().lower()
        else:
            received = received.strip()
        return hmac.compare_digest(expected.encode("ascii"), received.encode("utf-8"))


def outbound_codec(config) -> SignatureCodec:
    """Codec for the payment form we send to the gateway."""
    return SignatureCodec(
        secret=config.secret,
        scheme=config.signature_scheme,
        encoding=config.outbound_encoding,
        concat_order=OUTBOUND_CONCAT_FIELDS,
    )


def callback_codec(config) -> SignatureCodec:
    """Codec for the callback the gateway sends to us."""
    return SignatureCodec(
        secret=config.secret,
        scheme=config.signature_scheme,
        encoding=config.callback_encoding,
        concat_order=CALLBACK_CONCAT_FIELDS,
    )
