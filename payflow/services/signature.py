"""Przelewy24 request/notification signatures.

P24 signs a JSON object built from a fixed, per-operation list of fields with
the shop's CRC key appended as the last member, hashed with SHA-384 (hex).
Key order and JSON formatting are part of the contract: compact separators,
unicode and slashes left unescaped (PHP's JSON_UNESCAPED_UNICODE |
JSON_UNESCAPED_SLASHES, which ``json.dumps(..., ensure_ascii=False)`` matches).
"""
import enum
import hashlib
import hmac
import json
from typing import Any, Mapping

from payflow.core.errors import ValidationError


class SignedOperation(str, enum.Enum):
    REGISTER = "register"
    NOTIFICATION = "notification"
    VERIFY = "verify"
    REFUND = "refund"


# Field order matters. "crc" is appended by _canonical().
SIGNED_FIELDS: dict[SignedOperation, tuple[str, ...]] = {
    SignedOperation.REGISTER: ("sessionId", "merchantId", "amount", "currency"),
    SignedOperation.NOTIFICATION: ("sessionId", "orderId", "amount", "originAmount", "currency"),
    SignedOperation.VERIFY: ("sessionId", "orderId", "amount", "currency"),
    SignedOperation.REFUND: ("requestId", "sessionId", "orderId", "amount"),
}


def _canonical(operation: SignedOperation, fields: Mapping[str, Any], crc: str) -> str:
    names = SIGNED_FIELDS[SignedOperation(operation)]
    missing = [n for n in names if fields.get(n) is None]
    if missing:
        raise ValidationError(f"Cannot sign {SignedOperation(operation).value}: missing {', '.join(missing)}")
    doc = {n: fields[n] for n in names}
    doc["crc"] = crc
    return json.dumps(doc, separators=(",", ":"), ensure_ascii=False)


def sign(operation: SignedOperation, fields: Mapping[str, Any], crc: str) -> str:
    """Return the hex SHA-384 signature of ``fields`` for ``operation``.

    Extra keys in ``fields`` are ignored, so a full request body can be passed.
    """
    return hashlib.sha384(_canonical(operation, fields, crc).encode("utf-8")).hexdigest()


def verify(operation: SignedOperation, fields: Mapping[str, Any], digest: str, crc: str) -> bool:
    if not digest:
        return False
    try:
        expected = sign(operation, fields, crc)
    except ValidationError:
        return False
    return hmac.compare_digest(expected, digest.strip().lower())
