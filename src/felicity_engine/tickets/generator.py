"""
Ticket id generator and signed QR payloads.

Ticket id format: {PREFIX}-{TTTTTTTT}-{RRRRRRRR}
- PREFIX defaults to TKT
- T: millisecond timestamp in uppercase base36
- R: 4 random bytes as uppercase hex

QR payload format: FT1.{body}.{sig}
- body: base64url (unpadded) canonical JSON of the ticket claims, including
  the HMAC key version ``kv`` used to sign
- sig: HMAC-SHA256 hex over ``FT1.{body}``

The payload is opaque to scanners; only the engine can verify it.
"""

import base64
import binascii
import hashlib
import hmac
import json
import os
import time
from datetime import datetime, timezone
from typing import Any

BASE36_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
RANDOM_BYTES = 4
QR_TAG = "FT1"


class InvalidPayload(ValueError):
    """Raised when a QR payload is malformed or its signature does not verify."""


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("base36 encoding needs a non-negative integer")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(BASE36_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_ticket_id(prefix: str = "TKT", now_ms: int | None = None) -> str:
    """Generate a ticket id; uniqueness is checked by the caller."""
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    return f"{prefix}-{to_base36(now_ms)}-{os.urandom(RANDOM_BYTES).hex().upper()}"


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def _sign(message: str, hmac_key: str) -> str:
    return hmac.new(hmac_key.encode(), message.encode(), hashlib.sha256).hexdigest()


def encode_qr_payload(
    ticket_id: str,
    registration_id: str,
    event_id: str,
    participant_id: str,
    hmac_key: str,
    key_version: int = 0,
    issued_at: datetime | None = None,
) -> str:
    issued_at = issued_at or datetime.now(timezone.utc)
    claims = {
        "tid": ticket_id,
        "rid": registration_id,
        "eid": event_id,
        "pid": participant_id,
        "iat": issued_at.isoformat(),
        "kv": key_version,
    }
    # Canonical JSON for deterministic signing
    canonical = json.dumps(claims, sort_keys=True, separators=(",", ":"))
    signed_part = f"{QR_TAG}.{_b64encode(canonical.encode())}"
    return f"{signed_part}.{_sign(signed_part, hmac_key)}"


def looks_like_qr_payload(value: str) -> bool:
    return value.startswith(f"{QR_TAG}.")


def decode_qr_payload(payload: str, keyring: dict[int, str]) -> dict[str, Any]:
    """Verify a QR payload against the keyring and return its claims.

    The key is picked by the ``kv`` claim; payloads signed with a retired
    version no longer in the keyring are rejected.
    """
    parts = payload.strip().split(".")
    if len(parts) != 3 or parts[0] != QR_TAG:
        raise InvalidPayload("Not a ticket payload")
    tag, body, signature = parts

    try:
        claims = json.loads(_b64decode(body))
    except (binascii.Error, ValueError) as exc:
        raise InvalidPayload("Ticket payload is corrupt") from exc
    if not isinstance(claims, dict) or not isinstance(claims.get("tid"), str):
        raise InvalidPayload("Ticket payload is missing the ticket id")

    key = keyring.get(claims.get("kv", 0)) if isinstance(claims.get("kv", 0), int) else None
    if key is None:
        raise InvalidPayload("Ticket payload was signed with an unknown key")
    if not hmac.compare_digest(signature.encode(), _sign(f"{tag}.{body}", key).encode()):
        raise InvalidPayload("Ticket payload signature mismatch")
    return claims
