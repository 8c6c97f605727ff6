"""Felicity-Engine: registration admission and fulfillment for capacity-limited events."""

from felicity_engine.tickets.generator import (
    decode_qr_payload,
    encode_qr_payload,
    generate_ticket_id,
)
from felicity_engine.webhooks.service import sign_payload, verify_signature

__all__ = [
    "decode_qr_payload",
    "encode_qr_payload",
    "generate_ticket_id",
    "sign_payload",
    "verify_signature",
]
__version__ = "0.1.0"
