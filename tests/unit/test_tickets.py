"""Tests for ticket ids, signed QR payloads, and ticket issuance."""

import re
from decimal import Decimal
from unittest.mock import patch

import pytest

from felicity_engine.common.exceptions import (
    InvalidTicketPayloadError,
    TicketIssueError,
    TicketNotFoundError,
)
from felicity_engine.tickets.generator import (
    InvalidPayload,
    decode_qr_payload,
    encode_qr_payload,
    generate_ticket_id,
    looks_like_qr_payload,
    to_base36,
)
from felicity_engine.tickets.service import TicketService

from conftest import HMAC_KEY, make_settings

TICKET_RE = re.compile(r"^TKT-[0-9A-Z]+-[0-9A-F]{8}$")


def _payload(**overrides):
    fields = dict(
        ticket_id="TKT-ABC123-0000FFFF",
        registration_id="reg-1",
        event_id="evt-1",
        participant_id="p-1",
        hmac_key=HMAC_KEY,
    )
    fields.update(overrides)
    return encode_qr_payload(**fields)


# ── Ticket ids ──


class TestTicketId:
    def test_base36(self):
        assert to_base36(0) == "0"
        assert to_base36(35) == "Z"
        assert to_base36(36) == "10"
        with pytest.raises(ValueError):
            to_base36(-1)

    def test_format(self):
        assert TICKET_RE.match(generate_ticket_id())

    def test_timestamp_component(self):
        ticket_id = generate_ticket_id(now_ms=36 ** 3)
        assert ticket_id.startswith("TKT-1000-")

    def test_custom_prefix(self):
        assert generate_ticket_id("FEL").startswith("FEL-")

    def test_ids_differ_within_same_millisecond(self):
        ids = {generate_ticket_id(now_ms=1_700_000_000_000) for _ in range(50)}
        assert len(ids) == 50


# ── QR payloads ──


class TestQrPayload:
    def test_decode_returns_claims(self):
        claims = decode_qr_payload(_payload(), {0: HMAC_KEY})
        assert claims["tid"] == "TKT-ABC123-0000FFFF"
        assert claims["rid"] == "reg-1"
        assert claims["kv"] == 0

    def test_recognised_by_prefix(self):
        assert looks_like_qr_payload(_payload())
        assert not looks_like_qr_payload("TKT-ABC123-0000FFFF")

    def test_tampered_signature(self):
        tag, body, sig = _payload().split(".")
        forged = f"{tag}.{body}.{'0' * len(sig)}"
        with pytest.raises(InvalidPayload):
            decode_qr_payload(forged, {0: HMAC_KEY})

    def test_tampered_body(self):
        other = _payload(ticket_id="TKT-OTHER-00000000")
        tag, _, sig = _payload().split(".")
        _, other_body, _ = other.split(".")
        with pytest.raises(InvalidPayload):
            decode_qr_payload(f"{tag}.{other_body}.{sig}", {0: HMAC_KEY})

    def test_wrong_key(self):
        with pytest.raises(InvalidPayload):
            decode_qr_payload(_payload(), {0: "some-other-key"})

    def test_rotated_keyring_still_verifies_old_tickets(self):
        old = _payload(hmac_key="old-key", key_version=0)
        new = _payload(hmac_key="new-key", key_version=1)
        ring = {0: "old-key", 1: "new-key"}
        assert decode_qr_payload(old, ring)["kv"] == 0
        assert decode_qr_payload(new, ring)["kv"] == 1

    def test_retired_key_version(self):
        with pytest.raises(InvalidPayload):
            decode_qr_payload(_payload(key_version=3), {0: HMAC_KEY})

    @pytest.mark.parametrize("garbage", ["", "FT1", "FT1.abc", "XX1.a.b", "FT1.!!!.00"])
    def test_malformed(self, garbage):
        with pytest.raises(InvalidPayload):
            decode_qr_payload(garbage, {0: HMAC_KEY})


# ── Service ──


class TestTicketService:
    async def _pending(self, db, admission, make_event):
        event = await make_event(price=Decimal("50"))
        async with db.get_session() as session:
            return await admission.register(session, event.id, "p-1")

    async def test_issue_is_idempotent(self, db, admission, ticket_svc, make_event):
        event = await make_event()
        async with db.get_session() as session:
            reg = await admission.register(session, event.id, "p-1")
            again = await ticket_svc.issue_ticket(session, reg)
        assert again == (reg.ticket_id, reg.qr_payload)

    async def test_payload_binds_registration(self, db, admission, ticket_svc, make_event):
        event = await make_event()
        async with db.get_session() as session:
            reg = await admission.register(session, event.id, "p-1")
        claims = ticket_svc.decode_qr_payload(reg.qr_payload)
        assert claims["tid"] == reg.ticket_id
        assert claims["rid"] == reg.id
        assert claims["eid"] == event.id
        assert claims["pid"] == "p-1"

    async def test_collision_retries(self, db, admission, ticket_svc, make_event):
        event = await make_event()
        async with db.get_session() as session:
            taken = (await admission.register(session, event.id, "p-0")).ticket_id
        reg = await self._pending(db, admission, make_event)

        with patch(
            "felicity_engine.tickets.service.generate_ticket_id",
            side_effect=[taken, "TKT-FRESH-0000ABCD"],
        ):
            async with db.get_session() as session:
                reg = await admission.get_registration(session, reg.id)
                ticket_id, _ = await ticket_svc.issue_ticket(session, reg)
        assert ticket_id == "TKT-FRESH-0000ABCD"

    async def test_collision_budget_exhausted(self, db, admission, make_event):
        event = await make_event()
        async with db.get_session() as session:
            taken = (await admission.register(session, event.id, "p-0")).ticket_id
        reg = await self._pending(db, admission, make_event)

        strict = TicketService(make_settings(ticket_max_attempts=2))
        with patch("felicity_engine.tickets.service.generate_ticket_id", return_value=taken):
            with pytest.raises(TicketIssueError):
                async with db.get_session() as session:
                    reg = await admission.get_registration(session, reg.id)
                    await strict.issue_ticket(session, reg)

    async def test_lookup_by_raw_id_or_payload(self, db, admission, ticket_svc, make_event):
        event = await make_event()
        async with db.get_session() as session:
            reg = await admission.register(session, event.id, "p-1")
        async with db.get_session() as session:
            by_id = await ticket_svc.get_by_ticket(session, reg.ticket_id)
            by_payload = await ticket_svc.get_by_ticket(session, reg.qr_payload)
        assert by_id.id == by_payload.id == reg.id

    async def test_unknown_ticket(self, db, ticket_svc):
        with pytest.raises(TicketNotFoundError):
            async with db.get_session() as session:
                await ticket_svc.get_by_ticket(session, "TKT-NOPE-00000000")

    def test_forged_payload_reported_as_unknown_ticket(self, ticket_svc):
        forged = _payload(hmac_key="attacker-key")
        with pytest.raises(InvalidTicketPayloadError) as exc_info:
            ticket_svc.resolve_ticket_id(forged)
        assert exc_info.value.kind == "TicketNotFound"

    def test_render_svg(self):
        svg = TicketService.render_qr_svg(_payload())
        assert isinstance(svg, bytes)
        assert b"<svg" in svg
