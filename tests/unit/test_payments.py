"""Tests for the payment approval workflow."""

import asyncio
from decimal import Decimal

import pytest

from felicity_engine.common.exceptions import (
    AlreadyFinalizedError,
    EventNotFoundError,
    FelicityError,
    ForbiddenError,
    PaymentNotRequiredError,
    PaymentProofMissingError,
)
from felicity_engine.inventory.models import SEATS_KEY
from felicity_engine.registrations.models import RegistrationModel


@pytest.fixture
async def paid_event(make_event):
    return await make_event(price=Decimal("300"), capacity=2)


@pytest.fixture
async def pending_reg(db, admission, paid_event):
    async with db.get_session() as session:
        return await admission.register(session, paid_event.id, "p-1")


async def _submit(db, payment_svc, reg_id, participant_id="p-1", proof="receipts/upi-123.png"):
    async with db.get_session() as session:
        return await payment_svc.submit_proof(session, reg_id, participant_id, proof)


async def _approve(db, payment_svc, reg_id):
    async with db.get_session() as session:
        return await payment_svc.approve(session, reg_id, "organizer-1", notes="UPI ok")


async def _reject(db, payment_svc, reg_id):
    async with db.get_session() as session:
        return await payment_svc.reject(session, reg_id, "organizer-1", notes="Blurry")


async def _reserved(db, ledger, event_id):
    async with db.get_session() as session:
        return (await ledger.get_bucket(session, event_id, SEATS_KEY)).reserved


class TestProof:
    async def test_submit_and_replace(self, db, payment_svc, pending_reg):
        reg = await _submit(db, payment_svc, pending_reg.id)
        assert reg.payment_proof_ref == "receipts/upi-123.png"
        reg = await _submit(db, payment_svc, pending_reg.id, proof="receipts/upi-124.png")
        assert reg.payment_proof_ref == "receipts/upi-124.png"
        assert reg.status == "pending"

    async def test_only_owner_submits(self, db, payment_svc, pending_reg):
        with pytest.raises(ForbiddenError):
            await _submit(db, payment_svc, pending_reg.id, participant_id="p-2")

    async def test_free_registration_has_no_payment(self, db, admission, payment_svc, make_event):
        event = await make_event()
        async with db.get_session() as session:
            reg = await admission.register(session, event.id, "p-1")
        with pytest.raises(PaymentNotRequiredError):
            await _submit(db, payment_svc, reg.id)
        with pytest.raises(PaymentNotRequiredError):
            await _approve(db, payment_svc, reg.id)


class TestApprove:
    async def test_approve_confirms_and_issues_ticket(self, db, payment_svc, ledger, pending_reg):
        await _submit(db, payment_svc, pending_reg.id)
        reg = await _approve(db, payment_svc, pending_reg.id)

        assert reg.status == "confirmed"
        assert reg.payment_status == "approved"
        assert reg.payment_reviewed_by == "organizer-1"
        assert reg.payment_notes == "UPI ok"
        assert reg.ticket_id is not None
        assert await _reserved(db, ledger, reg.event_id) == 1

    async def test_approve_needs_proof(self, db, payment_svc, pending_reg):
        with pytest.raises(PaymentProofMissingError):
            await _approve(db, payment_svc, pending_reg.id)

    async def test_repeat_approve_is_noop(self, db, payment_svc, pending_reg):
        await _submit(db, payment_svc, pending_reg.id)
        first = await _approve(db, payment_svc, pending_reg.id)
        second = await _approve(db, payment_svc, pending_reg.id)
        assert second.ticket_id == first.ticket_id
        assert second.payment_reviewed_at == first.payment_reviewed_at

    async def test_reject_after_approve(self, db, payment_svc, pending_reg):
        await _submit(db, payment_svc, pending_reg.id)
        await _approve(db, payment_svc, pending_reg.id)
        with pytest.raises(AlreadyFinalizedError):
            await _reject(db, payment_svc, pending_reg.id)

    async def test_proof_after_approve(self, db, payment_svc, pending_reg):
        await _submit(db, payment_svc, pending_reg.id)
        await _approve(db, payment_svc, pending_reg.id)
        with pytest.raises(AlreadyFinalizedError):
            await _submit(db, payment_svc, pending_reg.id)


class TestReject:
    async def test_reject_releases_seat(self, db, payment_svc, ledger, pending_reg):
        reg = await _reject(db, payment_svc, pending_reg.id)
        assert reg.status == "rejected"
        assert reg.payment_status == "rejected"
        assert reg.ticket_id is None
        assert await _reserved(db, ledger, reg.event_id) == 0

    async def test_repeat_reject_is_noop(self, db, payment_svc, ledger, pending_reg):
        await _reject(db, payment_svc, pending_reg.id)
        again = await _reject(db, payment_svc, pending_reg.id)
        assert again.status == "rejected"
        assert await _reserved(db, ledger, again.event_id) == 0

    async def test_approve_after_reject(self, db, payment_svc, pending_reg):
        await _submit(db, payment_svc, pending_reg.id)
        await _reject(db, payment_svc, pending_reg.id)
        with pytest.raises(AlreadyFinalizedError):
            await _approve(db, payment_svc, pending_reg.id)

    async def test_cancelled_registration_cannot_be_reviewed(
        self, db, admission, payment_svc, pending_reg,
    ):
        async with db.get_session() as session:
            await admission.cancel(session, pending_reg.id, "p-1")
        with pytest.raises(AlreadyFinalizedError):
            await _reject(db, payment_svc, pending_reg.id)

    async def test_rejected_participant_may_register_again(
        self, db, admission, payment_svc, pending_reg,
    ):
        await _reject(db, payment_svc, pending_reg.id)
        async with db.get_session() as session:
            reg = await admission.register(session, pending_reg.event_id, "p-1")
        assert reg.status == "pending"


class TestReviewQueue:
    async def test_list_by_status(self, db, admission, payment_svc, paid_event, pending_reg):
        async with db.get_session() as session:
            other = await admission.register(session, paid_event.id, "p-2")
        await _reject(db, payment_svc, other.id)

        async with db.get_session() as session:
            everything = await payment_svc.list_payments(session, paid_event.id)
            pending = await payment_svc.list_payments(session, paid_event.id, "pending")
        assert {r.id for r in everything} == {pending_reg.id, other.id}
        assert [r.id for r in pending] == [pending_reg.id]

    async def test_unknown_event(self, db, payment_svc):
        with pytest.raises(EventNotFoundError):
            async with db.get_session() as session:
                await payment_svc.list_payments(session, "missing")

    async def test_cancelled_leaves_pending_queue(
        self, db, admission, payment_svc, paid_event, pending_reg,
    ):
        async with db.get_session() as session:
            await admission.cancel(session, pending_reg.id, "p-1")

        async with db.get_session() as session:
            pending = await payment_svc.list_payments(session, paid_event.id, "pending")
            everything = await payment_svc.list_payments(session, paid_event.id)
        assert pending == []
        assert [r.id for r in everything] == [pending_reg.id]


async def _outcome(coro):
    try:
        return (await coro).status
    except FelicityError as exc:
        return exc.kind


async def _cancel(db, admission, reg_id):
    async with db.get_session() as session:
        return await admission.cancel(session, reg_id, "p-1")


class TestConcurrentDecisions:
    async def test_approve_reject_cancel_race(
        self, db, admission, payment_svc, ledger, paid_event, pending_reg,
    ):
        await _submit(db, payment_svc, pending_reg.id)

        approved, rejected, cancelled = await asyncio.gather(
            _outcome(_approve(db, payment_svc, pending_reg.id)),
            _outcome(_reject(db, payment_svc, pending_reg.id)),
            _outcome(_cancel(db, admission, pending_reg.id)),
        )

        async with db.get_session() as session:
            reg = await session.get(RegistrationModel, pending_reg.id)
        # Approve and reject are exclusive; only one payment decision lands.
        assert not (approved == "confirmed" and rejected == "rejected")
        assert reg.payment_status in ("approved", "rejected", "pending")
        if reg.payment_status == "approved":
            assert rejected != "rejected"
        if reg.payment_status == "rejected":
            assert approved != "confirmed"
            assert reg.status == "rejected"

        expected = 1 if reg.status == "confirmed" else 0
        assert await _reserved(db, ledger, paid_event.id) == expected
        assert reg.status in ("confirmed", "rejected", "cancelled")
        assert cancelled in ("cancelled", "AlreadyFinalized")
