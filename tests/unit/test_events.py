"""Tests for event creation, status transitions, and limit changes."""

from datetime import timedelta
from decimal import Decimal

import pytest

from felicity_engine.common.exceptions import (
    EventNotFoundError,
    InvalidTransitionError,
    ValidationError,
)
from felicity_engine.events.service import VALID_TRANSITIONS
from felicity_engine.forms.schemas import FieldType, FormField
from felicity_engine.inventory.models import SEATS_KEY

from conftest import event_fields


async def _create(db, event_svc, **overrides):
    async with db.get_session() as session:
        return await event_svc.create_event(session, **event_fields(**overrides))


async def _invalid_fields(db, event_svc, **overrides) -> set[str]:
    with pytest.raises(ValidationError) as exc_info:
        await _create(db, event_svc, **overrides)
    return {d["field"] for d in exc_info.value.details}


class TestCreateEvent:
    async def test_creates_draft_with_seat_bucket(self, db, event_svc, ledger):
        event = await _create(db, event_svc, capacity=25, price=Decimal("0"))
        assert event.status == "draft"
        assert event.requires_payment is False
        assert event.form_locked is False
        assert event.schema_version == 0

        async with db.get_session() as session:
            bucket = await ledger.get_bucket(session, event.id, SEATS_KEY)
        assert bucket.capacity == 25

    async def test_paid_event_requires_payment(self, db, event_svc):
        event = await _create(db, event_svc, price=Decimal("149.50"))
        assert event.requires_payment is True

    async def test_unlimited_seats(self, db, event_svc, ledger):
        event = await _create(db, event_svc, capacity=None)
        async with db.get_session() as session:
            bucket = await ledger.get_bucket(session, event.id, SEATS_KEY)
        assert bucket.capacity is None

    async def test_end_before_start_rejected(self, db, event_svc):
        fields = event_fields()
        bad = await _invalid_fields(db, event_svc, end_at=fields["start_at"] - timedelta(hours=1))
        assert "end_at" in bad

    async def test_deadline_after_start_rejected(self, db, event_svc):
        fields = event_fields()
        bad = await _invalid_fields(
            db, event_svc, registration_deadline=fields["start_at"] + timedelta(hours=1),
        )
        assert "registration_deadline" in bad

    async def test_unknown_kind_and_rule(self, db, event_svc):
        bad = await _invalid_fields(db, event_svc, kind="raffle", eligibility="vip")
        assert {"kind", "eligibility"} <= bad

    async def test_negative_price_rejected(self, db, event_svc):
        assert "price" in await _invalid_fields(db, event_svc, price=-1)

    async def test_seats_event_cannot_carry_variants(self, db, event_svc):
        assert "sizes" in await _invalid_fields(db, event_svc, sizes=["S"])

    async def test_stock_event_needs_stock(self, db, event_svc):
        bad = await _invalid_fields(db, event_svc, kind="stock", capacity=None)
        assert "total_stock" in bad

    async def test_stock_event_rejects_capacity(self, db, event_svc):
        bad = await _invalid_fields(db, event_svc, kind="stock", capacity=5, total_stock=5)
        assert "capacity" in bad

    async def test_variant_names_cannot_contain_separators(self, db, event_svc):
        bad = await _invalid_fields(
            db, event_svc, kind="stock", capacity=None, sizes=["S/M"], total_stock=5,
        )
        assert "sizes" in bad

    async def test_duplicate_variant_names(self, db, event_svc):
        bad = await _invalid_fields(
            db, event_svc, kind="stock", capacity=None, colors=["Red", "Red"], total_stock=5,
        )
        assert "colors" in bad

    async def test_invalid_form_schema_rejected(self, db, event_svc):
        form = [FormField(name="shirt", type=FieldType.DROPDOWN)]
        with pytest.raises(ValidationError) as exc_info:
            await _create(db, event_svc, form_schema=form)
        assert exc_info.value.message == "Invalid form schema"

    async def test_initial_form_schema_stored(self, db, event_svc):
        form = [FormField(name="college", type=FieldType.TEXT, required=True)]
        event = await _create(db, event_svc, form_schema=form)
        assert event.form_schema[0]["name"] == "college"
        assert event.schema_version == 0


class TestTransitions:
    def test_terminal_states_have_no_exits(self):
        assert VALID_TRANSITIONS["completed"] == frozenset()
        assert VALID_TRANSITIONS["closed"] == frozenset()

    async def test_publish_then_run(self, db, event_svc):
        event = await _create(db, event_svc)
        async with db.get_session() as session:
            event = await event_svc.transition(session, event.id, "published")
            assert event.status == "published"
            event = await event_svc.transition(session, event.id, "ongoing")
            assert event.status == "ongoing"
            event = await event_svc.transition(session, event.id, "completed")
            assert event.status == "completed"

    async def test_draft_cannot_skip_to_ongoing(self, db, event_svc):
        event = await _create(db, event_svc)
        with pytest.raises(InvalidTransitionError):
            async with db.get_session() as session:
                await event_svc.transition(session, event.id, "ongoing")

    async def test_completed_is_final(self, db, event_svc, make_event):
        event = await make_event()
        async with db.get_session() as session:
            await event_svc.transition(session, event.id, "completed")
        with pytest.raises(InvalidTransitionError):
            async with db.get_session() as session:
                await event_svc.transition(session, event.id, "published")

    async def test_same_status_is_not_a_transition(self, db, event_svc, make_event):
        event = await make_event()
        with pytest.raises(InvalidTransitionError):
            async with db.get_session() as session:
                await event_svc.transition(session, event.id, "published")

    async def test_unknown_event(self, db, event_svc):
        with pytest.raises(EventNotFoundError):
            async with db.get_session() as session:
                await event_svc.transition(session, "missing", "published")


class TestQueries:
    async def test_list_filters_by_status_and_organizer(self, db, event_svc, make_event):
        published = await make_event()
        await make_event(publish=False, organizer_id="organizer-2")

        async with db.get_session() as session:
            by_status = await event_svc.list_events(session, status="published")
            by_organizer = await event_svc.list_events(session, organizer_id="organizer-2")
            everything = await event_svc.list_events(session)

        assert [e.id for e in by_status] == [published.id]
        assert len(by_organizer) == 1
        assert len(everything) == 2

    async def test_toggle_registration_open(self, db, event_svc, make_event):
        event = await make_event()
        async with db.get_session() as session:
            event = await event_svc.set_registration_open(session, event.id, False)
        assert event.registration_open is False


class TestCapacity:
    async def test_raise_after_publish(self, db, event_svc, make_event):
        event = await make_event(capacity=2)
        async with db.get_session() as session:
            bucket = await event_svc.increase_capacity(session, event.id, 5)
            refreshed = await event_svc.get_event(session, event.id)
        assert bucket.capacity == 5
        assert refreshed.capacity == 5

    async def test_cannot_lower_after_publish(self, db, event_svc, make_event):
        event = await make_event(capacity=5)
        with pytest.raises(ValidationError):
            async with db.get_session() as session:
                await event_svc.increase_capacity(session, event.id, 3)

    async def test_draft_may_lower(self, db, event_svc, make_event):
        event = await make_event(publish=False, capacity=5)
        async with db.get_session() as session:
            bucket = await event_svc.increase_capacity(session, event.id, 3)
        assert bucket.capacity == 3

    async def test_draft_cannot_go_below_reserved(self, db, event_svc, ledger, make_event):
        event = await make_event(publish=False, capacity=5)
        async with db.get_session() as session:
            await ledger.try_reserve(session, event, 1)
            await ledger.try_reserve(session, event, 1)
        with pytest.raises(ValidationError) as exc_info:
            async with db.get_session() as session:
                await event_svc.increase_capacity(session, event.id, 1)
        assert "reserved" in exc_info.value.message

    async def test_stock_needs_variant_key(self, db, event_svc, make_event):
        event = await make_event(kind="stock", capacity=None, sizes=["S"], total_stock=4)
        with pytest.raises(ValidationError):
            async with db.get_session() as session:
                await event_svc.increase_capacity(session, event.id, 10)
        async with db.get_session() as session:
            bucket = await event_svc.increase_capacity(session, event.id, 10, variant_key="*")
        assert bucket.capacity == 10

    async def test_unknown_variant_key(self, db, event_svc, make_event):
        event = await make_event(kind="stock", capacity=None, sizes=["S"], total_stock=4)
        with pytest.raises(ValidationError):
            async with db.get_session() as session:
                await event_svc.increase_capacity(session, event.id, 10, variant_key="XL")

    async def test_closed_event_is_frozen(self, db, event_svc, make_event):
        event = await make_event()
        async with db.get_session() as session:
            await event_svc.transition(session, event.id, "closed")
        with pytest.raises(InvalidTransitionError):
            async with db.get_session() as session:
                await event_svc.increase_capacity(session, event.id, 50)
