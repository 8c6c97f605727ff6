"""Event lifecycle service: creation, status transitions, and limits."""

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from felicity_engine.common.config import FelicitySettings
from felicity_engine.common.exceptions import (
    ConflictError,
    EventNotFoundError,
    InvalidTransitionError,
    ValidationError,
)
from felicity_engine.common.models import as_utc
from felicity_engine.events.models import (
    ELIGIBILITY_OPEN,
    ELIGIBILITY_RULES,
    EVENT_KINDS,
    KIND_SEATS,
    STATUS_CLOSED,
    STATUS_COMPLETED,
    STATUS_DRAFT,
    STATUS_ONGOING,
    STATUS_PUBLISHED,
    EventModel,
)
from felicity_engine.forms.schemas import FormField
from felicity_engine.forms.service import dump_fields
from felicity_engine.forms.validators import check_schema
from felicity_engine.inventory.models import SEATS_KEY, InventoryBucketModel
from felicity_engine.inventory.service import InventoryLedger

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_DRAFT: frozenset({STATUS_PUBLISHED, STATUS_CLOSED}),
    STATUS_PUBLISHED: frozenset({STATUS_ONGOING, STATUS_COMPLETED, STATUS_CLOSED}),
    STATUS_ONGOING: frozenset({STATUS_COMPLETED, STATUS_CLOSED}),
    STATUS_COMPLETED: frozenset(),
    STATUS_CLOSED: frozenset(),
}

_VARIANT_FORBIDDEN_CHARS = ("/", "|")


def _check_variant_names(label: str, values: list[str]) -> list[dict]:
    errors = []
    if len(set(values)) != len(values):
        errors.append({"field": label, "message": f"Duplicate {label} values"})
    for value in values:
        if not value.strip():
            errors.append({"field": label, "message": "Values must not be blank"})
        elif any(ch in value for ch in _VARIANT_FORBIDDEN_CHARS):
            errors.append({"field": label, "message": f"{value!r} must not contain '/' or '|'"})
    return errors


class EventService:
    """Event creation and lifecycle operations."""

    def __init__(self, settings: FelicitySettings, ledger: InventoryLedger):
        self.settings = settings
        self.ledger = ledger

    async def create_event(
        self,
        session: AsyncSession,
        organizer_id: str,
        name: str,
        kind: str,
        start_at: datetime,
        end_at: datetime,
        registration_deadline: datetime,
        description: str = "",
        registration_open: bool = True,
        eligibility: str = ELIGIBILITY_OPEN,
        price: Decimal | int = 0,
        capacity: int | None = None,
        sizes: list[str] | None = None,
        colors: list[str] | None = None,
        stock_by_variant: dict[str, int] | None = None,
        total_stock: int | None = None,
        purchase_limit: int | None = None,
        max_team_size: int | None = None,
        form_schema: list[FormField] | None = None,
    ) -> EventModel:
        """Create a draft event together with its inventory buckets."""
        sizes = list(sizes or [])
        colors = list(colors or [])
        stock_by_variant = dict(stock_by_variant or {})
        form_schema = list(form_schema or [])

        errors = []
        if kind not in EVENT_KINDS:
            errors.append({"field": "kind", "message": f"Unknown event kind {kind!r}"})
        if eligibility not in ELIGIBILITY_RULES:
            errors.append({"field": "eligibility", "message": f"Unknown rule {eligibility!r}"})
        if Decimal(price) < 0:
            errors.append({"field": "price", "message": "Price must not be negative"})

        start_at, end_at = as_utc(start_at), as_utc(end_at)
        registration_deadline = as_utc(registration_deadline)
        if start_at > end_at:
            errors.append({"field": "end_at", "message": "End must not precede start"})
        if registration_deadline > start_at:
            errors.append({
                "field": "registration_deadline",
                "message": "Registration deadline must not be after the event start",
            })

        if kind == KIND_SEATS:
            for label, value in (
                ("sizes", sizes), ("colors", colors), ("stock_by_variant", stock_by_variant),
                ("total_stock", total_stock), ("purchase_limit", purchase_limit),
            ):
                if value:
                    errors.append({"field": label, "message": "Only stock events carry this"})
        elif kind in EVENT_KINDS:
            if capacity is not None:
                errors.append({"field": "capacity", "message": "Stock events use total_stock"})
            if not stock_by_variant and total_stock is None:
                errors.append({
                    "field": "total_stock",
                    "message": "Stock events need total_stock or stock_by_variant",
                })
            if any(v < 0 for v in stock_by_variant.values()):
                errors.append({"field": "stock_by_variant", "message": "Stock must not be negative"})
            errors.extend(_check_variant_names("sizes", sizes))
            errors.extend(_check_variant_names("colors", colors))

        if errors:
            raise ValidationError("Invalid event definition", details=errors)
        check_schema(form_schema)

        event = EventModel(
            name=name,
            description=description,
            organizer_id=organizer_id,
            kind=kind,
            status=STATUS_DRAFT,
            start_at=start_at,
            end_at=end_at,
            registration_deadline=registration_deadline,
            registration_open=registration_open,
            eligibility=eligibility,
            price=Decimal(price),
            capacity=capacity if kind == KIND_SEATS else None,
            sizes=sizes,
            colors=colors,
            purchase_limit=purchase_limit,
            max_team_size=max_team_size,
            form_schema=dump_fields(form_schema),
            schema_version=0,
            form_locked=False,
            audit_seq=0,
        )
        session.add(event)
        await session.flush()
        await self.ledger.open_buckets(
            session, event, stock_by_variant=stock_by_variant, total_stock=total_stock,
        )
        logger.info(
            "Event created",
            extra={"event_id": event.id, "kind": kind, "organizer_id": organizer_id},
        )
        return event

    async def get_event(self, session: AsyncSession, event_id: str) -> EventModel:
        event = await session.get(EventModel, event_id, populate_existing=True)
        if event is None:
            raise EventNotFoundError()
        return event

    async def list_events(
        self,
        session: AsyncSession,
        status: str | None = None,
        organizer_id: str | None = None,
    ) -> list[EventModel]:
        query = select(EventModel).order_by(EventModel.start_at)
        if status:
            query = query.where(EventModel.status == status)
        if organizer_id:
            query = query.where(EventModel.organizer_id == organizer_id)
        result = await session.execute(query)
        return list(result.scalars().all())

    async def transition(
        self, session: AsyncSession, event_id: str, new_status: str,
    ) -> EventModel:
        event = await self.get_event(session, event_id)
        current = event.status
        if new_status not in VALID_TRANSITIONS.get(current, frozenset()):
            raise InvalidTransitionError(f"Cannot move event from {current} to {new_status}")

        result = await session.execute(
            update(EventModel)
            .where(EventModel.id == event_id, EventModel.status == current)
            .values(status=new_status)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Event status changed concurrently, reload and retry")
        logger.info(
            "Event status changed",
            extra={"event_id": event_id, "from": current, "to": new_status},
        )
        return await self.get_event(session, event_id)

    async def set_registration_open(
        self, session: AsyncSession, event_id: str, is_open: bool,
    ) -> EventModel:
        await self.get_event(session, event_id)
        await session.execute(
            update(EventModel)
            .where(EventModel.id == event_id)
            .values(registration_open=is_open)
            .execution_options(synchronize_session=False)
        )
        return await self.get_event(session, event_id)

    async def increase_capacity(
        self,
        session: AsyncSession,
        event_id: str,
        capacity: int | None,
        variant_key: str | None = None,
    ) -> InventoryBucketModel:
        """Change one bucket's limit.

        Drafts may set any limit; once published a limit can only be raised
        or made unlimited.  A limit below the units already reserved is
        always refused.
        """
        event = await self.get_event(session, event_id)
        if event.status in (STATUS_COMPLETED, STATUS_CLOSED):
            raise InvalidTransitionError(f"Cannot change limits of a {event.status} event")

        if event.kind == KIND_SEATS:
            variant_key = variant_key or SEATS_KEY
        elif not variant_key:
            raise ValidationError(
                "variant_key is required for stock events",
                details=[{"field": "variant_key", "message": "This field is required"}],
            )

        bucket = await self.ledger.get_bucket(session, event_id, variant_key)
        if bucket is None:
            raise ValidationError(
                f"Unknown variant {variant_key!r}",
                details=[{"field": "variant_key", "message": "Unknown variant"}],
            )

        if event.status != STATUS_DRAFT and capacity is not None and (
            bucket.capacity is None or capacity < bucket.capacity
        ):
            raise ValidationError(
                "Limits can only be raised once the event is published",
                details=[{"field": "capacity", "message": f"Must be at least {bucket.capacity}"}
                         if bucket.capacity is not None
                         else {"field": "capacity", "message": "Limit is already unlimited"}],
            )

        if not await self.ledger.set_capacity(session, event_id, variant_key, capacity):
            raise ValidationError(
                "Capacity cannot go below the units already reserved",
                details=[{"field": "capacity", "message": f"At least {bucket.reserved} reserved"}],
            )
        if event.kind == KIND_SEATS:
            await session.execute(
                update(EventModel)
                .where(EventModel.id == event_id)
                .values(capacity=capacity)
                .execution_options(synchronize_session=False)
            )
        logger.info(
            "Capacity changed",
            extra={"event_id": event_id, "variant": variant_key, "capacity": capacity},
        )
        return await self.ledger.get_bucket(session, event_id, variant_key)

    async def inventory_snapshot(
        self, session: AsyncSession, event_id: str,
    ) -> list[InventoryBucketModel]:
        await self.get_event(session, event_id)
        return await self.ledger.snapshot(session, event_id)
