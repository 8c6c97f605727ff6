"""Inventory ledger — atomic reserve / commit / release on per-variant counters.

Every counter change is a single conditional UPDATE evaluated by the database,
so concurrent callers (in this process or any other instance) can never push
``reserved`` past ``capacity``.  Reservations are durable tokens; a token is
consumed exactly once, either by ``release`` (units go back) or by a forfeit
(units stay taken).
"""

import itertools
import logging

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from felicity_engine.common.config import FelicitySettings
from felicity_engine.common.exceptions import (
    CapacityReachedError,
    OutOfStockError,
    ValidationError,
)
from felicity_engine.events.models import KIND_SEATS, EventModel
from felicity_engine.inventory.models import (
    AGGREGATE_KEY,
    DEFAULT_VARIANT_KEY,
    LIVE_RESERVATION_STATES,
    RESERVATION_COMMITTED,
    RESERVATION_FORFEITED,
    RESERVATION_HELD,
    RESERVATION_RELEASED,
    SEATS_KEY,
    InventoryBucketModel,
    ReservationModel,
)

logger = logging.getLogger(__name__)


def _join_variant(size: str | None, color: str | None) -> str:
    parts = [p for p in (size, color) if p]
    return "/".join(parts) or DEFAULT_VARIANT_KEY


def variant_keys(event: EventModel) -> list[str]:
    """All per-variant bucket keys an event carries (aggregate excluded)."""
    if event.kind == KIND_SEATS:
        return [SEATS_KEY]
    sizes = list(event.sizes or []) or [None]
    colors = list(event.colors or []) or [None]
    return [_join_variant(s, c) for s, c in itertools.product(sizes, colors)]


def resolve_variant_key(
    event: EventModel, size: str | None = None, color: str | None = None,
) -> str:
    """Map a size/color selection onto the event's bucket key."""
    if event.kind == KIND_SEATS:
        return SEATS_KEY

    errors = []
    for label, value, allowed in (
        ("size", size, event.sizes or []),
        ("color", color, event.colors or []),
    ):
        if allowed and value not in allowed:
            errors.append({
                "field": label,
                "message": f"Invalid {label} {value!r}. Choose one of: {', '.join(allowed)}",
            })
        elif not allowed and value:
            errors.append({"field": label, "message": f"This item has no {label} options"})
    if errors:
        raise ValidationError("Invalid variant selection", details=errors)
    return _join_variant(size, color)


class InventoryLedger:
    """Per-(event, variant) capacity counters."""

    def __init__(self, settings: FelicitySettings):
        self.settings = settings

    # ── Setup ──

    async def open_buckets(
        self,
        session: AsyncSession,
        event: EventModel,
        stock_by_variant: dict[str, int] | None = None,
        total_stock: int | None = None,
    ) -> list[InventoryBucketModel]:
        """Create the counters for a new event.

        Seats events get one ``seats`` bucket sized by ``event.capacity``.
        Stock events get one bucket per size/color combination (variants absent
        from ``stock_by_variant`` are bounded only by the aggregate) plus the
        ``*`` aggregate bucket holding ``total_stock``.
        """
        if event.kind == KIND_SEATS:
            capacities = {SEATS_KEY: event.capacity}
        else:
            stock_by_variant = stock_by_variant or {}
            keys = variant_keys(event)
            unknown = sorted(set(stock_by_variant) - set(keys))
            if unknown:
                raise ValidationError(
                    "Stock defined for unknown variants",
                    details=[{"field": "stock_by_variant", "message": k} for k in unknown],
                )
            capacities = {k: stock_by_variant.get(k) for k in keys}
            if total_stock is None and stock_by_variant and len(stock_by_variant) == len(keys):
                total_stock = sum(stock_by_variant.values())
            capacities[AGGREGATE_KEY] = total_stock

        buckets = [
            InventoryBucketModel(event_id=event.id, variant_key=key, capacity=cap, reserved=0)
            for key, cap in capacities.items()
        ]
        session.add_all(buckets)
        await session.flush()
        return buckets

    async def set_capacity(
        self,
        session: AsyncSession,
        event_id: str,
        variant_key: str,
        capacity: int | None,
    ) -> bool:
        """Resize a bucket; refuses to go below what is already reserved."""
        query = update(InventoryBucketModel).where(
            InventoryBucketModel.event_id == event_id,
            InventoryBucketModel.variant_key == variant_key,
        )
        if capacity is not None:
            query = query.where(InventoryBucketModel.reserved <= capacity)
        result = await session.execute(
            query.values(capacity=capacity).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ── Reserve / commit / release ──

    async def try_reserve(
        self,
        session: AsyncSession,
        event: EventModel,
        quantity: int = 1,
        size: str | None = None,
        color: str | None = None,
    ) -> ReservationModel:
        """Atomically take ``quantity`` units or fail; never retried."""
        if quantity < 1:
            raise ValidationError(
                "Quantity must be at least 1",
                details=[{"field": "quantity", "message": "must be >= 1"}],
            )
        variant = resolve_variant_key(event, size, color)
        keys = [SEATS_KEY] if event.kind == KIND_SEATS else [variant, AGGREGATE_KEY]

        taken: list[str] = []
        for key in keys:
            if await self._decrement(session, event.id, key, quantity):
                taken.append(key)
                continue
            # Put back whatever this attempt already took before surfacing.
            for done in taken:
                await self._restore(session, event.id, done, quantity)
            logger.info(
                "Reservation refused",
                extra={"event_id": event.id, "variant": key, "quantity": quantity},
            )
            if event.kind == KIND_SEATS:
                raise CapacityReachedError()
            if key == AGGREGATE_KEY:
                raise OutOfStockError("Requested quantity exceeds the remaining stock")
            raise OutOfStockError(f"Variant {variant} is out of stock")

        reservation = ReservationModel(
            event_id=event.id,
            variant_key=variant,
            bucket_keys="|".join(keys),
            quantity=quantity,
            state=RESERVATION_HELD,
        )
        session.add(reservation)
        await session.flush()
        return reservation

    async def commit(self, session: AsyncSession, reservation_id: str) -> bool:
        """Mark a held reservation as confirmed. Counters are untouched."""
        result = await session.execute(
            update(ReservationModel)
            .where(
                ReservationModel.id == reservation_id,
                ReservationModel.state == RESERVATION_HELD,
            )
            .values(state=RESERVATION_COMMITTED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release(
        self,
        session: AsyncSession,
        reservation_id: str,
        *,
        after_event_start: bool = False,
    ) -> bool:
        """Consume a reservation token, returning its units when policy allows.

        Returns True only when units actually went back to the counters.  A
        token that was already consumed is left alone (False).  When the event
        has started and ``release_after_event_start`` is off, the token is
        forfeited instead: consumed, but the units stay taken.
        """
        row = (await session.execute(
            select(
                ReservationModel.event_id,
                ReservationModel.bucket_keys,
                ReservationModel.quantity,
            ).where(ReservationModel.id == reservation_id)
        )).one_or_none()
        if row is None:
            return False

        forfeit = after_event_start and not self.settings.release_after_event_start
        consumed = await session.execute(
            update(ReservationModel)
            .where(
                ReservationModel.id == reservation_id,
                ReservationModel.state.in_(LIVE_RESERVATION_STATES),
            )
            .values(state=RESERVATION_FORFEITED if forfeit else RESERVATION_RELEASED)
            .execution_options(synchronize_session=False)
        )
        if consumed.rowcount != 1:
            return False
        if forfeit:
            logger.info(
                "Reservation forfeited after event start",
                extra={"reservation_id": reservation_id, "event_id": row.event_id},
            )
            return False

        for key in row.bucket_keys.split("|"):
            await self._restore(session, row.event_id, key, row.quantity)
        logger.info(
            "Reservation released",
            extra={"reservation_id": reservation_id, "event_id": row.event_id,
                   "quantity": row.quantity},
        )
        return True

    # ── Read ──

    async def snapshot(
        self, session: AsyncSession, event_id: str,
    ) -> list[InventoryBucketModel]:
        result = await session.execute(
            select(InventoryBucketModel)
            .where(InventoryBucketModel.event_id == event_id)
            .order_by(InventoryBucketModel.variant_key)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_bucket(
        self, session: AsyncSession, event_id: str, variant_key: str,
    ) -> InventoryBucketModel | None:
        result = await session.execute(
            select(InventoryBucketModel)
            .where(
                InventoryBucketModel.event_id == event_id,
                InventoryBucketModel.variant_key == variant_key,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # ── Internal helpers ──

    @staticmethod
    async def _decrement(
        session: AsyncSession, event_id: str, key: str, quantity: int,
    ) -> bool:
        result = await session.execute(
            update(InventoryBucketModel)
            .where(
                InventoryBucketModel.event_id == event_id,
                InventoryBucketModel.variant_key == key,
                or_(
                    InventoryBucketModel.capacity.is_(None),
                    InventoryBucketModel.reserved + quantity <= InventoryBucketModel.capacity,
                ),
            )
            .values(reserved=InventoryBucketModel.reserved + quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def _restore(
        session: AsyncSession, event_id: str, key: str, quantity: int,
    ) -> None:
        await session.execute(
            update(InventoryBucketModel)
            .where(
                InventoryBucketModel.event_id == event_id,
                InventoryBucketModel.variant_key == key,
                InventoryBucketModel.reserved >= quantity,
            )
            .values(reserved=InventoryBucketModel.reserved - quantity)
            .execution_options(synchronize_session=False)
        )
