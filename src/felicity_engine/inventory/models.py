"""SQLAlchemy models for the inventory ledger."""

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from felicity_engine.common.models import Base, TimestampMixin, generate_uuid

SEATS_KEY = "seats"
AGGREGATE_KEY = "*"
DEFAULT_VARIANT_KEY = "default"

RESERVATION_HELD = "held"
RESERVATION_COMMITTED = "committed"
RESERVATION_RELEASED = "released"
RESERVATION_FORFEITED = "forfeited"
LIVE_RESERVATION_STATES = (RESERVATION_HELD, RESERVATION_COMMITTED)


class InventoryBucketModel(Base, TimestampMixin):
    """One counter per (event, variant). ``capacity`` NULL means unlimited."""

    __tablename__ = "inventory_buckets"
    __table_args__ = (
        UniqueConstraint("event_id", "variant_key", name="uq_bucket_event_variant"),
        CheckConstraint("reserved >= 0", name="ck_bucket_reserved_non_negative"),
        CheckConstraint(
            "capacity IS NULL OR reserved <= capacity", name="ck_bucket_within_capacity"
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("events.id"), nullable=False, index=True
    )
    variant_key: Mapped[str] = mapped_column(String(64), nullable=False)
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    @property
    def remaining(self) -> int | None:
        if self.capacity is None:
            return None
        return self.capacity - self.reserved


class ReservationModel(Base, TimestampMixin):
    """Durable reservation token; consumed exactly once by release or forfeit."""

    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_reservation_quantity_positive"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("events.id"), nullable=False, index=True
    )
    variant_key: Mapped[str] = mapped_column(String(64), nullable=False)
    bucket_keys: Mapped[str] = mapped_column(String(160), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    state: Mapped[str] = mapped_column(String(16), nullable=False, default=RESERVATION_HELD, index=True)

    @property
    def keys(self) -> list[str]:
        return self.bucket_keys.split("|")
