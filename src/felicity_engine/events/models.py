"""SQLAlchemy models for events."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from felicity_engine.common.models import Base, TimestampMixin, generate_uuid

KIND_SEATS = "seats"
KIND_STOCK = "stock"
EVENT_KINDS = frozenset({KIND_SEATS, KIND_STOCK})

STATUS_DRAFT = "draft"
STATUS_PUBLISHED = "published"
STATUS_ONGOING = "ongoing"
STATUS_COMPLETED = "completed"
STATUS_CLOSED = "closed"
EVENT_STATUSES = frozenset({
    STATUS_DRAFT, STATUS_PUBLISHED, STATUS_ONGOING, STATUS_COMPLETED, STATUS_CLOSED,
})
ADMITTING_STATUSES = frozenset({STATUS_PUBLISHED, STATUS_ONGOING})

ELIGIBILITY_OPEN = "open"
ELIGIBILITY_INSTITUTION = "institution_only"
ELIGIBILITY_FIRST_YEAR = "first_year"
ELIGIBILITY_FINAL_YEAR = "final_year"
ELIGIBILITY_TEAM = "team"
ELIGIBILITY_RULES = frozenset({
    ELIGIBILITY_OPEN,
    ELIGIBILITY_INSTITUTION,
    ELIGIBILITY_FIRST_YEAR,
    ELIGIBILITY_FINAL_YEAR,
    ELIGIBILITY_TEAM,
})


class EventModel(Base, TimestampMixin):
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_event_price_non_negative"),
        CheckConstraint("capacity IS NULL OR capacity >= 1", name="ck_event_capacity_positive"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    organizer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=STATUS_DRAFT, index=True)

    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    registration_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    registration_open: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    eligibility: Mapped[str] = mapped_column(String(32), nullable=False, default=ELIGIBILITY_OPEN)

    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sizes: Mapped[list] = mapped_column(JSON, default=list)
    colors: Mapped[list] = mapped_column(JSON, default=list)
    purchase_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_team_size: Mapped[int | None] = mapped_column(Integer, nullable=True)

    form_schema: Mapped[list] = mapped_column(JSON, default=list)
    schema_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    form_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    audit_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    @property
    def requires_payment(self) -> bool:
        return self.price is not None and self.price > 0
