"""SQLAlchemy models for registrations."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from felicity_engine.common.models import Base, TimestampMixin, generate_uuid

STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_CANCELLED = "cancelled"
STATUS_REJECTED = "rejected"
ACTIVE_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED)

PAYMENT_NOT_REQUIRED = "not_required"
PAYMENT_PENDING = "pending"
PAYMENT_APPROVED = "approved"
PAYMENT_REJECTED = "rejected"

SCAN_QR = "qr_scan"
SCAN_MANUAL = "manual_override"
SCAN_METHODS = (SCAN_QR, SCAN_MANUAL)

_ACTIVE_PREDICATE = "status IN ('pending', 'confirmed')"


class RegistrationModel(Base, TimestampMixin):
    __tablename__ = "registrations"
    __table_args__ = (
        # Partial index: at most one active registration per participant and event.
        # Cancelled/rejected rows stay behind as history.
        Index(
            "uq_registration_active_participant",
            "event_id",
            "participant_id",
            unique=True,
            sqlite_where=text(_ACTIVE_PREDICATE),
            postgresql_where=text(_ACTIVE_PREDICATE),
        ),
        Index("ix_registration_event_created", "event_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("events.id"), nullable=False, index=True
    )
    participant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=STATUS_PENDING, index=True)

    custom_answers: Mapped[dict] = mapped_column(JSON, default=dict)
    form_schema_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    variant_size: Mapped[str | None] = mapped_column(String(32), nullable=True)
    variant_color: Mapped[str | None] = mapped_column(String(32), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    team_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    team_members: Mapped[list] = mapped_column(JSON, default=list)

    reservation_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("reservations.id"), nullable=True
    )
    amount_due: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)

    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PAYMENT_NOT_REQUIRED, index=True
    )
    payment_proof_ref: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    payment_notes: Mapped[str] = mapped_column(Text, default="")
    payment_reviewed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payment_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    ticket_id: Mapped[str | None] = mapped_column(String(40), unique=True, nullable=True, index=True)
    qr_payload: Mapped[str | None] = mapped_column(Text, nullable=True)

    attended: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    attended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scan_method: Mapped[str | None] = mapped_column(String(20), nullable=True)
    scanned_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES
