"""Admission Controller — register, cancel, and query registrations.

``register`` checks every precondition before touching any counter, then
reserves inventory (the single race point), persists the registration and
locks the form, all in the caller's transaction.  Any failure after the
reservation rolls the whole unit back, so no decrement outlives a failed
admission.
"""

import logging
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from felicity_engine.common.config import FelicitySettings
from felicity_engine.common.exceptions import (
    AlreadyFinalizedError,
    DeadlinePassedError,
    DuplicateActiveRegistrationError,
    EventNotFoundError,
    FelicityError,
    ForbiddenError,
    RegistrationClosedError,
    RegistrationNotFoundError,
    ValidationError,
)
from felicity_engine.common.models import as_utc, utcnow
from felicity_engine.events.models import ADMITTING_STATUSES, KIND_STOCK, EventModel
from felicity_engine.forms.service import FormSchemaGuard, load_fields
from felicity_engine.inventory.service import InventoryLedger, resolve_variant_key
from felicity_engine.registrations.eligibility import check_eligibility, check_team
from felicity_engine.registrations.models import (
    ACTIVE_STATUSES,
    PAYMENT_NOT_REQUIRED,
    PAYMENT_PENDING,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    STATUS_PENDING,
    STATUS_REJECTED,
    RegistrationModel,
)
from felicity_engine.registrations.schemas import ParticipantProfile
from felicity_engine.tickets.service import TicketService
from felicity_engine.webhooks.service import (
    REGISTRATION_CANCELLED,
    REGISTRATION_CONFIRMED,
    REGISTRATION_CREATED,
)

logger = logging.getLogger(__name__)


def notification_payload(reg: RegistrationModel) -> dict[str, Any]:
    return {
        "registration_id": reg.id,
        "event_id": reg.event_id,
        "participant_id": reg.participant_id,
        "status": reg.status,
        "payment_status": reg.payment_status,
        "ticket_id": reg.ticket_id,
    }


class AdmissionService:
    """Registration admission and lifecycle."""

    def __init__(
        self,
        settings: FelicitySettings,
        ledger: InventoryLedger,
        form_guard: FormSchemaGuard,
        tickets: TicketService,
        webhook_service=None,
    ):
        self.settings = settings
        self.ledger = ledger
        self.form_guard = form_guard
        self.tickets = tickets
        self.webhook_service = webhook_service

    async def _notify(self, session: AsyncSession, event_type: str, reg: RegistrationModel) -> None:
        if self.webhook_service is None:
            return
        event = await session.get(EventModel, reg.event_id)
        await self.webhook_service.safe_dispatch(
            session, event_type, notification_payload(reg),
            organizer_id=event.organizer_id if event else None,
        )

    # ── Register ──

    async def register(
        self,
        session: AsyncSession,
        event_id: str,
        participant_id: str,
        answers: dict[str, Any] | None = None,
        size: str | None = None,
        color: str | None = None,
        quantity: int = 1,
        team_name: str | None = None,
        team_members: list[str] | None = None,
        profile: ParticipantProfile | None = None,
    ) -> RegistrationModel:
        try:
            reg = await self._register(
                session, event_id, participant_id, answers or {}, size, color,
                quantity, team_name, team_members, profile or ParticipantProfile(),
            )
        except FelicityError as exc:
            logger.info(
                "Registration refused",
                extra={"event_id": event_id, "participant_id": participant_id, "kind": exc.kind},
            )
            raise
        logger.info(
            "Registration admitted",
            extra={"event_id": event_id, "registration_id": reg.id, "status": reg.status},
        )
        return reg

    async def _register(
        self,
        session: AsyncSession,
        event_id: str,
        participant_id: str,
        answers: dict[str, Any],
        size: str | None,
        color: str | None,
        quantity: int,
        team_name: str | None,
        team_members: list[str] | None,
        profile: ParticipantProfile,
    ) -> RegistrationModel:
        # 1. event exists and admits registrations
        event = await session.get(EventModel, event_id, populate_existing=True)
        if event is None:
            raise EventNotFoundError()
        if event.status not in ADMITTING_STATUSES:
            raise RegistrationClosedError(f"Event is {event.status}, not accepting registrations")
        # 2. organizer toggle
        if not event.registration_open:
            raise RegistrationClosedError()
        # 3. deadline
        if utcnow() > as_utc(event.registration_deadline):
            raise DeadlinePassedError()
        # 4. eligibility
        check_eligibility(event, profile)
        # 5. one active registration per participant
        if await self.active_registration(session, event_id, participant_id) is not None:
            raise DuplicateActiveRegistrationError()
        # 6. team details, quantity and variant
        team_name, team_members = check_team(event, team_name, team_members)
        self._check_selection(event, size, color, quantity)

        # Answers are checked against the schema as read above; the lock below
        # fails if it changed in between.
        snapshot_version = event.schema_version
        cleaned = self.form_guard.validate_answers(load_fields(event.form_schema), answers)

        reservation = await self.ledger.try_reserve(session, event, quantity, size, color)

        free = not event.requires_payment
        reg = RegistrationModel(
            event_id=event.id,
            participant_id=participant_id,
            status=STATUS_CONFIRMED if free else STATUS_PENDING,
            custom_answers=cleaned,
            form_schema_version=snapshot_version,
            variant_size=size if event.kind == KIND_STOCK else None,
            variant_color=color if event.kind == KIND_STOCK else None,
            quantity=quantity,
            team_name=team_name,
            team_members=team_members,
            reservation_id=reservation.id,
            amount_due=event.price * quantity,
            payment_status=PAYMENT_NOT_REQUIRED if free else PAYMENT_PENDING,
            payment_notes="",
            attended=False,
        )
        session.add(reg)
        try:
            await session.flush()
        except IntegrityError as exc:
            # Lost the race against a concurrent registration of the same participant.
            raise DuplicateActiveRegistrationError() from exc

        if free:
            await self.ledger.commit(session, reservation.id)
            await self.tickets.issue_ticket(session, reg)

        await self.form_guard.lock_on_first_registration(session, event.id, snapshot_version)

        await self._notify(session, REGISTRATION_CREATED, reg)
        if free:
            await self._notify(session, REGISTRATION_CONFIRMED, reg)
        return reg

    @staticmethod
    def _check_selection(
        event: EventModel, size: str | None, color: str | None, quantity: int,
    ) -> None:
        if event.kind != KIND_STOCK:
            if quantity != 1 or size or color:
                raise ValidationError(
                    "Seat registrations take no quantity or variant",
                    details=[{"field": "quantity", "message": "Must be 1 for seat registrations"}],
                )
            return
        if quantity < 1:
            raise ValidationError(
                "Quantity must be at least 1",
                details=[{"field": "quantity", "message": "must be >= 1"}],
            )
        if event.purchase_limit is not None and quantity > event.purchase_limit:
            raise ValidationError(
                f"Maximum {event.purchase_limit} items per purchase",
                details=[{"field": "quantity", "message": f"must be <= {event.purchase_limit}"}],
            )
        resolve_variant_key(event, size, color)

    # ── Cancel ──

    async def cancel(
        self,
        session: AsyncSession,
        registration_id: str,
        participant_id: str,
        reason: str | None = None,
    ) -> RegistrationModel:
        """Cancel the caller's own registration; repeating a cancel is a no-op."""
        reg = await self.get_registration(session, registration_id)
        if reg.participant_id != participant_id:
            raise ForbiddenError()
        if reg.status == STATUS_CANCELLED:
            return reg
        if reg.status == STATUS_REJECTED:
            raise AlreadyFinalizedError("Registration was rejected and cannot be cancelled")
        if reg.attended:
            raise ValidationError("Cannot cancel a registration that has been attended")

        now = utcnow()
        result = await session.execute(
            update(RegistrationModel)
            .where(
                RegistrationModel.id == registration_id,
                RegistrationModel.status.in_(ACTIVE_STATUSES),
                RegistrationModel.attended.is_(False),
            )
            .values(status=STATUS_CANCELLED, cancel_reason=reason, cancelled_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Someone else moved it first; report from the row's current state.
            reg = await self.get_registration(session, registration_id)
            if reg.status == STATUS_CANCELLED:
                return reg
            if reg.attended:
                raise ValidationError("Cannot cancel a registration that has been attended")
            raise AlreadyFinalizedError()

        event = await session.get(EventModel, reg.event_id)
        released = False
        if reg.reservation_id:
            released = await self.ledger.release(
                session, reg.reservation_id,
                after_event_start=now >= as_utc(event.start_at),
            )
        logger.info(
            "Registration cancelled",
            extra={"registration_id": registration_id, "released": released},
        )
        reg = await self.get_registration(session, registration_id)
        await self._notify(session, REGISTRATION_CANCELLED, reg)
        return reg

    # ── Queries ──

    async def get_registration(
        self, session: AsyncSession, registration_id: str,
    ) -> RegistrationModel:
        reg = await session.get(RegistrationModel, registration_id, populate_existing=True)
        if reg is None:
            raise RegistrationNotFoundError()
        return reg

    async def list_event_registrations(
        self,
        session: AsyncSession,
        event_id: str,
        status: Optional[str] = None,
    ) -> list[RegistrationModel]:
        if await session.get(EventModel, event_id) is None:
            raise EventNotFoundError()
        query = select(RegistrationModel).where(RegistrationModel.event_id == event_id)
        if status:
            query = query.where(RegistrationModel.status == status)
        result = await session.execute(
            query.order_by(RegistrationModel.created_at)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_participant_registrations(
        self,
        session: AsyncSession,
        participant_id: str,
        status: Optional[str] = None,
    ) -> list[RegistrationModel]:
        query = select(RegistrationModel).where(RegistrationModel.participant_id == participant_id)
        if status:
            query = query.where(RegistrationModel.status == status)
        result = await session.execute(
            query.order_by(RegistrationModel.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def active_registration(
        self, session: AsyncSession, event_id: str, participant_id: str,
    ) -> Optional[RegistrationModel]:
        """The participant's live registration for the event, if any."""
        result = await session.execute(
            select(RegistrationModel)
            .where(
                RegistrationModel.event_id == event_id,
                RegistrationModel.participant_id == participant_id,
                RegistrationModel.status.in_(ACTIVE_STATUSES),
            )
            .order_by(RegistrationModel.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
