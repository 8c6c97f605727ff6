"""Payment Approval Workflow — proof upload and organizer review.

Approve and reject are conditional updates on ``payment_status='pending'
AND status='pending'``: a decision lands at most once, and repeating the
same decision returns the registration unchanged.
"""

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from felicity_engine.common.config import FelicitySettings
from felicity_engine.common.exceptions import (
    AlreadyFinalizedError,
    EventNotFoundError,
    ForbiddenError,
    PaymentNotRequiredError,
    PaymentProofMissingError,
    RegistrationNotFoundError,
)
from felicity_engine.common.models import utcnow
from felicity_engine.events.models import EventModel
from felicity_engine.inventory.service import InventoryLedger
from felicity_engine.registrations.models import (
    PAYMENT_APPROVED,
    PAYMENT_NOT_REQUIRED,
    PAYMENT_PENDING,
    PAYMENT_REJECTED,
    STATUS_CONFIRMED,
    STATUS_PENDING,
    STATUS_REJECTED,
    RegistrationModel,
)
from felicity_engine.registrations.service import notification_payload
from felicity_engine.tickets.service import TicketService
from felicity_engine.webhooks.service import (
    PAYMENT_APPROVED as PAYMENT_APPROVED_EVENT,
    PAYMENT_REJECTED as PAYMENT_REJECTED_EVENT,
    REGISTRATION_CONFIRMED,
)

logger = logging.getLogger(__name__)


class PaymentService:
    """Proof submission and approve/reject decisions."""

    def __init__(
        self,
        settings: FelicitySettings,
        ledger: InventoryLedger,
        tickets: TicketService,
        webhook_service=None,
    ):
        self.settings = settings
        self.ledger = ledger
        self.tickets = tickets
        self.webhook_service = webhook_service

    async def _get(self, session: AsyncSession, registration_id: str) -> RegistrationModel:
        reg = await session.get(RegistrationModel, registration_id, populate_existing=True)
        if reg is None:
            raise RegistrationNotFoundError()
        return reg

    async def _notify(self, session: AsyncSession, event_type: str, reg: RegistrationModel) -> None:
        if self.webhook_service is None:
            return
        event = await session.get(EventModel, reg.event_id)
        await self.webhook_service.safe_dispatch(
            session, event_type, notification_payload(reg),
            organizer_id=event.organizer_id if event else None,
        )

    @staticmethod
    def _pending_guard(registration_id: str):
        return (
            RegistrationModel.id == registration_id,
            RegistrationModel.payment_status == PAYMENT_PENDING,
            RegistrationModel.status == STATUS_PENDING,
        )

    async def submit_proof(
        self,
        session: AsyncSession,
        registration_id: str,
        participant_id: str,
        proof_ref: str,
    ) -> RegistrationModel:
        """Attach (or replace) the payment proof reference while review is pending."""
        reg = await self._get(session, registration_id)
        if reg.participant_id != participant_id:
            raise ForbiddenError()
        if reg.payment_status == PAYMENT_NOT_REQUIRED:
            raise PaymentNotRequiredError()
        if reg.payment_status != PAYMENT_PENDING or reg.status != STATUS_PENDING:
            raise AlreadyFinalizedError("Payment has already been reviewed")

        result = await session.execute(
            update(RegistrationModel)
            .where(*self._pending_guard(registration_id))
            .values(payment_proof_ref=proof_ref)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AlreadyFinalizedError("Payment has already been reviewed")
        logger.info("Payment proof submitted", extra={"registration_id": registration_id})
        return await self._get(session, registration_id)

    async def approve(
        self,
        session: AsyncSession,
        registration_id: str,
        actor_id: str,
        notes: str = "",
    ) -> RegistrationModel:
        reg = await self._get(session, registration_id)
        if reg.payment_status == PAYMENT_NOT_REQUIRED:
            raise PaymentNotRequiredError()
        if reg.payment_status == PAYMENT_APPROVED:
            return reg
        if reg.payment_status == PAYMENT_REJECTED or reg.status != STATUS_PENDING:
            raise AlreadyFinalizedError(f"Registration is already {reg.status}")
        if not reg.payment_proof_ref:
            raise PaymentProofMissingError()

        result = await session.execute(
            update(RegistrationModel)
            .where(
                *self._pending_guard(registration_id),
                RegistrationModel.payment_proof_ref.is_not(None),
            )
            .values(
                payment_status=PAYMENT_APPROVED,
                status=STATUS_CONFIRMED,
                payment_reviewed_by=actor_id,
                payment_reviewed_at=utcnow(),
                payment_notes=notes or "",
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            reg = await self._get(session, registration_id)
            if reg.payment_status == PAYMENT_APPROVED:
                return reg
            raise AlreadyFinalizedError(f"Registration is already {reg.status}")

        reg = await self._get(session, registration_id)
        if reg.reservation_id:
            await self.ledger.commit(session, reg.reservation_id)
        await self.tickets.issue_ticket(session, reg)
        logger.info(
            "Payment approved",
            extra={"registration_id": registration_id, "reviewed_by": actor_id},
        )
        await self._notify(session, PAYMENT_APPROVED_EVENT, reg)
        await self._notify(session, REGISTRATION_CONFIRMED, reg)
        return reg

    async def reject(
        self,
        session: AsyncSession,
        registration_id: str,
        actor_id: str,
        notes: str = "",
    ) -> RegistrationModel:
        reg = await self._get(session, registration_id)
        if reg.payment_status == PAYMENT_NOT_REQUIRED:
            raise PaymentNotRequiredError()
        if reg.payment_status == PAYMENT_REJECTED:
            return reg
        if reg.payment_status == PAYMENT_APPROVED or reg.status != STATUS_PENDING:
            raise AlreadyFinalizedError(f"Registration is already {reg.status}")

        result = await session.execute(
            update(RegistrationModel)
            .where(*self._pending_guard(registration_id))
            .values(
                payment_status=PAYMENT_REJECTED,
                status=STATUS_REJECTED,
                payment_reviewed_by=actor_id,
                payment_reviewed_at=utcnow(),
                payment_notes=notes or "",
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            reg = await self._get(session, registration_id)
            if reg.payment_status == PAYMENT_REJECTED:
                return reg
            raise AlreadyFinalizedError(f"Registration is already {reg.status}")

        reg = await self._get(session, registration_id)
        released = False
        if reg.reservation_id:
            released = await self.ledger.release(session, reg.reservation_id)
        logger.info(
            "Payment rejected",
            extra={"registration_id": registration_id, "reviewed_by": actor_id,
                   "released": released},
        )
        await self._notify(session, PAYMENT_REJECTED_EVENT, reg)
        return reg

    async def list_payments(
        self,
        session: AsyncSession,
        event_id: str,
        payment_status: Optional[str] = None,
    ) -> list[RegistrationModel]:
        """Registrations of a paid event, oldest first, for the review queue."""
        if await session.get(EventModel, event_id) is None:
            raise EventNotFoundError()
        query = select(RegistrationModel).where(
            RegistrationModel.event_id == event_id,
            RegistrationModel.payment_status != PAYMENT_NOT_REQUIRED,
        )
        if payment_status:
            query = query.where(RegistrationModel.payment_status == payment_status)
        if payment_status == PAYMENT_PENDING:
            # A cancelled registration keeps its undecided payment but leaves the queue.
            query = query.where(RegistrationModel.status == STATUS_PENDING)
        result = await session.execute(
            query.order_by(RegistrationModel.created_at)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())
