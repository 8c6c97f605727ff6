"""Ticket issuance: unique ticket ids, signed QR payloads, SVG rendering."""

import io
import logging
from typing import Any

import qrcode
import qrcode.image.svg
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from felicity_engine.common.config import FelicitySettings
from felicity_engine.common.exceptions import (
    InvalidTicketPayloadError,
    TicketIssueError,
    TicketNotFoundError,
)
from felicity_engine.registrations.models import RegistrationModel
from felicity_engine.tickets.generator import (
    InvalidPayload,
    decode_qr_payload,
    encode_qr_payload,
    generate_ticket_id,
    looks_like_qr_payload,
)

logger = logging.getLogger(__name__)


class TicketService:
    """Issues exactly one ticket per confirmed registration."""

    def __init__(self, settings: FelicitySettings):
        self.settings = settings

    async def issue_ticket(
        self, session: AsyncSession, registration: RegistrationModel,
    ) -> tuple[str, str]:
        """Assign a ticket id and QR payload; returns the existing pair when already issued."""
        if registration.ticket_id:
            return registration.ticket_id, registration.qr_payload

        for attempt in range(1, self.settings.ticket_max_attempts + 1):
            ticket_id = generate_ticket_id(self.settings.ticket_prefix)
            taken = await session.scalar(
                select(RegistrationModel.id).where(RegistrationModel.ticket_id == ticket_id)
            )
            if taken is None:
                break
            logger.warning("Ticket id collision", extra={"attempt": attempt})
        else:
            raise TicketIssueError()

        qr_payload = encode_qr_payload(
            ticket_id=ticket_id,
            registration_id=registration.id,
            event_id=registration.event_id,
            participant_id=registration.participant_id,
            hmac_key=self.settings.current_hmac_key,
            key_version=self.settings.current_hmac_version,
        )
        # The unique column remains the final guard against a racing issuer.
        await session.execute(
            update(RegistrationModel)
            .where(RegistrationModel.id == registration.id, RegistrationModel.ticket_id.is_(None))
            .values(ticket_id=ticket_id, qr_payload=qr_payload)
            .execution_options(synchronize_session=False)
        )
        await session.refresh(registration)
        if registration.ticket_id != ticket_id:
            logger.info(
                "Ticket already issued concurrently",
                extra={"registration_id": registration.id},
            )
        else:
            logger.info(
                "Ticket issued",
                extra={"registration_id": registration.id, "ticket_id": ticket_id},
            )
        return registration.ticket_id, registration.qr_payload

    def decode_qr_payload(self, payload: str) -> dict[str, Any]:
        try:
            return decode_qr_payload(payload, self.settings.hmac_keyring)
        except InvalidPayload as exc:
            logger.warning("Rejected QR payload", extra={"reason": str(exc)})
            raise InvalidTicketPayloadError() from exc

    def resolve_ticket_id(self, ticket_or_payload: str) -> str:
        """Accept either a raw ticket id or a signed QR payload."""
        value = ticket_or_payload.strip()
        if looks_like_qr_payload(value):
            return self.decode_qr_payload(value)["tid"]
        return value

    async def get_by_ticket(
        self, session: AsyncSession, ticket_or_payload: str,
    ) -> RegistrationModel:
        ticket_id = self.resolve_ticket_id(ticket_or_payload)
        result = await session.execute(
            select(RegistrationModel)
            .where(RegistrationModel.ticket_id == ticket_id)
            .execution_options(populate_existing=True)
        )
        registration = result.scalar_one_or_none()
        if registration is None:
            raise TicketNotFoundError()
        return registration

    @staticmethod
    def render_qr_svg(qr_payload: str) -> bytes:
        qr = qrcode.QRCode(
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=10,
            border=4,
            image_factory=qrcode.image.svg.SvgPathImage,
        )
        qr.add_data(qr_payload)
        qr.make(fit=True)
        buffer = io.BytesIO()
        qr.make_image().save(buffer)
        return buffer.getvalue()
