"""Ticket API router."""

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from felicity_engine.common.exceptions import ForbiddenError
from felicity_engine.common.security import caller_identity, is_organizer, require_api_key
from felicity_engine.tickets.schemas import DecodeRequest, DecodeResponse, TicketResponse

router = APIRouter(prefix="/tickets", tags=["tickets"])


def _get_service():
    from felicity_engine.deps import get_ticket_service
    return get_ticket_service()


def _get_db():
    from felicity_engine.deps import get_db
    return get_db()


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(
    ticket_id: str,
    actor_id: str = Depends(caller_identity),
    organizer: bool = Depends(is_organizer),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        reg = await svc.get_by_ticket(session, ticket_id)
        if not organizer and reg.participant_id != actor_id:
            raise ForbiddenError()
        return TicketResponse(
            ticket_id=reg.ticket_id,
            qr_payload=reg.qr_payload,
            registration_id=reg.id,
            event_id=reg.event_id,
            participant_id=reg.participant_id,
            status=reg.status,
            attended=reg.attended,
        )


@router.get("/{ticket_id}/qr.svg")
async def get_ticket_qr(
    ticket_id: str,
    actor_id: str = Depends(caller_identity),
    organizer: bool = Depends(is_organizer),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        reg = await svc.get_by_ticket(session, ticket_id)
        if not organizer and reg.participant_id != actor_id:
            raise ForbiddenError()
        svg = svc.render_qr_svg(reg.qr_payload)
    return Response(
        content=svg,
        media_type="image/svg+xml",
        headers={"Cache-Control": "no-store"},
    )


@router.post("/decode", response_model=DecodeResponse)
async def decode_ticket(body: DecodeRequest, _=Depends(require_api_key)):
    claims = _get_service().decode_qr_payload(body.payload)
    return DecodeResponse(
        ticket_id=claims["tid"],
        registration_id=claims.get("rid", ""),
        event_id=claims.get("eid", ""),
        participant_id=claims.get("pid", ""),
        issued_at=claims.get("iat", ""),
    )
