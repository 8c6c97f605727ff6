"""Registration API router."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from felicity_engine.common.exceptions import ForbiddenError, RegistrationNotFoundError
from felicity_engine.common.security import caller_identity, is_organizer, require_api_key
from felicity_engine.registrations.schemas import RegistrationCreate, RegistrationResponse

router = APIRouter(tags=["registrations"])


def _get_service():
    from felicity_engine.deps import get_admission_service
    return get_admission_service()


def _get_db():
    from felicity_engine.deps import get_db
    return get_db()


@router.post(
    "/events/{event_id}/registrations",
    response_model=RegistrationResponse,
    status_code=201,
)
async def register(
    event_id: str,
    body: RegistrationCreate,
    participant_id: str = Depends(caller_identity),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        reg = await svc.register(
            session,
            event_id,
            participant_id,
            answers=body.answers,
            size=body.size,
            color=body.color,
            quantity=body.quantity,
            team_name=body.team_name,
            team_members=body.team_members,
            profile=body.profile,
        )
        return RegistrationResponse.model_validate(reg)


@router.get("/events/{event_id}/registrations", response_model=list[RegistrationResponse])
async def list_event_registrations(
    event_id: str,
    status: Optional[str] = Query(None),
    _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        regs = await svc.list_event_registrations(session, event_id, status=status)
        return [RegistrationResponse.model_validate(r) for r in regs]


@router.get("/events/{event_id}/registrations/active", response_model=RegistrationResponse)
async def get_active_registration(
    event_id: str, participant_id: str = Depends(caller_identity),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        reg = await svc.active_registration(session, event_id, participant_id)
        if reg is None:
            raise RegistrationNotFoundError("No active registration for this event")
        return RegistrationResponse.model_validate(reg)


@router.get("/registrations/{registration_id}", response_model=RegistrationResponse)
async def get_registration(
    registration_id: str,
    actor_id: str = Depends(caller_identity),
    organizer: bool = Depends(is_organizer),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        reg = await svc.get_registration(session, registration_id)
        if not organizer and reg.participant_id != actor_id:
            raise ForbiddenError()
        return RegistrationResponse.model_validate(reg)


@router.delete("/registrations/{registration_id}", response_model=RegistrationResponse)
async def cancel_registration(
    registration_id: str,
    reason: Optional[str] = Query(None, max_length=500),
    participant_id: str = Depends(caller_identity),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        reg = await svc.cancel(session, registration_id, participant_id, reason=reason)
        return RegistrationResponse.model_validate(reg)


@router.get(
    "/participants/{participant_id}/registrations",
    response_model=list[RegistrationResponse],
)
async def list_participant_registrations(
    participant_id: str,
    status: Optional[str] = Query(None),
    actor_id: str = Depends(caller_identity),
    organizer: bool = Depends(is_organizer),
):
    if not organizer and participant_id != actor_id:
        raise ForbiddenError("Cannot list another participant's registrations")
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        regs = await svc.list_participant_registrations(session, participant_id, status=status)
        return [RegistrationResponse.model_validate(r) for r in regs]
