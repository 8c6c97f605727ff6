"""Payment review API router."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from felicity_engine.common.security import caller_identity, require_api_key
from felicity_engine.payments.schemas import PaymentDecision, ProofSubmit
from felicity_engine.registrations.schemas import RegistrationResponse

router = APIRouter(tags=["payments"])


def _get_service():
    from felicity_engine.deps import get_payment_service
    return get_payment_service()


def _get_db():
    from felicity_engine.deps import get_db
    return get_db()


@router.post(
    "/registrations/{registration_id}/payment/proof",
    response_model=RegistrationResponse,
)
async def submit_proof(
    registration_id: str,
    body: ProofSubmit,
    participant_id: str = Depends(caller_identity),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        reg = await svc.submit_proof(session, registration_id, participant_id, body.proof_ref)
        return RegistrationResponse.model_validate(reg)


@router.post(
    "/registrations/{registration_id}/payment/approve",
    response_model=RegistrationResponse,
)
async def approve_payment(
    registration_id: str,
    body: PaymentDecision | None = None,
    _=Depends(require_api_key),
    actor_id: str = Depends(caller_identity),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        reg = await svc.approve(
            session, registration_id, actor_id, notes=body.notes if body else "",
        )
        return RegistrationResponse.model_validate(reg)


@router.post(
    "/registrations/{registration_id}/payment/reject",
    response_model=RegistrationResponse,
)
async def reject_payment(
    registration_id: str,
    body: PaymentDecision | None = None,
    _=Depends(require_api_key),
    actor_id: str = Depends(caller_identity),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        reg = await svc.reject(
            session, registration_id, actor_id, notes=body.notes if body else "",
        )
        return RegistrationResponse.model_validate(reg)


@router.get("/events/{event_id}/payments", response_model=list[RegistrationResponse])
async def list_payments(
    event_id: str,
    status: Optional[str] = Query(None),
    _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        regs = await svc.list_payments(session, event_id, payment_status=status)
        return [RegistrationResponse.model_validate(r) for r in regs]
