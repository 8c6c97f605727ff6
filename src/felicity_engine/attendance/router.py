"""Attendance API router — all endpoints are for organizers."""

from fastapi import APIRouter, Depends

from felicity_engine.attendance.schemas import (
    AttendanceResultResponse,
    AttendanceSummaryResponse,
    AuditEntryResponse,
    ChainVerificationResponse,
    ManualAttendanceRequest,
    ScanRequest,
)
from felicity_engine.common.security import caller_identity, require_api_key
from felicity_engine.registrations.schemas import RegistrationResponse

router = APIRouter(tags=["attendance"])


def _get_service():
    from felicity_engine.deps import get_attendance_service
    return get_attendance_service()


def _get_db():
    from felicity_engine.deps import get_db
    return get_db()


def _result_to_response(result) -> AttendanceResultResponse:
    return AttendanceResultResponse(
        changed=result.changed,
        registration=RegistrationResponse.model_validate(result.registration),
        entry=AuditEntryResponse.model_validate(result.entry) if result.entry else None,
    )


@router.post("/attendance/scan", response_model=AttendanceResultResponse)
async def scan_ticket(
    body: ScanRequest,
    _=Depends(require_api_key),
    actor_id: str = Depends(caller_identity),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        result = await svc.mark_by_ticket(
            session, body.ticket, actor_id, event_id=body.event_id, method=body.method,
        )
        return _result_to_response(result)


@router.post("/attendance/manual", response_model=AttendanceResultResponse)
async def manual_attendance(
    body: ManualAttendanceRequest,
    _=Depends(require_api_key),
    actor_id: str = Depends(caller_identity),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        result = await svc.manual_override(
            session,
            body.registration_id,
            actor_id,
            mark_attended=body.attended,
            reason=body.reason,
            event_id=body.event_id,
        )
        return _result_to_response(result)


@router.get("/events/{event_id}/attendance", response_model=AttendanceSummaryResponse)
async def attendance_summary(event_id: str, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        return AttendanceSummaryResponse(**await svc.attendance_summary(session, event_id))


@router.get("/events/{event_id}/attendance/audit", response_model=list[AuditEntryResponse])
async def audit_log(event_id: str, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        entries = await svc.audit_log(session, event_id)
        return [AuditEntryResponse.model_validate(e) for e in entries]


@router.get(
    "/events/{event_id}/attendance/audit/verify",
    response_model=ChainVerificationResponse,
)
async def verify_audit_chain(event_id: str, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        return ChainVerificationResponse(**await svc.verify_audit_chain(session, event_id))
