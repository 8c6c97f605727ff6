"""Pydantic schemas for attendance endpoints."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from felicity_engine.registrations.schemas import RegistrationResponse


class ScanRequest(BaseModel):
    """``ticket`` is either the raw ticket id or the signed QR payload."""

    ticket: str = Field(..., min_length=1, max_length=2048)
    event_id: Optional[str] = None
    method: Literal["qr_scan", "manual_override"] = "qr_scan"


class ManualAttendanceRequest(BaseModel):
    registration_id: str
    attended: bool = True
    reason: str = Field("", max_length=500)
    event_id: Optional[str] = None


class AuditEntryResponse(BaseModel):
    id: str
    event_id: str
    registration_id: str
    seq: int
    actor_id: str
    action: str
    method: str
    reason: str
    prev_hash: Optional[str] = None
    entry_hash: str
    signature: str
    created_at: datetime

    model_config = {"from_attributes": True}


class AttendanceResultResponse(BaseModel):
    changed: bool
    registration: RegistrationResponse
    entry: Optional[AuditEntryResponse] = None


class ChainVerificationResponse(BaseModel):
    valid: bool
    entries_checked: int
    break_at: Optional[str] = None


class AttendanceSummaryResponse(BaseModel):
    event_id: str
    total_confirmed: int
    attended: int
    not_attended: int
    attendance_rate: float
