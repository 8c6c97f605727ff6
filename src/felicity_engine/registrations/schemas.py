"""Pydantic schemas for registration endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field


class ParticipantProfile(BaseModel):
    """Attributes the eligibility rules are evaluated against.

    Supplied by the fronting service that owns the participant's account.
    """

    institution_member: bool = False
    year_of_study: Optional[int] = Field(None, ge=1, le=10)
    final_year: bool = False


class RegistrationCreate(BaseModel):
    answers: dict[str, Any] = {}
    size: Optional[str] = None
    color: Optional[str] = None
    quantity: int = Field(1, ge=1, le=1000)
    team_name: Optional[str] = Field(None, max_length=100)
    team_members: list[str] = []
    profile: ParticipantProfile = Field(default_factory=ParticipantProfile)


class RegistrationResponse(BaseModel):
    id: str
    event_id: str
    participant_id: str
    status: str
    custom_answers: dict[str, Any]
    form_schema_version: int
    variant_size: Optional[str] = None
    variant_color: Optional[str] = None
    quantity: int
    team_name: Optional[str] = None
    team_members: list[str] = []
    amount_due: Decimal
    payment_status: str
    payment_proof_ref: Optional[str] = None
    payment_notes: str = ""
    payment_reviewed_by: Optional[str] = None
    payment_reviewed_at: Optional[datetime] = None
    ticket_id: Optional[str] = None
    qr_payload: Optional[str] = None
    attended: bool
    attended_at: Optional[datetime] = None
    scan_method: Optional[str] = None
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}
