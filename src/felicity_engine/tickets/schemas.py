"""Pydantic schemas for ticket endpoints."""

from pydantic import BaseModel


class TicketResponse(BaseModel):
    ticket_id: str
    qr_payload: str
    registration_id: str
    event_id: str
    participant_id: str
    status: str
    attended: bool


class DecodeRequest(BaseModel):
    payload: str


class DecodeResponse(BaseModel):
    ticket_id: str
    registration_id: str
    event_id: str
    participant_id: str
    issued_at: str
