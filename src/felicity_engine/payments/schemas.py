"""Pydantic schemas for payment endpoints."""

from pydantic import BaseModel, Field


class ProofSubmit(BaseModel):
    proof_ref: str = Field(..., min_length=1, max_length=2048)


class PaymentDecision(BaseModel):
    notes: str = Field("", max_length=2000)
