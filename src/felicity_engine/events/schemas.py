"""Pydantic schemas for event endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field

from felicity_engine.forms.schemas import FormField

EventKind = Literal["seats", "stock"]
EventStatus = Literal["draft", "published", "ongoing", "completed", "closed"]
Eligibility = Literal["open", "institution_only", "first_year", "final_year", "team"]


class EventCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    kind: EventKind
    start_at: datetime
    end_at: datetime
    registration_deadline: datetime
    registration_open: bool = True
    eligibility: Eligibility = "open"
    price: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)

    # seats events
    capacity: Optional[int] = Field(None, ge=1)

    # stock events
    sizes: list[str] = []
    colors: list[str] = []
    stock_by_variant: dict[str, int] = {}
    total_stock: Optional[int] = Field(None, ge=0)
    purchase_limit: Optional[int] = Field(None, ge=1, le=1000)

    # team events
    max_team_size: Optional[int] = Field(None, ge=1)

    form_schema: list[FormField] = []


class EventResponse(BaseModel):
    id: str
    name: str
    description: str
    organizer_id: str
    kind: str
    status: str
    start_at: datetime
    end_at: datetime
    registration_deadline: datetime
    registration_open: bool
    eligibility: str
    price: Decimal
    requires_payment: bool
    capacity: Optional[int]
    sizes: list[str]
    colors: list[str]
    purchase_limit: Optional[int]
    max_team_size: Optional[int]
    form_schema: list[FormField]
    schema_version: int
    form_locked: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class EventStatusUpdate(BaseModel):
    status: EventStatus


class RegistrationOpenUpdate(BaseModel):
    open: bool


class CapacityUpdate(BaseModel):
    """New limit for one bucket; ``capacity`` None makes it unlimited.

    ``variant_key`` defaults to ``seats`` for seats events and is required for
    stock events (``M/Red``, ``*`` for the aggregate, ...).
    """

    variant_key: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=1)


class BucketResponse(BaseModel):
    variant_key: str
    capacity: Optional[int]
    reserved: int
    remaining: Optional[int]

    model_config = {"from_attributes": True}


class InventoryResponse(BaseModel):
    event_id: str
    buckets: list[BucketResponse]
