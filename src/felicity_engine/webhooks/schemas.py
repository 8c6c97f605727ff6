"""Request and response bodies for the webhook endpoints."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

EndpointStatus = Literal["active", "paused", "disabled"]

_URL = r"^https?://"


class WebhookEndpointCreate(BaseModel):
    url: str = Field(..., pattern=_URL, max_length=2048)
    secret: str = Field(..., min_length=16, max_length=255)
    organizer_id: Optional[str] = Field(None, max_length=64)
    event_types: list[str] = Field(default_factory=list)
    description: str = Field("", max_length=255)
    max_retries: Optional[int] = Field(None, ge=0, le=10)
    timeout_seconds: Optional[int] = Field(None, ge=1, le=60)


class WebhookEndpointUpdate(BaseModel):
    """Partial update; omitted fields keep their stored value."""

    url: Optional[str] = Field(None, pattern=_URL, max_length=2048)
    secret: Optional[str] = Field(None, min_length=16, max_length=255)
    event_types: Optional[list[str]] = None
    description: Optional[str] = Field(None, max_length=255)
    max_retries: Optional[int] = Field(None, ge=0, le=10)
    timeout_seconds: Optional[int] = Field(None, ge=1, le=60)
    status: Optional[EndpointStatus] = None


class WebhookEndpointResponse(BaseModel):
    # The signing secret is write-only.
    model_config = ConfigDict(from_attributes=True)

    id: str
    organizer_id: Optional[str] = None
    url: str
    description: str
    event_types: list[str]
    status: str
    max_retries: int
    timeout_seconds: int
    created_at: datetime
    updated_at: datetime


class WebhookDeliveryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    endpoint_id: str
    event_type: str
    payload: dict[str, Any]
    status: str
    attempts: int
    last_response_code: Optional[int] = None
    last_error: Optional[str] = None
    next_retry_at: Optional[datetime] = None
    created_at: datetime
