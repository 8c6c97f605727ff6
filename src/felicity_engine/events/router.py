"""Event API router — organizer endpoints require the API key."""

from typing import Optional

from fastapi import APIRouter, Depends

from felicity_engine.common.security import caller_identity, require_api_key
from felicity_engine.events.schemas import (
    BucketResponse,
    CapacityUpdate,
    EventCreate,
    EventResponse,
    EventStatusUpdate,
    InventoryResponse,
    RegistrationOpenUpdate,
)

router = APIRouter(prefix="/events", tags=["events"])


def _get_service():
    from felicity_engine.deps import get_event_service
    return get_event_service()


def _get_db():
    from felicity_engine.deps import get_db
    return get_db()


@router.post("", response_model=EventResponse, status_code=201)
async def create_event(
    body: EventCreate,
    _=Depends(require_api_key),
    organizer_id: str = Depends(caller_identity),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        event = await svc.create_event(
            session, organizer_id=organizer_id, **body.model_dump(exclude={"form_schema"}),
            form_schema=body.form_schema,
        )
        return EventResponse.model_validate(event)


@router.get("", response_model=list[EventResponse])
async def list_events(status: Optional[str] = None, organizer_id: Optional[str] = None):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        events = await svc.list_events(session, status=status, organizer_id=organizer_id)
        return [EventResponse.model_validate(e) for e in events]


@router.get("/{event_id}", response_model=EventResponse)
async def get_event(event_id: str):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        event = await svc.get_event(session, event_id)
        return EventResponse.model_validate(event)


@router.post("/{event_id}/status", response_model=EventResponse)
async def change_status(
    event_id: str, body: EventStatusUpdate, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        event = await svc.transition(session, event_id, body.status)
        return EventResponse.model_validate(event)


@router.post("/{event_id}/registration-open", response_model=EventResponse)
async def set_registration_open(
    event_id: str, body: RegistrationOpenUpdate, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        event = await svc.set_registration_open(session, event_id, body.open)
        return EventResponse.model_validate(event)


@router.post("/{event_id}/capacity", response_model=BucketResponse)
async def change_capacity(
    event_id: str, body: CapacityUpdate, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        bucket = await svc.increase_capacity(
            session, event_id, body.capacity, variant_key=body.variant_key,
        )
        return BucketResponse.model_validate(bucket)


@router.get("/{event_id}/inventory", response_model=InventoryResponse)
async def get_inventory(event_id: str):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        buckets = await svc.inventory_snapshot(session, event_id)
        return InventoryResponse(
            event_id=event_id,
            buckets=[BucketResponse.model_validate(b) for b in buckets],
        )
