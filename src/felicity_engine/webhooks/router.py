"""Webhook subscription API; every route is organizer-only."""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from felicity_engine.common.exceptions import NotFoundError, ValidationError
from felicity_engine.common.security import require_api_key
from felicity_engine.webhooks.schemas import (
    WebhookDeliveryResponse,
    WebhookEndpointCreate,
    WebhookEndpointResponse,
    WebhookEndpointUpdate,
)
from felicity_engine.webhooks.service import VALID_EVENT_TYPES

router = APIRouter(
    prefix="/webhooks", tags=["webhooks"], dependencies=[Depends(require_api_key)],
)


def _get_service():
    from felicity_engine.deps import get_webhook_service
    return get_webhook_service()


def _get_db():
    from felicity_engine.deps import get_db
    return get_db()


def _check_event_types(event_types: list[str] | None) -> None:
    unknown = [et for et in event_types or [] if et not in VALID_EVENT_TYPES]
    if unknown:
        raise ValidationError(
            f"Unknown event type(s): {', '.join(unknown)}",
            details=[{"field": "event_types", "message": et} for et in unknown],
        )


async def _endpoint_or_404(svc, session, endpoint_id: str):
    endpoint = await svc.get_endpoint(session, endpoint_id)
    if endpoint is None:
        raise NotFoundError("Webhook endpoint not found")
    return endpoint


@router.post("", response_model=WebhookEndpointResponse, status_code=201)
async def create_webhook_endpoint(body: WebhookEndpointCreate):
    _check_event_types(body.event_types)
    svc = _get_service()
    async with _get_db().get_session() as session:
        endpoint = await svc.create_endpoint(session, **body.model_dump())
        return WebhookEndpointResponse.model_validate(endpoint)


@router.get("", response_model=list[WebhookEndpointResponse])
async def list_webhook_endpoints(
    status: str | None = Query(None),
    organizer_id: str | None = Query(None),
):
    svc = _get_service()
    async with _get_db().get_session() as session:
        endpoints = await svc.list_endpoints(session, status=status, organizer_id=organizer_id)
        return [WebhookEndpointResponse.model_validate(ep) for ep in endpoints]


@router.get("/{endpoint_id}", response_model=WebhookEndpointResponse)
async def get_webhook_endpoint(endpoint_id: str):
    svc = _get_service()
    async with _get_db().get_session() as session:
        endpoint = await _endpoint_or_404(svc, session, endpoint_id)
        return WebhookEndpointResponse.model_validate(endpoint)


@router.patch("/{endpoint_id}", response_model=WebhookEndpointResponse)
async def update_webhook_endpoint(endpoint_id: str, body: WebhookEndpointUpdate):
    _check_event_types(body.event_types)
    svc = _get_service()
    async with _get_db().get_session() as session:
        await _endpoint_or_404(svc, session, endpoint_id)
        endpoint = await svc.update_endpoint(
            session, endpoint_id, **body.model_dump(exclude_unset=True),
        )
        return WebhookEndpointResponse.model_validate(endpoint)


@router.delete("/{endpoint_id}", status_code=204)
async def delete_webhook_endpoint(endpoint_id: str):
    svc = _get_service()
    async with _get_db().get_session() as session:
        if not await svc.delete_endpoint(session, endpoint_id):
            raise NotFoundError("Webhook endpoint not found")
    return Response(status_code=204)


@router.get("/{endpoint_id}/deliveries", response_model=list[WebhookDeliveryResponse])
async def list_endpoint_deliveries(
    endpoint_id: str,
    event_type: str | None = Query(None),
    status: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    svc = _get_service()
    async with _get_db().get_session() as session:
        await _endpoint_or_404(svc, session, endpoint_id)
        deliveries = await svc.get_deliveries(
            session, endpoint_id=endpoint_id, event_type=event_type,
            status=status, limit=limit, offset=offset,
        )
        return [WebhookDeliveryResponse.model_validate(d) for d in deliveries]


@router.post("/deliveries/{delivery_id}/retry", response_model=WebhookDeliveryResponse)
async def retry_webhook_delivery(delivery_id: str):
    """Re-send a delivery after the current request commits."""
    svc = _get_service()
    async with _get_db().get_session() as session:
        delivery = await svc.retry_delivery(session, delivery_id)
        if delivery is None:
            raise NotFoundError("Delivery not found")
        return WebhookDeliveryResponse.model_validate(delivery)
