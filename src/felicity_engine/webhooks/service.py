"""Signed webhook sink for registration, payment and attendance notifications.

Delivery rows are written inside the caller's transaction. The HTTP POSTs are
queued on the session and only started by its ``after_commit`` hook, so work
that rolls back (a refused admission, a failed approval) never notifies
anyone. Sending happens on background tasks with exponential backoff; the
outcome is written back through a fresh session.
"""

import asyncio
import hashlib
import hmac
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx
from sqlalchemy import event, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from felicity_engine.common.config import FelicitySettings
from felicity_engine.webhooks.models import WebhookDeliveryModel, WebhookEndpointModel

logger = logging.getLogger(__name__)

REGISTRATION_CREATED = "registration.created"
REGISTRATION_CONFIRMED = "registration.confirmed"
REGISTRATION_CANCELLED = "registration.cancelled"
PAYMENT_APPROVED = "payment.approved"
PAYMENT_REJECTED = "payment.rejected"
ATTENDANCE_MARKED = "attendance.marked"
ATTENDANCE_UNMARKED = "attendance.unmarked"

VALID_EVENT_TYPES: frozenset[str] = frozenset({
    REGISTRATION_CREATED,
    REGISTRATION_CONFIRMED,
    REGISTRATION_CANCELLED,
    PAYMENT_APPROVED,
    PAYMENT_REJECTED,
    ATTENDANCE_MARKED,
    ATTENDANCE_UNMARKED,
})

SIGNATURE_HEADER = "X-Felicity-Signature"
EVENT_HEADER = "X-Felicity-Event"

_QUEUE_KEY = "felicity.webhook_queue"
_MAX_BACKOFF_SECONDS = 60
_RETRY_FAILED_AFTER = timedelta(minutes=5)
_EDITABLE_FIELDS = (
    "url", "secret", "event_types", "description",
    "max_retries", "timeout_seconds", "status",
)


def sign_payload(payload_json: str, secret: str) -> str:
    """HMAC-SHA256 hex digest of the exact request body."""
    return hmac.new(secret.encode("utf-8"), payload_json.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(payload: str | bytes, signature: str, secret: str) -> bool:
    """Receiver-side check of the signature header."""
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")
    return hmac.compare_digest(sign_payload(payload, secret).encode(), signature.encode())


def build_envelope(event_type: str, data: dict[str, Any]) -> dict[str, Any]:
    return {
        "event_type": event_type,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }


def _wants(endpoint: WebhookEndpointModel, event_type: str) -> bool:
    # No filter subscribes the endpoint to everything.
    return not endpoint.event_types or event_type in endpoint.event_types


def _backoff(attempt: int) -> float:
    return min(2 ** attempt, _MAX_BACKOFF_SECONDS)


class WebhookService:
    """Endpoint registry plus fire-after-commit delivery."""

    def __init__(self, settings: FelicitySettings):
        self.settings = settings
        self._http_client: httpx.AsyncClient | None = None
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._closed:
            raise RuntimeError("WebhookService is closed")
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client

    async def close(self) -> None:
        """Cancel in-flight sends, then close the HTTP client.

        Deliveries cut short stay ``pending`` in the log and can be re-sent
        with ``retry_delivery``.
        """
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d in-flight webhook sends", len(tasks))
        if self._http_client is not None:
            await self._http_client.aclose()
        self._http_client = None

    # ── Endpoint registry ──

    async def create_endpoint(
        self,
        session: AsyncSession,
        url: str,
        secret: str,
        event_types: list[str] | None = None,
        description: str = "",
        max_retries: int | None = None,
        timeout_seconds: int | None = None,
        organizer_id: str | None = None,
    ) -> WebhookEndpointModel:
        if max_retries is None:
            max_retries = self.settings.webhook_max_retries
        if timeout_seconds is None:
            timeout_seconds = self.settings.webhook_timeout_seconds
        endpoint = WebhookEndpointModel(
            organizer_id=organizer_id,
            url=url,
            secret=secret,
            description=description,
            event_types=list(event_types or []),
            max_retries=max_retries,
            timeout_seconds=timeout_seconds,
        )
        session.add(endpoint)
        await session.flush()
        logger.info(
            "Webhook endpoint registered",
            extra={"endpoint_id": endpoint.id, "organizer_id": organizer_id},
        )
        return endpoint

    async def get_endpoint(
        self, session: AsyncSession, endpoint_id: str,
    ) -> Optional[WebhookEndpointModel]:
        return await session.get(WebhookEndpointModel, endpoint_id)

    async def list_endpoints(
        self,
        session: AsyncSession,
        status: str | None = None,
        organizer_id: str | None = None,
    ) -> list[WebhookEndpointModel]:
        filters = []
        if status is not None:
            filters.append(WebhookEndpointModel.status == status)
        if organizer_id is not None:
            filters.append(WebhookEndpointModel.organizer_id == organizer_id)
        result = await session.execute(
            select(WebhookEndpointModel)
            .where(*filters)
            .order_by(WebhookEndpointModel.created_at.desc())
        )
        return list(result.scalars())

    async def update_endpoint(
        self, session: AsyncSession, endpoint_id: str, **changes: Any,
    ) -> Optional[WebhookEndpointModel]:
        endpoint = await self.get_endpoint(session, endpoint_id)
        if endpoint is None:
            return None
        for name in _EDITABLE_FIELDS:
            value = changes.get(name)
            if value is not None:
                setattr(endpoint, name, value)
        await session.flush()
        return endpoint

    async def delete_endpoint(self, session: AsyncSession, endpoint_id: str) -> bool:
        endpoint = await self.get_endpoint(session, endpoint_id)
        if endpoint is None:
            return False
        await session.delete(endpoint)
        await session.flush()
        return True

    # ── Dispatch ──

    async def _subscribers(
        self, session: AsyncSession, event_type: str, organizer_id: str | None,
    ) -> list[WebhookEndpointModel]:
        # Endpoints without an organizer hear about every organizer's events.
        scope = WebhookEndpointModel.organizer_id.is_(None)
        if organizer_id is not None:
            scope = or_(scope, WebhookEndpointModel.organizer_id == organizer_id)
        result = await session.execute(
            select(WebhookEndpointModel).where(WebhookEndpointModel.status == "active", scope)
        )
        return [ep for ep in result.scalars() if _wants(ep, event_type)]

    async def dispatch(
        self,
        session: AsyncSession,
        event_type: str,
        payload: dict[str, Any],
        organizer_id: str | None = None,
    ) -> list[WebhookDeliveryModel]:
        """Record one delivery per subscribed endpoint; sends start after commit."""
        envelope = build_envelope(event_type, payload)
        deliveries = []
        for ep in await self._subscribers(session, event_type, organizer_id):
            delivery = WebhookDeliveryModel(
                endpoint_id=ep.id, event_type=event_type, payload=envelope, status="pending",
            )
            session.add(delivery)
            deliveries.append((delivery, ep))
        if deliveries:
            await session.flush()
        for delivery, ep in deliveries:
            self._queue_send(session, delivery, ep)
        return [delivery for delivery, _ in deliveries]

    async def safe_dispatch(
        self,
        session: AsyncSession,
        event_type: str,
        payload: dict[str, Any],
        organizer_id: str | None = None,
    ) -> None:
        """Like ``dispatch`` but logs failures instead of raising."""
        try:
            await self.dispatch(session, event_type, payload, organizer_id=organizer_id)
        except Exception:
            logger.exception("Webhook dispatch failed", extra={"event_type": event_type})

    def _queue_send(
        self,
        session: AsyncSession,
        delivery: WebhookDeliveryModel,
        endpoint: WebhookEndpointModel,
    ) -> None:
        sync_session = session.sync_session
        queue = sync_session.info.get(_QUEUE_KEY)
        if queue is None:
            queue = sync_session.info[_QUEUE_KEY] = []
            event.listen(sync_session, "after_commit", self._flush_queue, once=True)
            event.listen(sync_session, "after_soft_rollback", self._drop_queue, once=True)
        queue.append(dict(
            delivery_id=delivery.id,
            url=endpoint.url,
            secret=endpoint.secret,
            payload=delivery.payload,
            max_retries=endpoint.max_retries,
            timeout=endpoint.timeout_seconds,
        ))

    def _flush_queue(self, sync_session) -> None:
        sends = sync_session.info.pop(_QUEUE_KEY, [])
        if self._closed:
            if sends:
                logger.warning("Webhook service closed; %d sends left pending", len(sends))
            return
        loop = asyncio.get_running_loop()
        for send in sends:
            task = loop.create_task(self._send_delivery(**send))
            # Hold a reference until done or the task may be collected mid-send.
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    @staticmethod
    def _drop_queue(sync_session, previous_transaction) -> None:
        dropped = sync_session.info.pop(_QUEUE_KEY, [])
        if dropped:
            logger.debug("Dropped %d unsent webhooks on rollback", len(dropped))

    # ── Delivery ──

    async def _post_once(
        self, url: str, body: str, headers: dict[str, str], timeout: int,
    ) -> tuple[int | None, str | None]:
        if self._closed:
            return None, "webhook service closed"
        try:
            resp = await self.http_client.post(url, content=body, headers=headers, timeout=timeout)
        except httpx.TimeoutException:
            return None, "timeout"
        except httpx.HTTPError as exc:
            return None, str(exc) or exc.__class__.__name__
        if resp.is_success:
            return resp.status_code, None
        return resp.status_code, f"HTTP {resp.status_code}"

    async def _send_delivery(
        self,
        delivery_id: str,
        url: str,
        secret: str,
        payload: dict[str, Any],
        max_retries: int,
        timeout: int,
    ) -> None:
        body = json.dumps(payload, default=str)
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign_payload(body, secret),
            EVENT_HEADER: payload.get("event_type", ""),
        }

        attempts = 0
        status_code = error = None
        while attempts <= max_retries:
            if attempts:
                await asyncio.sleep(_backoff(attempts - 1))
            attempts += 1
            status_code, error = await self._post_once(url, body, headers, timeout)
            if error is None:
                await self._update_delivery_status(delivery_id, "success", attempts, status_code, None)
                return

        logger.warning(
            "Webhook delivery failed",
            extra={"delivery_id": delivery_id, "url": url, "error": error, "attempts": attempts},
        )
        await self._update_delivery_status(delivery_id, "failed", attempts, status_code, error)

    async def _update_delivery_status(
        self,
        delivery_id: str,
        status: str,
        attempts: int,
        response_code: int | None,
        error: str | None,
    ) -> None:
        from felicity_engine.deps import get_db

        try:
            async with get_db().get_session() as session:
                delivery = await session.get(WebhookDeliveryModel, delivery_id)
                if delivery is None:
                    return
                delivery.status = status
                delivery.attempts = attempts
                delivery.last_response_code = response_code
                delivery.last_error = error
                delivery.next_retry_at = (
                    datetime.now(timezone.utc) + _RETRY_FAILED_AFTER if status == "failed" else None
                )
        except Exception:
            logger.exception("Could not record webhook outcome", extra={"delivery_id": delivery_id})

    # ── Delivery log ──

    async def get_deliveries(
        self,
        session: AsyncSession,
        endpoint_id: str | None = None,
        event_type: str | None = None,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WebhookDeliveryModel]:
        filters = []
        if endpoint_id is not None:
            filters.append(WebhookDeliveryModel.endpoint_id == endpoint_id)
        if event_type is not None:
            filters.append(WebhookDeliveryModel.event_type == event_type)
        if status is not None:
            filters.append(WebhookDeliveryModel.status == status)
        result = await session.execute(
            select(WebhookDeliveryModel)
            .where(*filters)
            .order_by(WebhookDeliveryModel.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars())

    async def get_delivery(
        self, session: AsyncSession, delivery_id: str,
    ) -> Optional[WebhookDeliveryModel]:
        return await session.get(WebhookDeliveryModel, delivery_id)

    async def retry_delivery(
        self, session: AsyncSession, delivery_id: str,
    ) -> Optional[WebhookDeliveryModel]:
        """Reset a delivery to pending and send it again once the session commits."""
        delivery = await self.get_delivery(session, delivery_id)
        if delivery is None:
            return None
        endpoint = await self.get_endpoint(session, delivery.endpoint_id)
        if endpoint is None:
            return None

        delivery.status = "pending"
        delivery.attempts = 0
        delivery.last_error = None
        delivery.next_retry_at = None
        await session.flush()
        self._queue_send(session, delivery, endpoint)
        return delivery
