"""Attendance Ledger — idempotent check-in with a hash-chained audit trail.

Every change of a registration's ``attended`` flag appends exactly one
entry to its event's chain.  Repeating a scan or override that changes
nothing appends nothing and reports ``changed=False``.
"""

import hashlib
import hmac as hmac_mod
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from felicity_engine.attendance.models import (
    ACTION_MARK_PRESENT,
    ACTION_UNMARK,
    AttendanceAuditModel,
)
from felicity_engine.common.config import FelicitySettings
from felicity_engine.common.exceptions import (
    ConflictError,
    EventNotFoundError,
    NotConfirmedError,
    RegistrationNotFoundError,
    ValidationError,
)
from felicity_engine.common.models import as_utc, utcnow
from felicity_engine.events.models import EventModel
from felicity_engine.registrations.models import (
    SCAN_MANUAL,
    SCAN_METHODS,
    SCAN_QR,
    STATUS_CONFIRMED,
    RegistrationModel,
)
from felicity_engine.registrations.service import notification_payload
from felicity_engine.tickets.service import TicketService
from felicity_engine.webhooks.service import ATTENDANCE_MARKED, ATTENDANCE_UNMARKED

logger = logging.getLogger(__name__)


@dataclass
class AttendanceResult:
    registration: RegistrationModel
    entry: Optional[AttendanceAuditModel]
    changed: bool


def _timestamp(value: datetime) -> str:
    return as_utc(value).astimezone(timezone.utc).isoformat()


class AttendanceService:
    """Marks attendance and maintains the per-event audit chain."""

    def __init__(self, settings: FelicitySettings, tickets: TicketService, webhook_service=None):
        self.settings = settings
        self.tickets = tickets
        self.webhook_service = webhook_service

    # ── Mark ──

    async def mark_by_ticket(
        self,
        session: AsyncSession,
        ticket_or_payload: str,
        actor_id: str,
        event_id: str | None = None,
        method: str = SCAN_QR,
    ) -> AttendanceResult:
        """Check in the holder of a ticket (raw id or signed QR payload)."""
        if method not in SCAN_METHODS:
            raise ValidationError(
                f"Unknown scan method: {method}",
                details=[{"field": "method", "message": "Must be qr_scan or manual_override"}],
            )
        reg = await self.tickets.get_by_ticket(session, ticket_or_payload)
        if event_id is not None and reg.event_id != event_id:
            raise ValidationError(
                "Ticket belongs to a different event",
                details=[{"field": "event_id", "message": "Ticket is not valid for this event"}],
            )
        if reg.status != STATUS_CONFIRMED:
            raise NotConfirmedError(f"Registration is {reg.status}")
        return await self._set_attended(session, reg, actor_id, True, method, "")

    async def manual_override(
        self,
        session: AsyncSession,
        registration_id: str,
        actor_id: str,
        mark_attended: bool,
        reason: str = "",
        event_id: str | None = None,
    ) -> AttendanceResult:
        reason = (reason or "").strip()
        if not mark_attended and not reason:
            raise ValidationError(
                "A reason is required to unmark attendance",
                details=[{"field": "reason", "message": "This field is required"}],
            )
        reg = await session.get(RegistrationModel, registration_id, populate_existing=True)
        if reg is None:
            raise RegistrationNotFoundError()
        if event_id is not None and reg.event_id != event_id:
            raise ValidationError("Registration belongs to a different event")
        if mark_attended and reg.status != STATUS_CONFIRMED:
            raise NotConfirmedError(f"Registration is {reg.status}")
        return await self._set_attended(session, reg, actor_id, mark_attended, SCAN_MANUAL, reason)

    async def _set_attended(
        self,
        session: AsyncSession,
        reg: RegistrationModel,
        actor_id: str,
        attended: bool,
        method: str,
        reason: str,
    ) -> AttendanceResult:
        if reg.attended == attended:
            return AttendanceResult(reg, await self.latest_entry(session, reg.id), False)

        if attended:
            guard = (RegistrationModel.attended.is_(False),
                     RegistrationModel.status == STATUS_CONFIRMED)
            values = dict(attended=True, attended_at=utcnow(), scan_method=method,
                          scanned_by=actor_id)
        else:
            guard = (RegistrationModel.attended.is_(True),)
            values = dict(attended=False, attended_at=None, scan_method=None, scanned_by=None)

        result = await session.execute(
            update(RegistrationModel)
            .where(RegistrationModel.id == reg.id, *guard)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = await session.get(RegistrationModel, reg.id, populate_existing=True)
            if current.attended == attended:
                return AttendanceResult(current, await self.latest_entry(session, reg.id), False)
            if current.status != STATUS_CONFIRMED:
                raise NotConfirmedError(f"Registration is {current.status}")
            raise ConflictError()

        action = ACTION_MARK_PRESENT if attended else ACTION_UNMARK
        entry = await self._append(session, reg.event_id, reg.id, actor_id, action, method, reason)
        reg = await session.get(RegistrationModel, reg.id, populate_existing=True)
        logger.info(
            "Attendance %s", "marked" if attended else "unmarked",
            extra={"registration_id": reg.id, "event_id": reg.event_id,
                   "method": method, "actor_id": actor_id, "seq": entry.seq},
        )

        if self.webhook_service is not None:
            event = await session.get(EventModel, reg.event_id)
            await self.webhook_service.safe_dispatch(
                session,
                ATTENDANCE_MARKED if attended else ATTENDANCE_UNMARKED,
                {**notification_payload(reg), "method": method, "actor_id": actor_id},
                organizer_id=event.organizer_id if event else None,
            )
        return AttendanceResult(reg, entry, True)

    # ── Audit chain ──

    async def _append(
        self,
        session: AsyncSession,
        event_id: str,
        registration_id: str,
        actor_id: str,
        action: str,
        method: str,
        reason: str,
    ) -> AttendanceAuditModel:
        # Claiming the sequence number serialises appends for this event.
        seq = (await session.execute(
            update(EventModel)
            .where(EventModel.id == event_id)
            .values(audit_seq=EventModel.audit_seq + 1)
            .returning(EventModel.audit_seq)
            .execution_options(synchronize_session=False)
        )).scalar_one()

        prev_hash = None
        if seq > 1:
            prev_hash = await session.scalar(
                select(AttendanceAuditModel.entry_hash).where(
                    AttendanceAuditModel.event_id == event_id,
                    AttendanceAuditModel.seq == seq - 1,
                )
            )

        created_at = utcnow()
        entry_hash = self._compute_entry_hash(
            event_id, registration_id, seq, actor_id, action, method, reason,
            _timestamp(created_at), prev_hash,
        )
        entry = AttendanceAuditModel(
            event_id=event_id,
            registration_id=registration_id,
            seq=seq,
            actor_id=actor_id,
            action=action,
            method=method,
            reason=reason,
            prev_hash=prev_hash,
            entry_hash=entry_hash,
            signature=self._sign(entry_hash),
            created_at=created_at,
            updated_at=created_at,
        )
        session.add(entry)
        await session.flush()
        return entry

    async def latest_entry(
        self, session: AsyncSession, registration_id: str,
    ) -> Optional[AttendanceAuditModel]:
        result = await session.execute(
            select(AttendanceAuditModel)
            .where(AttendanceAuditModel.registration_id == registration_id)
            .order_by(AttendanceAuditModel.seq.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def audit_log(
        self, session: AsyncSession, event_id: str,
    ) -> list[AttendanceAuditModel]:
        """Entries for an event, oldest first."""
        if await session.get(EventModel, event_id) is None:
            raise EventNotFoundError()
        result = await session.execute(
            select(AttendanceAuditModel)
            .where(AttendanceAuditModel.event_id == event_id)
            .order_by(AttendanceAuditModel.created_at.asc(), AttendanceAuditModel.seq.asc())
        )
        return list(result.scalars().all())

    async def verify_audit_chain(
        self, session: AsyncSession, event_id: str,
    ) -> dict[str, Any]:
        """Walk the chain oldest→newest, verify linkage, hashes and signatures."""
        result = await session.execute(
            select(AttendanceAuditModel)
            .where(AttendanceAuditModel.event_id == event_id)
            .order_by(AttendanceAuditModel.seq.asc())
            .execution_options(populate_existing=True)
        )
        entries = list(result.scalars().all())

        prev_hash = None
        for index, entry in enumerate(entries):
            expected_hash = self._compute_entry_hash(
                entry.event_id, entry.registration_id, entry.seq, entry.actor_id,
                entry.action, entry.method, entry.reason,
                _timestamp(entry.created_at), entry.prev_hash,
            )
            if (
                entry.seq != index + 1
                or entry.prev_hash != prev_hash
                or entry.entry_hash != expected_hash
                or not self._verify_signature(entry.entry_hash, entry.signature)
            ):
                logger.warning(
                    "Attendance audit chain broken",
                    extra={"event_id": event_id, "entry_id": entry.id, "seq": entry.seq},
                )
                return {"valid": False, "entries_checked": index, "break_at": entry.id}
            prev_hash = entry.entry_hash

        return {"valid": True, "entries_checked": len(entries), "break_at": None}

    # ── Summary ──

    async def attendance_summary(
        self, session: AsyncSession, event_id: str,
    ) -> dict[str, Any]:
        if await session.get(EventModel, event_id) is None:
            raise EventNotFoundError()
        row = (await session.execute(
            select(
                func.count(RegistrationModel.id),
                func.count(RegistrationModel.id).filter(RegistrationModel.attended.is_(True)),
            ).where(
                RegistrationModel.event_id == event_id,
                RegistrationModel.status == STATUS_CONFIRMED,
            )
        )).one()
        total, attended = row[0] or 0, row[1] or 0
        return {
            "event_id": event_id,
            "total_confirmed": total,
            "attended": attended,
            "not_attended": total - attended,
            "attendance_rate": round(attended / total * 100, 1) if total else 0.0,
        }

    # ── Internal helpers ──

    @staticmethod
    def _compute_entry_hash(
        event_id: str,
        registration_id: str,
        seq: int,
        actor_id: str,
        action: str,
        method: str,
        reason: str,
        created_at: str,
        prev_hash: str | None,
    ) -> str:
        """SHA-256 of canonical JSON of the entry fields."""
        canonical = json.dumps(
            {
                "event_id": event_id,
                "registration_id": registration_id,
                "seq": seq,
                "actor_id": actor_id,
                "action": action,
                "method": method,
                "reason": reason,
                "created_at": created_at,
                "prev_hash": prev_hash,
            },
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(canonical.encode()).hexdigest()

    def _sign(self, entry_hash: str) -> str:
        """HMAC-SHA256 of entry_hash with the current HMAC key."""
        return hmac_mod.new(
            self.settings.current_hmac_key.encode(),
            entry_hash.encode(),
            hashlib.sha256,
        ).hexdigest()

    def _verify_signature(self, entry_hash: str, signature: str) -> bool:
        """Verify signature against all keys in the keyring."""
        for _version, key in self.settings.hmac_keyring.items():
            expected = hmac_mod.new(
                key.encode(), entry_hash.encode(), hashlib.sha256,
            ).hexdigest()
            if hmac_mod.compare_digest(expected, signature):
                return True
        return False
