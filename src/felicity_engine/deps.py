"""Dependency injection singletons for Felicity-Engine."""

from felicity_engine.common.config import get_settings
from felicity_engine.common.database import DatabaseManager
from felicity_engine.attendance.service import AttendanceService
from felicity_engine.events.service import EventService
from felicity_engine.forms.service import FormSchemaGuard
from felicity_engine.inventory.service import InventoryLedger
from felicity_engine.payments.service import PaymentService
from felicity_engine.registrations.service import AdmissionService
from felicity_engine.tickets.service import TicketService
from felicity_engine.webhooks.service import WebhookService

_db: DatabaseManager | None = None
_ledger: InventoryLedger | None = None
_forms: FormSchemaGuard | None = None
_events: EventService | None = None
_tickets: TicketService | None = None
_admission: AdmissionService | None = None
_payments: PaymentService | None = None
_attendance: AttendanceService | None = None
_webhook: WebhookService | None = None


def get_db() -> DatabaseManager:
    global _db
    if _db is None:
        _db = DatabaseManager(get_settings())
    return _db


def get_webhook_service() -> WebhookService:
    global _webhook
    if _webhook is None:
        _webhook = WebhookService(get_settings())
    return _webhook


def get_inventory_ledger() -> InventoryLedger:
    global _ledger
    if _ledger is None:
        _ledger = InventoryLedger(get_settings())
    return _ledger


def get_form_guard() -> FormSchemaGuard:
    global _forms
    if _forms is None:
        _forms = FormSchemaGuard(get_settings())
    return _forms


def get_event_service() -> EventService:
    global _events
    if _events is None:
        _events = EventService(get_settings(), get_inventory_ledger())
    return _events


def get_ticket_service() -> TicketService:
    global _tickets
    if _tickets is None:
        _tickets = TicketService(get_settings())
    return _tickets


def get_admission_service() -> AdmissionService:
    global _admission
    if _admission is None:
        _admission = AdmissionService(
            get_settings(),
            get_inventory_ledger(),
            get_form_guard(),
            get_ticket_service(),
            webhook_service=get_webhook_service(),
        )
    return _admission


def get_payment_service() -> PaymentService:
    global _payments
    if _payments is None:
        _payments = PaymentService(
            get_settings(),
            get_inventory_ledger(),
            get_ticket_service(),
            webhook_service=get_webhook_service(),
        )
    return _payments


def get_attendance_service() -> AttendanceService:
    global _attendance
    if _attendance is None:
        _attendance = AttendanceService(
            get_settings(),
            get_ticket_service(),
            webhook_service=get_webhook_service(),
        )
    return _attendance


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _db, _ledger, _forms, _events, _tickets, _admission, _payments, _attendance, _webhook
    _db = None
    _ledger = None
    _forms = None
    _events = None
    _tickets = None
    _admission = None
    _payments = None
    _attendance = None
    _webhook = None
