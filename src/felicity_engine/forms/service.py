"""Form Schema Guard — versioned schema edits and the first-registration lock."""

import logging
from typing import Any

import pydantic
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from felicity_engine.common.config import FelicitySettings
from felicity_engine.common.exceptions import (
    ConflictError,
    EventNotFoundError,
    FormLockedError,
    ValidationError,
)
from felicity_engine.events.models import STATUS_CLOSED, STATUS_COMPLETED, EventModel
from felicity_engine.forms import validators
from felicity_engine.forms.schemas import FormField, FormSchemaOp

logger = logging.getLogger(__name__)


def load_fields(raw: list[dict] | None) -> list[FormField]:
    return [FormField.model_validate(item) for item in raw or []]


def dump_fields(fields: list[FormField]) -> list[dict]:
    return [f.model_dump(mode="json") for f in fields]


def _index_of(fields: list[FormField], name: str | None) -> int:
    for i, field in enumerate(fields):
        if field.name == name:
            return i
    raise ValidationError(
        f"No field named {name!r}",
        details=[{"field": "name", "message": "Unknown field"}],
    )


def _require(value: Any, label: str, op: str) -> Any:
    if value is None:
        raise ValidationError(
            f"'{op}' requires '{label}'",
            details=[{"field": label, "message": "This field is required"}],
        )
    return value


def apply_op(fields: list[FormField], op: FormSchemaOp) -> list[FormField]:
    """Return a new field list with ``op`` applied; the input is not modified."""
    result = list(fields)

    if op.op == "add":
        field = _require(op.field, "field", op.op)
        position = len(result) if op.position is None else min(op.position, len(result))
        result.insert(position, field)

    elif op.op == "edit":
        index = _index_of(result, _require(op.name, "name", op.op))
        changes = dict(_require(op.changes, "changes", op.op))
        merged = result[index].model_dump()
        if isinstance(changes.get("validators"), dict):
            merged["validators"] = {**merged["validators"], **changes.pop("validators")}
        merged.update(changes)
        try:
            result[index] = FormField.model_validate(merged)
        except pydantic.ValidationError as exc:
            raise ValidationError(
                "Invalid field changes",
                details=[
                    {"field": ".".join(map(str, e["loc"])), "message": e["msg"]}
                    for e in exc.errors()
                ],
            ) from exc

    elif op.op == "delete":
        del result[_index_of(result, _require(op.name, "name", op.op))]

    elif op.op == "reorder":
        order = _require(op.order, "order", op.op)
        if sorted(order) != sorted(f.name for f in result) or len(set(order)) != len(order):
            raise ValidationError(
                "Reorder must list every field exactly once",
                details=[{"field": "order", "message": "Not a permutation of the field names"}],
            )
        by_name = {f.name: f for f in result}
        result = [by_name[name] for name in order]

    elif op.op == "replace":
        result = list(_require(op.fields, "fields", op.op))

    return result


class FormSchemaGuard:
    """Schema reads, compare-and-set mutations, and answer validation."""

    def __init__(self, settings: FelicitySettings):
        self.settings = settings

    async def _load_event(self, session: AsyncSession, event_id: str) -> EventModel:
        event = await session.get(EventModel, event_id, populate_existing=True)
        if event is None:
            raise EventNotFoundError()
        return event

    async def get_schema(
        self, session: AsyncSession, event_id: str,
    ) -> tuple[EventModel, list[FormField]]:
        event = await self._load_event(session, event_id)
        return event, load_fields(event.form_schema)

    async def mutate_schema(
        self, session: AsyncSession, event_id: str, op: FormSchemaOp,
    ) -> tuple[EventModel, list[FormField]]:
        event = await self._load_event(session, event_id)
        if event.form_locked:
            raise FormLockedError()
        if event.status in (STATUS_COMPLETED, STATUS_CLOSED):
            raise FormLockedError(f"Form cannot be edited for a {event.status} event")

        fields = apply_op(load_fields(event.form_schema), op)
        validators.check_schema(fields)

        version = event.schema_version
        result = await session.execute(
            update(EventModel)
            .where(
                EventModel.id == event_id,
                EventModel.form_locked.is_(False),
                EventModel.schema_version == version,
            )
            .values(form_schema=dump_fields(fields), schema_version=version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = await self._load_event(session, event_id)
            if current.form_locked:
                raise FormLockedError()
            raise ConflictError("Form schema was edited concurrently, reload and retry")

        logger.info(
            "Form schema updated",
            extra={"event_id": event_id, "op": op.op, "schema_version": version + 1},
        )
        event = await self._load_event(session, event_id)
        return event, fields

    async def lock_on_first_registration(
        self, session: AsyncSession, event_id: str, snapshot_version: int,
    ) -> None:
        """Lock the form, provided it still matches the snapshot answers were checked against.

        Must run in the same transaction as the registration insert.
        """
        result = await session.execute(
            update(EventModel)
            .where(
                EventModel.id == event_id,
                EventModel.schema_version == snapshot_version,
            )
            .values(form_locked=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Registration form changed while submitting, retry")

    def validate_answers(
        self, schema: list[FormField], answers: dict[str, Any],
    ) -> dict[str, Any]:
        return validators.validate_answers(
            schema, answers, max_file_size_mb=self.settings.default_max_file_size_mb,
        )
