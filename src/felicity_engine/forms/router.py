"""Registration form API router."""

from fastapi import APIRouter, Depends

from felicity_engine.common.security import require_api_key
from felicity_engine.forms.schemas import FormSchemaOp, FormSchemaResponse

router = APIRouter(prefix="/events", tags=["forms"])


def _get_service():
    from felicity_engine.deps import get_form_guard
    return get_form_guard()


def _get_db():
    from felicity_engine.deps import get_db
    return get_db()


@router.get("/{event_id}/form", response_model=FormSchemaResponse)
async def get_form(event_id: str):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        event, fields = await svc.get_schema(session, event_id)
        return FormSchemaResponse(
            event_id=event.id,
            fields=fields,
            schema_version=event.schema_version,
            form_locked=event.form_locked,
        )


@router.put("/{event_id}/form", response_model=FormSchemaResponse)
async def update_form(
    event_id: str,
    body: FormSchemaOp,
    _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        event, fields = await svc.mutate_schema(session, event_id, body)
        return FormSchemaResponse(
            event_id=event.id,
            fields=fields,
            schema_version=event.schema_version,
            form_locked=event.form_locked,
        )
