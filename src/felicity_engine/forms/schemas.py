"""Pydantic schemas for custom registration forms."""

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class FieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    EMAIL = "email"
    PHONE = "phone"
    DATE = "date"
    DROPDOWN = "dropdown"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    FILE = "file"


CHOICE_TYPES = frozenset({FieldType.DROPDOWN, FieldType.RADIO, FieldType.CHECKBOX})


class FieldValidators(BaseModel):
    min_length: Optional[int] = Field(None, ge=0)
    max_length: Optional[int] = Field(None, ge=0)
    min: Optional[float] = None
    max: Optional[float] = None
    pattern: str = ""
    file_types: list[str] = []
    max_file_size_mb: Optional[float] = Field(None, gt=0)


class FormField(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)
    label: str = ""
    type: FieldType
    required: bool = False
    options: list[str] = []
    placeholder: str = ""
    help_text: str = ""
    validators: FieldValidators = Field(default_factory=FieldValidators)


class FormSchemaOp(BaseModel):
    """A single schema mutation.

    ``add`` takes ``field`` (and optional ``position``), ``edit`` takes
    ``name`` + ``changes``, ``delete`` takes ``name``, ``reorder`` takes the
    full list of field names in ``order``, ``replace`` takes ``fields``.
    """

    op: Literal["add", "edit", "delete", "reorder", "replace"]
    field: Optional[FormField] = None
    position: Optional[int] = Field(None, ge=0)
    name: Optional[str] = None
    changes: Optional[dict[str, Any]] = None
    order: Optional[list[str]] = None
    fields: Optional[list[FormField]] = None


class FormSchemaResponse(BaseModel):
    event_id: str
    fields: list[FormField]
    schema_version: int
    form_locked: bool
