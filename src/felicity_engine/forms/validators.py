"""Field-definition checks and answer validation for custom forms.

Answers are checked against an immutable snapshot of the schema taken when
the registration was submitted.  Each field type maps to one checker in
``ANSWER_CHECKERS``; a checker returns a list of problems for one answer.
"""

import re
from datetime import date, datetime
from pathlib import PurePosixPath
from typing import Any, Callable

import pydantic

from felicity_engine.common.exceptions import ValidationError
from felicity_engine.forms.schemas import CHOICE_TYPES, FieldType, FormField

_EMAIL = pydantic.TypeAdapter(pydantic.EmailStr)
PHONE_RE = re.compile(r"^\+?[0-9][0-9 \-]{6,19}$")

MB = 1024 * 1024


# ── Definitions ──


def check_field_definition(field: FormField) -> list[str]:
    errors = []
    if not field.name.strip():
        errors.append("Field name is required")
    if field.type in CHOICE_TYPES and not field.options:
        errors.append(f"{field.type.value} field must have at least one option")
    if len(set(field.options)) != len(field.options):
        errors.append("Options must be unique")
    v = field.validators
    if field.type == FieldType.FILE and not v.file_types:
        errors.append("File field must specify allowed file types")
    if v.min is not None and v.max is not None and v.min > v.max:
        errors.append("min must not exceed max")
    if v.min_length is not None and v.max_length is not None and v.min_length > v.max_length:
        errors.append("min_length must not exceed max_length")
    if v.pattern:
        try:
            re.compile(v.pattern)
        except re.error as exc:
            errors.append(f"Invalid pattern: {exc}")
    return errors


def check_schema(fields: list[FormField]) -> None:
    """Raise ValidationError unless every definition is sound and names are unique."""
    details = []
    seen: set[str] = set()
    for field in fields:
        for message in check_field_definition(field):
            details.append({"field": field.name, "message": message})
        if field.name in seen:
            details.append({"field": field.name, "message": "Duplicate field name"})
        seen.add(field.name)
    if details:
        raise ValidationError("Invalid form schema", details=details)


# ── Answers ──


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


def _check_length(field: FormField, value: str) -> list[str]:
    v = field.validators
    errors = []
    if v.min_length is not None and len(value) < v.min_length:
        errors.append(f"Must be at least {v.min_length} characters")
    if v.max_length is not None and len(value) > v.max_length:
        errors.append(f"Must be at most {v.max_length} characters")
    if v.pattern and not re.fullmatch(v.pattern, value):
        errors.append("Does not match the required format")
    return errors


def _check_text(field: FormField, value: Any) -> list[str]:
    if not isinstance(value, str):
        return ["Must be text"]
    return _check_length(field, value)


def _check_number(field: FormField, value: Any) -> list[str]:
    if isinstance(value, bool):
        return ["Must be a number"]
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return ["Must be a number"]
    if not isinstance(value, (int, float)):
        return ["Must be a number"]
    v = field.validators
    errors = []
    if v.min is not None and value < v.min:
        errors.append(f"Must be at least {v.min:g}")
    if v.max is not None and value > v.max:
        errors.append(f"Must be at most {v.max:g}")
    return errors


def _check_email(field: FormField, value: Any) -> list[str]:
    if not isinstance(value, str):
        return ["Must be a valid email address"]
    try:
        _EMAIL.validate_python(value.strip())
    except pydantic.ValidationError:
        return ["Must be a valid email address"]
    return _check_length(field, value)


def _check_phone(field: FormField, value: Any) -> list[str]:
    if not isinstance(value, str) or not PHONE_RE.match(value.strip()):
        return ["Must be a valid phone number"]
    return []


def _check_date(field: FormField, value: Any) -> list[str]:
    if not isinstance(value, str):
        return ["Must be an ISO-8601 date"]
    try:
        date.fromisoformat(value)
    except ValueError:
        try:
            datetime.fromisoformat(value)
        except ValueError:
            return ["Must be an ISO-8601 date"]
    return []


def _check_single_choice(field: FormField, value: Any) -> list[str]:
    if value not in field.options:
        return [f"Must be one of: {', '.join(field.options)}"]
    return []


def _check_multi_choice(field: FormField, value: Any) -> list[str]:
    if not isinstance(value, list):
        return ["Must be a list of options"]
    invalid = [item for item in value if item not in field.options]
    if invalid:
        return [f"Unknown options: {', '.join(map(str, invalid))}"]
    if len(set(value)) != len(value):
        return ["Options must not repeat"]
    return []


def _check_file(field: FormField, value: Any, max_file_size_mb: float) -> list[str]:
    if not isinstance(value, dict) or not value.get("filename") or not value.get("url"):
        return ["Must be an uploaded file reference with filename and url"]
    v = field.validators
    errors = []
    allowed = {t.lower().lstrip(".") for t in v.file_types}
    extension = PurePosixPath(str(value["filename"])).suffix.lower().lstrip(".")
    if allowed and extension not in allowed:
        errors.append(f"File type .{extension or '?'} not allowed (allowed: {', '.join(sorted(allowed))})")
    limit_mb = v.max_file_size_mb or max_file_size_mb
    size = value.get("size_bytes")
    if not isinstance(size, int) or isinstance(size, bool) or size < 0:
        errors.append("size_bytes must be a non-negative integer")
    elif size > limit_mb * MB:
        errors.append(f"File exceeds the {limit_mb:g} MB limit")
    return errors


ANSWER_CHECKERS: dict[FieldType, Callable[[FormField, Any], list[str]]] = {
    FieldType.TEXT: _check_text,
    FieldType.TEXTAREA: _check_text,
    FieldType.NUMBER: _check_number,
    FieldType.EMAIL: _check_email,
    FieldType.PHONE: _check_phone,
    FieldType.DATE: _check_date,
    FieldType.DROPDOWN: _check_single_choice,
    FieldType.RADIO: _check_single_choice,
    FieldType.CHECKBOX: _check_multi_choice,
}


def validate_answers(
    schema: list[FormField],
    answers: dict[str, Any],
    max_file_size_mb: float = 5,
) -> dict[str, Any]:
    """Check ``answers`` against ``schema``; returns the answers with empties dropped.

    Raises ValidationError listing every problem at once.
    """
    details = []
    by_name = {field.name: field for field in schema}

    for key in answers:
        if key not in by_name:
            details.append({"field": key, "message": "Unknown field"})

    cleaned: dict[str, Any] = {}
    for field in schema:
        value = answers.get(field.name)
        if _is_empty(value):
            if field.required:
                details.append({"field": field.name, "message": "This field is required"})
            continue
        if field.type == FieldType.FILE:
            problems = _check_file(field, value, max_file_size_mb)
        else:
            problems = ANSWER_CHECKERS[field.type](field, value)
        details.extend({"field": field.name, "message": p} for p in problems)
        cleaned[field.name] = value

    if details:
        raise ValidationError("Registration form has errors", details=details)
    return cleaned
