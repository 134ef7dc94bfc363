"""Per-organization custom fields for deals, leads and contacts.

Definitions live in their own table. Values are stored on the owning record
as a loose JSON map; ``parse_custom_field_values`` and
``dump_custom_field_values`` are the only way in and out of that map, so
everything in between works with typed values.
"""

from datetime import date, datetime, time
from enum import Enum
from typing import Annotated, Any, Literal, Union

import structlog
from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from wacrm.core.clock import utcnow
from wacrm.core.exceptions import ValidationFailed
from wacrm.core.phone import validate_brazilian_phone
from wacrm.core.text import parse_date

logger = structlog.get_logger()


class CustomFieldType(str, Enum):
    TEXT = "text"
    PHONE = "phone"
    EMAIL = "email"
    URL = "url"
    NUMBER = "number"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    BOOLEAN = "boolean"
    SELECT = "select"
    MULTI_SELECT = "multi_select"


class CustomFieldScope(str, Enum):
    DEAL = "deal"
    LEAD = "lead"
    CONTACT = "contact"


class CustomFieldDefinition(BaseModel):
    """Schema extension owned by an organization."""

    id: str
    organization_id: str
    field_key: str = Field(..., pattern=r"^[a-z][a-z0-9_]*$")
    field_name: str
    field_type: CustomFieldType = CustomFieldType.TEXT
    options: list[str] = Field(default_factory=list)
    applies_to: CustomFieldScope = CustomFieldScope.DEAL
    is_required: bool = False
    position: int = 0
    created_at: datetime = Field(default_factory=utcnow)


# ==================== Typed values ====================


class TextValue(BaseModel):
    type: Literal["text"] = "text"
    value: str


class PhoneValue(BaseModel):
    type: Literal["phone"] = "phone"
    value: str


class EmailValue(BaseModel):
    type: Literal["email"] = "email"
    value: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class UrlValue(BaseModel):
    type: Literal["url"] = "url"
    value: str = Field(..., pattern=r"^https?://")


class NumberValue(BaseModel):
    type: Literal["number"] = "number"
    value: float


class DateValue(BaseModel):
    type: Literal["date"] = "date"
    value: date


class TimeValue(BaseModel):
    type: Literal["time"] = "time"
    value: time


class DateTimeValue(BaseModel):
    type: Literal["datetime"] = "datetime"
    value: datetime


class BooleanValue(BaseModel):
    type: Literal["boolean"] = "boolean"
    value: bool


class SelectValue(BaseModel):
    type: Literal["select"] = "select"
    value: str


class MultiSelectValue(BaseModel):
    type: Literal["multi_select"] = "multi_select"
    value: list[str]


CustomFieldValue = Annotated[
    Union[
        TextValue,
        PhoneValue,
        EmailValue,
        UrlValue,
        NumberValue,
        DateValue,
        TimeValue,
        DateTimeValue,
        BooleanValue,
        SelectValue,
        MultiSelectValue,
    ],
    Field(discriminator="type"),
]

_value_adapter: TypeAdapter[CustomFieldValue] = TypeAdapter(CustomFieldValue)

_TRUE_WORDS = {"sim", "s", "yes", "true", "1"}
_FALSE_WORDS = {"não", "nao", "n", "no", "false", "0"}


def _is_blank(raw: Any) -> bool:
    return raw is None or raw == "" or raw == []


def _normalize(field_type: CustomFieldType, raw: Any) -> Any:
    """Coerce the loose shapes the UI stores into something pydantic accepts."""
    if field_type == CustomFieldType.NUMBER and isinstance(raw, str):
        return raw.strip().replace(".", "").replace(",", ".") if "," in raw else raw.strip()
    if field_type == CustomFieldType.DATE and isinstance(raw, str):
        return parse_date(raw) or raw
    if field_type == CustomFieldType.BOOLEAN and isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
    if field_type == CustomFieldType.MULTI_SELECT and isinstance(raw, str):
        return [part.strip() for part in raw.split(",") if part.strip()]
    return raw


def parse_custom_field_value(definition: CustomFieldDefinition, raw: Any) -> CustomFieldValue:
    """Parse one stored value against its definition.

    Raises:
        ValidationFailed: If the value does not match the field type or options
    """
    try:
        parsed = _value_adapter.validate_python(
            {"type": definition.field_type.value, "value": _normalize(definition.field_type, raw)}
        )
    except PydanticValidationError as e:
        raise ValidationFailed(
            f"Invalid value for field '{definition.field_key}'",
            details={"field": definition.field_key, "errors": e.errors(include_url=False)},
        )

    if isinstance(parsed, PhoneValue) and not validate_brazilian_phone(parsed.value):
        raise ValidationFailed(
            f"Invalid phone for field '{definition.field_key}'",
            details={"field": definition.field_key},
        )

    if definition.options:
        chosen: list[str] = []
        if isinstance(parsed, SelectValue):
            chosen = [parsed.value]
        elif isinstance(parsed, MultiSelectValue):
            chosen = parsed.value
        unknown = [c for c in chosen if c not in definition.options]
        if unknown:
            raise ValidationFailed(
                f"Unknown option for field '{definition.field_key}'",
                details={"field": definition.field_key, "unknown": unknown},
            )

    return parsed


def parse_custom_field_values(
    definitions: list[CustomFieldDefinition],
    raw: dict[str, Any] | None,
) -> dict[str, CustomFieldValue]:
    """Parse a record's loose custom field map into typed values.

    Blank values are skipped (and rejected for required fields). Keys with no
    definition are dropped.
    """
    raw = raw or {}
    by_key = {d.field_key: d for d in definitions}

    unknown_keys = sorted(set(raw) - set(by_key))
    if unknown_keys:
        logger.debug("Dropping undefined custom fields", keys=unknown_keys)

    values: dict[str, CustomFieldValue] = {}
    for key, definition in by_key.items():
        value = raw.get(key)
        if _is_blank(value):
            if definition.is_required:
                raise ValidationFailed(
                    f"Field '{key}' is required",
                    details={"field": key},
                )
            continue
        values[key] = parse_custom_field_value(definition, value)
    return values


def dump_custom_field_values(values: dict[str, CustomFieldValue]) -> dict[str, Any]:
    """Serialize typed values back into the JSON map stored on the record."""
    return {key: value.model_dump(mode="json")["value"] for key, value in values.items()}
