"""Validation and type-driven normalization of caller-supplied records."""

import json
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

from relmap.errors import RecordValidationError
from relmap.field_types import (
    DATE_TAGS,
    INTEGER_TAGS,
    JSON_TAGS,
    SERIAL_TAGS,
    TIMESTAMP_TAGS,
    UUID_TAGS,
)
from relmap.schema import TableDefinition


def validate_create(table: TableDefinition, data: Mapping[str, Any]) -> None:
    """Reject missing required fields, then fields the table does not permit."""
    missing = [field for field in table.required if field not in data]
    if missing:
        raise RecordValidationError(
            f"Missing required fields: {', '.join(sorted(missing))}",
            table=table.name,
            operation="create",
            missing_fields=missing,
        )
    permitted = table.permitted_fields
    invalid = [field for field in data if field not in permitted]
    if invalid:
        raise RecordValidationError(
            f"Invalid fields: {', '.join(sorted(invalid))}",
            table=table.name,
            operation="create",
            invalid_fields=invalid,
        )


def validate_declared(
    table: TableDefinition, names: Iterable[str], operation: str, what: str = "fields"
) -> None:
    """Reject any name that is not a declared field of the table."""
    invalid = [name for name in names if name not in table.fields]
    if invalid:
        raise RecordValidationError(
            f"Invalid {what}: {', '.join(sorted(invalid))}",
            table=table.name,
            operation=operation,
            invalid_fields=invalid,
        )


def validate_order_by(table: TableDefinition, order_by: Optional[str], operation: str) -> None:
    """Accept a declared field name, optionally prefixed with '-' for descending."""
    if not order_by:
        return
    validate_declared(table, [order_by.lstrip("-")], operation, what="order field")


def _coerce_integer(table: TableDefinition, field: str, value: Any, operation: str) -> Any:
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        if isinstance(value, float):
            if not value.is_integer():
                raise ValueError(value)
            return int(value)
        return int(str(value).strip())
    except ValueError:
        raise RecordValidationError(
            f"field '{field}' expects an integer, got {value!r}",
            table=table.name,
            operation=operation,
            invalid_fields=[field],
        )


def _coerce_temporal(value: Any, tag: str) -> Any:
    if not isinstance(value, str):
        return value
    if tag in DATE_TAGS:
        return date.fromisoformat(value)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def process_fields(
    table: TableDefinition,
    data: Mapping[str, Any],
    operation: str = "create",
    fill_primary_key: bool = False,
) -> Dict[str, Any]:
    """Normalize values against declared field types.

    - uuid: empty values get a fresh uuid4; with ``fill_primary_key`` an absent
      uuid primary-key column is generated too
    - serial: dropped, the backing store assigns it
    - integer: coerced to int, None stays None
    - timestamp: empty values become the current instant, an explicit None
      included, so a write never nulls a timestamp (``restore`` clears
      ``deletedAt``)
    - date/timestamp ISO strings are parsed, json values are serialized

    Everything else passes through unchanged.
    """
    processed: Dict[str, Any] = {}
    for field, value in data.items():
        tag = table.field_type(field)
        if tag in UUID_TAGS and not value:
            processed[field] = str(uuid.uuid4())
        elif tag in SERIAL_TAGS:
            continue
        elif tag in INTEGER_TAGS:
            processed[field] = _coerce_integer(table, field, value, operation)
        elif tag in TIMESTAMP_TAGS and not value:
            processed[field] = datetime.now(timezone.utc).replace(tzinfo=None)
        elif tag in TIMESTAMP_TAGS or tag in DATE_TAGS:
            try:
                processed[field] = _coerce_temporal(value, tag)
            except ValueError:
                raise RecordValidationError(
                    f"field '{field}' expects an ISO-8601 {tag}, got {value!r}",
                    table=table.name,
                    operation=operation,
                    invalid_fields=[field],
                )
        elif tag in JSON_TAGS and value is not None and not isinstance(value, str):
            processed[field] = json.dumps(value)
        else:
            processed[field] = value

    if fill_primary_key:
        for field in table.primary_key:
            if field not in data and table.field_type(field) in UUID_TAGS:
                processed[field] = str(uuid.uuid4())
    return processed
