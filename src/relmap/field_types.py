"""Declared field type tags and their PostgreSQL column types."""

import re
from typing import Optional

TEXT_TAGS = frozenset({"text", "varchar", "string", "char"})
UUID_TAGS = frozenset({"uuid"})
SERIAL_TAGS = frozenset({"serial", "bigserial", "smallserial"})
INTEGER_TAGS = frozenset({"integer", "int", "bigint", "smallint"})
FLOAT_TAGS = frozenset({"float", "real", "double precision", "numeric", "decimal"})
BOOLEAN_TAGS = frozenset({"boolean", "bool"})
DATE_TAGS = frozenset({"date"})
TIMESTAMP_TAGS = frozenset({"timestamp", "timestamptz", "datetime"})
JSON_TAGS = frozenset({"json", "jsonb"})

DEFAULT_COLUMN_TYPE = "TEXT"

_COLUMN_TYPES = {
    "varchar": "VARCHAR",
    "text": "TEXT",
    "string": "VARCHAR",
    "char": "CHAR",
    # uuid values are generated client-side as strings
    "uuid": "VARCHAR",
    "integer": "INTEGER",
    "int": "INTEGER",
    "smallint": "SMALLINT",
    "bigint": "BIGINT",
    "serial": "SERIAL",
    "smallserial": "SMALLSERIAL",
    "bigserial": "BIGSERIAL",
    "float": "FLOAT",
    "real": "FLOAT",
    "double precision": "FLOAT",
    "numeric": "NUMERIC",
    "decimal": "NUMERIC",
    "boolean": "BOOLEAN",
    "bool": "BOOLEAN",
    "date": "DATE",
    "timestamp": "TIMESTAMP",
    "datetime": "TIMESTAMP",
    "timestamptz": "TIMESTAMPTZ",
    "json": "JSONB",
    "jsonb": "JSONB",
}

_SIZED_TAG = re.compile(r"^(varchar|char)\s*\(\s*(\d+)\s*\)$")


def normalize_tag(tag: Optional[str]) -> str:
    """Lower-case a type tag and collapse a sized varchar/char to its base tag."""
    cleaned = " ".join(str(tag or "").strip().lower().split())
    match = _SIZED_TAG.match(cleaned)
    if match:
        return match.group(1)
    return cleaned


def column_type(tag: Optional[str]) -> str:
    """Map a declared type tag to a column type; unknown tags become TEXT."""
    cleaned = " ".join(str(tag or "").strip().lower().split())
    match = _SIZED_TAG.match(cleaned)
    if match:
        return f"{match.group(1).upper()}({match.group(2)})"
    return _COLUMN_TYPES.get(cleaned, DEFAULT_COLUMN_TYPE)
