"""Schema registry: declarative table and relation definitions.

A schema is loaded once, validated, and shared read-only by every model.
The on-disk format is a JSON object keyed by table name::

    {
      "User": {
        "fields": {"id": "uuid", "name": "varchar", "createdAt": "timestamp"},
        "primaryKey": "id",
        "required": ["name"],
        "relations": {
          "posts": {"type": "hasMany", "model": "Post", "foreignKey": "userId"}
        }
      }
    }
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from relmap.errors import RelationConfigurationError, SchemaError
from relmap.field_types import normalize_tag

logger = logging.getLogger(__name__)


class RelationKind(str, Enum):
    """Relation cardinality and foreign-key ownership."""

    HAS_MANY = "hasMany"
    HAS_ONE = "hasOne"
    BELONGS_TO = "belongsTo"
    MANY_TO_MANY = "manyToMany"


class ReferentialAction(str, Enum):
    """ON DELETE / ON UPDATE actions for foreign-key constraints."""

    CASCADE = "CASCADE"
    SET_NULL = "SET NULL"
    SET_DEFAULT = "SET DEFAULT"
    RESTRICT = "RESTRICT"
    NO_ACTION = "NO ACTION"


class RelationDescriptor(BaseModel):
    """A named relation from one table to another."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    kind: RelationKind = Field(..., alias="type")
    target_table: str = Field(..., alias="model")
    foreign_key: str = Field(..., alias="foreignKey")
    junction_table: Optional[str] = Field(None, alias="junctionTable")
    related_key: Optional[str] = Field(None, alias="relatedKey")
    references: Optional[Union[str, int]] = None
    on_delete: Optional[ReferentialAction] = Field(None, alias="onDelete")
    on_update: Optional[ReferentialAction] = Field(None, alias="onUpdate")

    @field_validator("on_delete", "on_update", mode="before")
    @classmethod
    def _normalize_action(cls, value: Any) -> Any:
        if isinstance(value, str):
            return " ".join(value.strip().upper().split())
        return value

    @property
    def has_junction(self) -> bool:
        """Return True when a many-to-many junction is fully configured."""
        return bool(self.junction_table) and bool(self.related_key)


class IndexDefinition(BaseModel):
    """A schema-declared index."""

    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    fields: Tuple[str, ...]
    unique: bool = False


class TableDefinition(BaseModel):
    """Fields, key and relations of one table."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str
    fields: Dict[str, str]
    relations: Dict[str, RelationDescriptor] = Field(default_factory=dict)
    primary_key: Tuple[str, ...] = Field((), alias="primaryKey")
    required: Tuple[str, ...] = ()
    optional: Tuple[str, ...] = ()
    indexes: Tuple[IndexDefinition, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _default_primary_key(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        data = dict(value)
        key = data.get("primaryKey", data.get("primary_key"))
        if key is None:
            key = ("id",) if "id" in (data.get("fields") or {}) else ()
        elif isinstance(key, str):
            key = (key,)
        data.pop("primary_key", None)
        data["primaryKey"] = tuple(key)
        return data

    @model_validator(mode="after")
    def _check_field_references(self) -> "TableDefinition":
        if not self.fields:
            raise ValueError(f"table '{self.name}' declares no fields")
        declared = set(self.fields)
        for group, names in (
            ("required", self.required),
            ("optional", self.optional),
            ("primaryKey", self.primary_key),
        ):
            unknown = sorted(set(names) - declared)
            if unknown:
                raise ValueError(
                    f"table '{self.name}' {group} references undeclared fields: "
                    f"{', '.join(unknown)}"
                )
        for index in self.indexes:
            unknown = sorted(set(index.fields) - declared)
            if unknown:
                raise ValueError(
                    f"table '{self.name}' index references undeclared fields: "
                    f"{', '.join(unknown)}"
                )
        return self

    def field_type(self, field_name: str) -> Optional[str]:
        """Return the normalized type tag of a declared field."""
        tag = self.fields.get(field_name)
        return normalize_tag(tag) if tag is not None else None

    @property
    def permitted_fields(self) -> frozenset:
        """Fields a caller may supply on create."""
        return frozenset(self.fields) | frozenset(self.optional)

    @property
    def key_field(self) -> str:
        """Return the single primary-key column, failing for keyless or composite keys."""
        if len(self.primary_key) != 1:
            raise SchemaError(
                "operation requires a single-column primary key",
                table=self.name,
                operation="primary_key",
            )
        return self.primary_key[0]

    def relation(self, relation_name: str, operation: str = "relation") -> RelationDescriptor:
        """Return a declared relation or raise RelationConfigurationError."""
        relation = self.relations.get(relation_name)
        if relation is None:
            raise RelationConfigurationError(
                f'Relation "{relation_name}" not found in schema',
                table=self.name,
                operation=operation,
            )
        return relation


class Schema(BaseModel):
    """Immutable mapping of table name to TableDefinition."""

    model_config = ConfigDict(frozen=True)

    tables: Dict[str, TableDefinition]

    @model_validator(mode="after")
    def _check_relations(self) -> "Schema":
        for table in self.tables.values():
            for relation_name, relation in table.relations.items():
                if relation.target_table not in self.tables:
                    raise ValueError(
                        f"relation '{table.name}.{relation_name}' targets unknown table "
                        f"'{relation.target_table}'"
                    )
                if (
                    relation.kind is RelationKind.BELONGS_TO
                    and relation.foreign_key not in table.fields
                ):
                    raise ValueError(
                        f"relation '{table.name}.{relation_name}' foreign key "
                        f"'{relation.foreign_key}' is not a declared field"
                    )
                if relation.kind is RelationKind.MANY_TO_MANY and not relation.has_junction:
                    logger.warning(
                        "schema_relation_incomplete table=%s relation=%s "
                        "reason=missing_junction_configuration",
                        table.name,
                        relation_name,
                    )
        return self

    def __contains__(self, table_name: object) -> bool:
        return table_name in self.tables

    def __len__(self) -> int:
        return len(self.tables)

    def names(self) -> List[str]:
        """Return table names in declaration order."""
        return list(self.tables)

    def table(self, table_name: str) -> TableDefinition:
        """Return a table definition or raise SchemaError."""
        definition = self.tables.get(table_name)
        if definition is None:
            raise SchemaError(f'Table "{table_name}" not found in schema', table=table_name)
        return definition


def parse_schema(data: Mapping[str, Any]) -> Schema:
    """Validate an in-memory schema mapping."""
    if not isinstance(data, Mapping):
        raise SchemaError("schema must be a mapping of table name to definition")
    tables = {}
    for table_name, body in data.items():
        if not isinstance(body, Mapping):
            raise SchemaError("table definition must be an object", table=table_name)
        tables[table_name] = {**body, "name": table_name}
    try:
        return Schema(tables=tables)
    except ValidationError as exc:
        raise SchemaError(f"invalid schema: {exc}") from exc


def load_schema(path: Union[str, Path]) -> Schema:
    """Load and validate a JSON schema file."""
    full_path = Path(path).resolve()
    if not full_path.exists():
        raise SchemaError(f"Schema file not found: {full_path}")
    try:
        data = json.loads(full_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SchemaError(f"Schema file {full_path} is not valid JSON: {exc}") from exc
    schema = parse_schema(data)
    logger.info("schema_loaded path=%s tables=%d", full_path, len(schema))
    return schema
