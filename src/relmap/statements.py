"""Parameterized SQL synthesis from table definitions.

Statement text only ever contains quoted, schema-declared identifiers; every
value travels as a positional ``$n`` parameter.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from relmap.errors import RecordValidationError, SchemaError
from relmap.field_types import TIMESTAMP_TAGS, column_type
from relmap.schema import RelationKind, Schema, TableDefinition

TIMESTAMP_DEFAULT_FIELDS = frozenset({"createdAt", "updatedAt"})
SOFT_DELETE_FIELD = "deletedAt"
INDEX_KINDS = frozenset({"BTREE", "HASH", "GIN", "GIST", "BRIN"})


@dataclass(frozen=True)
class Statement:
    """SQL text plus its positional parameters."""

    sql: str
    params: Tuple[Any, ...] = ()


def quote_identifier(name: str) -> str:
    """Double-quote an identifier, escaping embedded quotes."""
    return '"' + str(name).replace('"', '""') + '"'


class _Params:
    """Positional parameter allocator."""

    def __init__(self) -> None:
        self.values: List[Any] = []

    def add(self, value: Any) -> str:
        self.values.append(value)
        return f"${len(self.values)}"

    def as_tuple(self) -> Tuple[Any, ...]:
        return tuple(self.values)


def _where(conditions: Optional[Mapping[str, Any]], params: _Params) -> str:
    if not conditions:
        return ""
    predicates = []
    for column, value in conditions.items():
        if value is None:
            predicates.append(f"{quote_identifier(column)} IS NULL")
        else:
            predicates.append(f"{quote_identifier(column)} = {params.add(value)}")
    return " WHERE " + " AND ".join(predicates)


def _assignments(data: Mapping[str, Any], params: _Params) -> str:
    return ", ".join(
        f"{quote_identifier(column)} = {params.add(value)}" for column, value in data.items()
    )


def _returning(columns: Iterable[str]) -> str:
    return ", ".join(quote_identifier(column) for column in columns)


def key_values(table: TableDefinition, key: Any, operation: str = "key") -> Dict[str, Any]:
    """Normalize a scalar, sequence or mapping key into a column->value map."""
    primary_key = table.primary_key
    if not primary_key:
        raise SchemaError("table has no primary key", table=table.name, operation=operation)
    if isinstance(key, Mapping):
        missing = [column for column in primary_key if column not in key]
        if missing:
            raise RecordValidationError(
                f"key is missing primary-key fields: {', '.join(missing)}",
                table=table.name,
                operation=operation,
                missing_fields=missing,
            )
        return {column: key[column] for column in primary_key}
    if len(primary_key) == 1:
        return {primary_key[0]: key}
    if isinstance(key, (list, tuple)) and len(key) == len(primary_key):
        return dict(zip(primary_key, key))
    raise RecordValidationError(
        f"composite key requires values for {', '.join(primary_key)}",
        table=table.name,
        operation=operation,
        missing_fields=primary_key,
    )


# -- DDL --------------------------------------------------------------------


def build_create_table(table: TableDefinition, schema: Schema) -> Statement:
    """CREATE TABLE IF NOT EXISTS with keys, NOT NULL, defaults and foreign keys."""
    single_key = table.primary_key[0] if len(table.primary_key) == 1 else None
    required = set(table.required)

    definitions = []
    for field_name, tag in table.fields.items():
        column = f"{quote_identifier(field_name)} {column_type(tag)}"
        if field_name == single_key:
            column += " PRIMARY KEY"
        elif field_name in required:
            column += " NOT NULL"
        is_timestamp = table.field_type(field_name) in TIMESTAMP_TAGS
        if field_name in TIMESTAMP_DEFAULT_FIELDS and is_timestamp:
            column += " DEFAULT now()"
        definitions.append(column)

    if len(table.primary_key) > 1:
        definitions.append(f"PRIMARY KEY ({_returning(table.primary_key)})")

    for relation_name, relation in table.relations.items():
        if relation.kind is not RelationKind.BELONGS_TO:
            continue
        target = schema.table(relation.target_table)
        if len(target.primary_key) != 1:
            raise SchemaError(
                f'relation "{relation_name}" targets "{target.name}" which has no '
                "single-column primary key",
                table=table.name,
                operation="create_table",
            )
        constraint = (
            f"FOREIGN KEY ({quote_identifier(relation.foreign_key)}) "
            f"REFERENCES {quote_identifier(target.name)} "
            f"({quote_identifier(target.primary_key[0])})"
        )
        if relation.on_delete:
            constraint += f" ON DELETE {relation.on_delete.value}"
        if relation.on_update:
            constraint += f" ON UPDATE {relation.on_update.value}"
        definitions.append(constraint)

    columns = ", ".join(definitions)
    return Statement(f"CREATE TABLE IF NOT EXISTS {quote_identifier(table.name)} ({columns})")


def index_name(table_name: str, columns: Sequence[str]) -> str:
    """Deterministic index name for a table and column list."""
    return f"idx_{table_name}_{'_'.join(columns)}"


def build_declared_indexes(table: TableDefinition) -> List[Statement]:
    """CREATE INDEX statements for indexes declared in the schema."""
    statements = []
    for index in table.indexes:
        name = index.name or index_name(table.name, index.fields)
        unique = "UNIQUE " if index.unique else ""
        statements.append(
            Statement(
                f"CREATE {unique}INDEX IF NOT EXISTS {quote_identifier(name)} "
                f"ON {quote_identifier(table.name)} ({_returning(index.fields)})"
            )
        )
    return statements


def build_create_index(table_name: str, field_name: str, kind: str = "BTREE") -> Statement:
    """CREATE INDEX on one column using the given access method."""
    method = kind.strip().upper()
    if method not in INDEX_KINDS:
        raise RecordValidationError(
            f"unsupported index kind '{kind}'; expected one of {', '.join(sorted(INDEX_KINDS))}",
            table=table_name,
            operation="create_index",
        )
    return Statement(
        f"CREATE INDEX IF NOT EXISTS {quote_identifier(index_name(table_name, [field_name]))} "
        f"ON {quote_identifier(table_name)} USING {method} ({quote_identifier(field_name)})"
    )


def build_drop_index(table_name: str, field_name: str) -> Statement:
    """DROP INDEX created by build_create_index."""
    return Statement(
        f"DROP INDEX IF EXISTS {quote_identifier(index_name(table_name, [field_name]))}"
    )


def build_drop_table(table_name: str, cascade: bool = True) -> Statement:
    """DROP TABLE IF EXISTS, cascading to dependents by default."""
    suffix = " CASCADE" if cascade else ""
    return Statement(f"DROP TABLE IF EXISTS {quote_identifier(table_name)}{suffix}")


# -- DML --------------------------------------------------------------------


def build_insert(table_name: str, data: Mapping[str, Any]) -> Statement:
    """INSERT one row and return it in full."""
    if not data:
        return Statement(f"INSERT INTO {quote_identifier(table_name)} DEFAULT VALUES RETURNING *")
    params = _Params()
    columns = ", ".join(quote_identifier(column) for column in data)
    placeholders = ", ".join(params.add(value) for value in data.values())
    return Statement(
        f"INSERT INTO {quote_identifier(table_name)} ({columns}) "
        f"VALUES ({placeholders}) RETURNING *",
        params.as_tuple(),
    )


def _order_clause(order_by: Optional[str]) -> str:
    if not order_by:
        return ""
    if order_by.startswith("-"):
        return f" ORDER BY {quote_identifier(order_by[1:])} DESC"
    return f" ORDER BY {quote_identifier(order_by)} ASC"


def build_select(
    table_name: str,
    conditions: Optional[Mapping[str, Any]] = None,
    order_by: Optional[str] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> Statement:
    """SELECT with an equality conjunction and optional ORDER BY/LIMIT/OFFSET."""
    params = _Params()
    sql = f"SELECT * FROM {quote_identifier(table_name)}"
    sql += _where(conditions, params)
    sql += _order_clause(order_by)
    if limit is not None:
        sql += f" LIMIT {params.add(limit)}"
    if offset is not None:
        sql += f" OFFSET {params.add(offset)}"
    return Statement(sql, params.as_tuple())


def build_select_by_key(table: TableDefinition, key: Any) -> Statement:
    """SELECT a single row by primary key."""
    params = _Params()
    where = _where(key_values(table, key, "find_by_id"), params)
    return Statement(f"SELECT * FROM {quote_identifier(table.name)}{where}", params.as_tuple())


def build_select_any(table_name: str, column: str, values: Sequence[Any]) -> Statement:
    """SELECT rows whose column matches any of the given values."""
    return Statement(
        f"SELECT * FROM {quote_identifier(table_name)} WHERE {quote_identifier(column)} = ANY($1)",
        (list(values),),
    )


def build_count(table_name: str, conditions: Optional[Mapping[str, Any]] = None) -> Statement:
    """SELECT COUNT(*) with an optional equality conjunction."""
    params = _Params()
    where = _where(conditions, params)
    return Statement(
        f"SELECT COUNT(*) AS count FROM {quote_identifier(table_name)}{where}", params.as_tuple()
    )


def build_update_by_key(table: TableDefinition, key: Any, data: Mapping[str, Any]) -> Statement:
    """UPDATE one row by primary key and return it."""
    params = _Params()
    assignments = _assignments(data, params)
    where = _where(key_values(table, key, "update"), params)
    return Statement(
        f"UPDATE {quote_identifier(table.name)} SET {assignments}{where} RETURNING *",
        params.as_tuple(),
    )


def build_update_by_filter(
    table: TableDefinition, conditions: Mapping[str, Any], data: Mapping[str, Any]
) -> Statement:
    """UPDATE matching rows, returning their primary keys for relation cascade."""
    params = _Params()
    assignments = _assignments(data, params)
    where = _where(conditions, params)
    returning = _returning(table.primary_key) if table.primary_key else "*"
    return Statement(
        f"UPDATE {quote_identifier(table.name)} SET {assignments}{where} RETURNING {returning}",
        params.as_tuple(),
    )


def build_delete_by_key(table: TableDefinition, key: Any) -> Statement:
    """DELETE one row by primary key and return it."""
    params = _Params()
    where = _where(key_values(table, key, "delete"), params)
    return Statement(
        f"DELETE FROM {quote_identifier(table.name)}{where} RETURNING *", params.as_tuple()
    )


def build_delete_by_filter(table_name: str, conditions: Mapping[str, Any]) -> Statement:
    """DELETE matching rows; the affected count comes from the command status."""
    params = _Params()
    where = _where(conditions, params)
    return Statement(f"DELETE FROM {quote_identifier(table_name)}{where}", params.as_tuple())


def build_set_deleted_marker(table: TableDefinition, key: Any, deleted: bool) -> Statement:
    """Toggle the soft-delete marker, touching only rows in the opposite state."""
    params = _Params()
    where = _where(key_values(table, key, "soft_delete" if deleted else "restore"), params)
    marker = quote_identifier(SOFT_DELETE_FIELD)
    if deleted:
        return Statement(
            f"UPDATE {quote_identifier(table.name)} SET {marker} = now()"
            f"{where} AND {marker} IS NULL RETURNING *",
            params.as_tuple(),
        )
    return Statement(
        f"UPDATE {quote_identifier(table.name)} SET {marker} = NULL"
        f"{where} AND {marker} IS NOT NULL RETURNING *",
        params.as_tuple(),
    )


def build_set_foreign_key(
    table: TableDefinition, key: Any, foreign_key: str, parent_id: Any
) -> Statement:
    """Point the current row's foreign-key column at a parent row."""
    params = _Params()
    assignment = f"{quote_identifier(foreign_key)} = {params.add(parent_id)}"
    where = _where(key_values(table, key, "belongs_to"), params)
    return Statement(
        f"UPDATE {quote_identifier(table.name)} SET {assignment}{where} RETURNING *",
        params.as_tuple(),
    )


# -- Junction tables ----------------------------------------------------------


def build_select_related_ids(
    junction_table: str, foreign_key: str, related_key: str, source_id: Any
) -> Statement:
    """SELECT the related ids currently linked to a source id."""
    return Statement(
        f"SELECT {quote_identifier(related_key)} FROM {quote_identifier(junction_table)} "
        f"WHERE {quote_identifier(foreign_key)} = $1",
        (source_id,),
    )


def build_insert_junction(
    junction_table: str, foreign_key: str, related_key: str, source_id: Any, related_id: Any
) -> Statement:
    """INSERT one source/related pair."""
    return Statement(
        f"INSERT INTO {quote_identifier(junction_table)} "
        f"({quote_identifier(foreign_key)}, {quote_identifier(related_key)}) VALUES ($1, $2)",
        (source_id, related_id),
    )


def build_delete_junction(
    junction_table: str, foreign_key: str, related_key: str, source_id: Any, related_id: Any
) -> Statement:
    """DELETE exactly one source/related pair."""
    return Statement(
        f"DELETE FROM {quote_identifier(junction_table)} "
        f"WHERE {quote_identifier(foreign_key)} = $1 AND {quote_identifier(related_key)} = $2",
        (source_id, related_id),
    )
