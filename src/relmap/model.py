"""Table-bound accessor exposing the record operations for one table."""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from relmap.cache import ResultCache
from relmap.errors import RecordNotFoundError, RecordValidationError, SchemaError
from relmap.executor import StatementExecutor
from relmap.fields import process_fields, validate_create, validate_declared, validate_order_by
from relmap.relations import RelationResolver, check_relations, load_relations, split_relations
from relmap.schema import Schema, TableDefinition
from relmap.statements import (
    SOFT_DELETE_FIELD,
    Statement,
    build_count,
    build_create_index,
    build_create_table,
    build_declared_indexes,
    build_delete_by_filter,
    build_delete_by_key,
    build_drop_index,
    build_insert,
    build_select,
    build_select_any,
    build_select_by_key,
    build_set_deleted_marker,
    build_update_by_filter,
    build_update_by_key,
)

logger = logging.getLogger(__name__)


@dataclass
class Page:
    """One page of records plus the totals needed to render pagination."""

    data: List[Dict[str, Any]] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 10
    total_pages: int = 0


class Model:
    """Record operations for a single table.

    Instances are cheap views over a shared executor and cache. ``bind`` returns
    a copy whose statements run on one transaction-scoped connection.
    """

    def __init__(
        self,
        table_name: str,
        schema: Schema,
        executor: StatementExecutor,
        cache: Optional[ResultCache] = None,
        invalidate_on_write: bool = True,
    ) -> None:
        """Resolve the table definition and keep the shared collaborators."""
        self._table = schema.table(table_name)
        self._schema = schema
        self._executor = executor
        self._cache = cache
        self._invalidate_on_write = invalidate_on_write

    def __repr__(self) -> str:
        return f"Model({self._table.name!r}, in_transaction={self._executor.in_transaction})"

    @property
    def name(self) -> str:
        return self._table.name

    @property
    def table(self) -> TableDefinition:
        return self._table

    @property
    def schema(self) -> Schema:
        return self._schema

    @property
    def executor(self) -> StatementExecutor:
        return self._executor

    def using(self, executor: StatementExecutor) -> "Model":
        """Return this accessor running on another executor."""
        if executor is self._executor:
            return self
        return Model(
            self._table.name,
            self._schema,
            executor,
            cache=self._cache,
            invalidate_on_write=self._invalidate_on_write,
        )

    def bind(self, conn: Any) -> "Model":
        """Return an accessor whose statements run on a transaction-scoped connection."""
        return self.using(self._executor.bound_to(conn))

    def sibling(self, table_name: str) -> "Model":
        """Return the accessor of another table sharing this executor and cache."""
        return Model(
            table_name,
            self._schema,
            self._executor,
            cache=self._cache,
            invalidate_on_write=self._invalidate_on_write,
        )

    # -- cache ----------------------------------------------------------------

    @property
    def _cache_readable(self) -> bool:
        return (
            self._cache is not None
            and self._cache.enabled
            and not self._executor.in_transaction
        )

    def _invalidate(self) -> None:
        """Drop this table's cached reads once the write is committed."""
        if self._cache is None or not self._invalidate_on_write:
            return
        cache = self._cache
        table_name = self._table.name
        self._executor.after_commit(lambda: cache.invalidate(table_name))

    # -- helpers --------------------------------------------------------------

    def _validate_where(self, where: Optional[Mapping[str, Any]], operation: str) -> Dict[str, Any]:
        conditions = dict(where or {})
        validate_declared(self._table, conditions, operation, what="filter fields")
        return conditions

    def _require_where(self, where: Optional[Mapping[str, Any]], operation: str) -> Dict[str, Any]:
        conditions = self._validate_where(where, operation)
        if not conditions:
            raise RecordValidationError(
                "refusing to run without a filter",
                table=self._table.name,
                operation=operation,
            )
        return conditions

    def _require_soft_delete(self, operation: str) -> None:
        if SOFT_DELETE_FIELD not in self._table.fields:
            raise SchemaError(
                f"soft delete requires a '{SOFT_DELETE_FIELD}' field",
                table=self._table.name,
                operation=operation,
            )

    # -- DDL ------------------------------------------------------------------

    async def ensure_table(self) -> None:
        """Create the table and its declared indexes when they do not exist."""
        await self._executor.execute(
            build_create_table(self._table, self._schema),
            table=self._table.name,
            operation="create_table",
        )
        for statement in build_declared_indexes(self._table):
            await self._executor.execute(
                statement, table=self._table.name, operation="create_index"
            )

    async def create_index(self, field_name: str, kind: str = "BTREE") -> None:
        """Create a single-column index named idx_<table>_<field>."""
        validate_declared(self._table, [field_name], "create_index")
        await self._executor.execute(
            build_create_index(self._table.name, field_name, kind),
            table=self._table.name,
            operation="create_index",
        )
        logger.info("relmap_index_created table=%s field=%s kind=%s", self.name, field_name, kind)

    async def drop_index(self, field_name: str) -> None:
        """Drop the index created by create_index for a field."""
        validate_declared(self._table, [field_name], "drop_index")
        await self._executor.execute(
            build_drop_index(self._table.name, field_name),
            table=self._table.name,
            operation="drop_index",
        )

    # -- writes ---------------------------------------------------------------

    async def create(
        self, data: Mapping[str, Any], relations: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        """Insert one record and apply its relation payloads atomically."""
        operation = "create"
        record = dict(data)
        relations = {**split_relations(self._table, record), **(relations or {})}
        validate_create(self._table, record)
        check_relations(self._table, relations, operation)
        processed = process_fields(self._table, record, operation, fill_primary_key=True)

        async with self._executor.transaction(table=self.name, operation=operation) as executor:
            row = await executor.fetchrow(
                build_insert(self._table.name, processed), table=self.name, operation=operation
            )
            if relations:
                row = await RelationResolver(self.using(executor)).apply(
                    row, relations, operation
                )
        self._invalidate()
        return row

    async def update(
        self,
        key: Any,
        data: Mapping[str, Any],
        relations: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Update one record by primary key; raises RecordNotFoundError when absent."""
        operation = "update"
        record = dict(data)
        relations = {**split_relations(self._table, record), **(relations or {})}
        validate_declared(self._table, record, operation)
        check_relations(self._table, relations, operation)
        processed = process_fields(self._table, record, operation)

        async with self._executor.transaction(table=self.name, operation=operation) as executor:
            if processed:
                statement = build_update_by_key(self._table, key, processed)
            else:
                statement = build_select_by_key(self._table, key)
            row = await executor.fetchrow(statement, table=self.name, operation=operation)
            if row is None:
                raise RecordNotFoundError(key, table=self.name, operation=operation)
            if relations:
                row = await RelationResolver(self.using(executor)).apply(
                    row, relations, operation
                )
        self._invalidate()
        return row

    async def update_many(
        self,
        where: Mapping[str, Any],
        data: Mapping[str, Any],
        relations: Optional[Mapping[str, Any]] = None,
    ) -> int:
        """Update every record matching the filter and return how many matched."""
        operation = "update_many"
        conditions = self._require_where(where, operation)
        record = dict(data)
        relations = {**split_relations(self._table, record), **(relations or {})}
        validate_declared(self._table, record, operation)
        check_relations(self._table, relations, operation)
        processed = process_fields(self._table, record, operation)
        if not processed and not relations:
            raise RecordValidationError(
                "no fields to update", table=self.name, operation=operation
            )

        async with self._executor.transaction(table=self.name, operation=operation) as executor:
            if processed:
                statement = build_update_by_filter(self._table, conditions, processed)
            else:
                statement = build_select(self._table.name, conditions)
            rows = await executor.fetch(statement, table=self.name, operation=operation)
            if relations:
                resolver = RelationResolver(self.using(executor))
                for row in rows:
                    await resolver.apply(row, relations, operation)
        self._invalidate()
        return len(rows)

    async def delete(self, key: Any) -> Optional[Dict[str, Any]]:
        """Delete one record by primary key and return it, or None when absent."""
        row = await self._executor.fetchrow(
            build_delete_by_key(self._table, key), table=self.name, operation="delete"
        )
        self._invalidate()
        return row

    async def delete_many(self, where: Mapping[str, Any]) -> int:
        """Delete every record matching the filter and return the count."""
        conditions = self._require_where(where, "delete_many")
        count = await self._executor.execute(
            build_delete_by_filter(self._table.name, conditions),
            table=self.name,
            operation="delete_many",
        )
        self._invalidate()
        return count

    async def soft_delete(self, key: Any) -> Optional[Dict[str, Any]]:
        """Stamp deletedAt on a live record; None when absent or already deleted."""
        self._require_soft_delete("soft_delete")
        row = await self._executor.fetchrow(
            build_set_deleted_marker(self._table, key, deleted=True),
            table=self.name,
            operation="soft_delete",
        )
        self._invalidate()
        return row

    async def restore(self, key: Any) -> Optional[Dict[str, Any]]:
        """Clear deletedAt on a soft-deleted record; None when absent or live."""
        self._require_soft_delete("restore")
        row = await self._executor.fetchrow(
            build_set_deleted_marker(self._table, key, deleted=False),
            table=self.name,
            operation="restore",
        )
        self._invalidate()
        return row

    # -- reads ----------------------------------------------------------------

    async def find_all(
        self,
        where: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        operation = "find_all"
        conditions = self._validate_where(where, operation)
        validate_order_by(self._table, order_by, operation)
        return await self._executor.fetch(
            build_select(self._table.name, conditions, order_by, limit, offset),
            table=self.name,
            operation=operation,
        )

    async def find_by_id(self, key: Any) -> Optional[Dict[str, Any]]:
        """Point lookup by primary key, served from the result cache when warm."""
        cache_key = ResultCache.key(self.name, "find_by_id", key)
        if self._cache_readable:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached

        row = await self._executor.fetchrow(
            build_select_by_key(self._table, key), table=self.name, operation="find_by_id"
        )
        if self._cache_readable:
            self._cache.set(cache_key, row)
        return row

    async def find_one(self, where: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
        operation = "find_one"
        conditions = self._validate_where(where, operation)
        cache_key = ResultCache.key(self.name, operation, conditions)
        if self._cache_readable:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached

        row = await self._executor.fetchrow(
            build_select(self._table.name, conditions, limit=1),
            table=self.name,
            operation=operation,
        )
        if self._cache_readable:
            self._cache.set(cache_key, row)
        return row

    async def find_all_with_relations(
        self,
        relation_names: Sequence[str],
        where: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """find_all plus eager loading of the named relations."""
        check_relations(self._table, relation_names, "find_all_with_relations")
        rows = await self.find_all(where, order_by=order_by, limit=limit, offset=offset)
        if not rows or not relation_names:
            return rows
        return await load_relations(self, rows, relation_names)

    async def find_any(self, field_name: str, values: Sequence[Any]) -> List[Dict[str, Any]]:
        """Return every record whose field matches one of the values."""
        validate_declared(self._table, [field_name], "find_any")
        if not values:
            return []
        return await self._executor.fetch(
            build_select_any(self._table.name, field_name, values),
            table=self.name,
            operation="find_any",
        )

    async def count(self, where: Optional[Mapping[str, Any]] = None) -> int:
        conditions = self._validate_where(where, "count")
        value = await self._executor.fetchval(
            build_count(self._table.name, conditions), table=self.name, operation="count"
        )
        return int(value or 0)

    async def paginate(
        self, page: int = 1, page_size: int = 10, where: Optional[Mapping[str, Any]] = None
    ) -> Page:
        """Return one page of records with the total count of matches."""
        if page < 1 or page_size < 1:
            raise RecordValidationError(
                "page and page_size must be positive integers",
                table=self.name,
                operation="paginate",
            )
        offset = (page - 1) * page_size
        if self._executor.in_transaction:
            # one connection cannot run two statements at once
            data = await self.find_all(where, limit=page_size, offset=offset)
            total = await self.count(where)
        else:
            data, total = await asyncio.gather(
                self.find_all(where, limit=page_size, offset=offset), self.count(where)
            )
        return Page(
            data=data,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size),
        )

    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        """Run caller-supplied SQL with positional parameters; bypasses the cache."""
        return await self._executor.fetch(
            Statement(sql, tuple(params or ())), table=self.name, operation="query"
        )
