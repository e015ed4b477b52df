"""Relation side effects and eager loading.

Writes fan out recursively: HasMany/HasOne payloads go through the related
model's full create/update pipeline on the same executor, so a unit of work
started by the parent covers every nested write.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from relmap.errors import RecordValidationError, RelationConfigurationError
from relmap.schema import RelationDescriptor, RelationKind, TableDefinition
from relmap.statements import (
    build_delete_junction,
    build_insert_junction,
    build_select_any,
    build_select_related_ids,
    build_set_foreign_key,
)

logger = logging.getLogger(__name__)

RELATIONS_KEY = "relations"


@dataclass(frozen=True)
class ReconcileResult:
    """Junction pairs inserted and deleted by one reconciliation."""

    added: Tuple[Any, ...] = ()
    removed: Tuple[Any, ...] = ()


def _unique(values: Iterable[Any]) -> List[Any]:
    seen = set()
    result = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


def _as_list(payload: Any) -> List[Any]:
    if payload is None:
        return []
    if isinstance(payload, (list, tuple, set, frozenset)):
        return list(payload)
    return [payload]


def require_junction(
    table: TableDefinition, relation_name: str, relation: RelationDescriptor, operation: str
) -> None:
    """Fail fast when a many-to-many relation lacks its junction configuration."""
    if relation.kind is RelationKind.MANY_TO_MANY and not relation.has_junction:
        raise RelationConfigurationError(
            f'Invalid manyToMany relation configuration for "{relation_name}": '
            "junctionTable and relatedKey are required",
            table=table.name,
            operation=operation,
        )


def check_relations(table: TableDefinition, relation_names: Iterable[str], operation: str) -> None:
    """Validate relation names and configuration before any statement runs."""
    for relation_name in relation_names:
        relation = table.relation(relation_name, operation)
        require_junction(table, relation_name, relation, operation)
        if relation.kind is not RelationKind.BELONGS_TO:
            # the parent's key value is written into the related side
            _ = table.key_field


def split_relations(table: TableDefinition, data: Dict[str, Any]) -> Dict[str, Any]:
    """Pop an embedded ``relations`` map out of a record payload."""
    if RELATIONS_KEY in table.fields or RELATIONS_KEY not in data:
        return {}
    embedded = data.pop(RELATIONS_KEY)
    return dict(embedded or {})


async def reconcile_many_to_many(
    executor: Any,
    table: TableDefinition,
    relation_name: str,
    relation: RelationDescriptor,
    source_id: Any,
    target_ids: Sequence[Any],
    operation: str = "reconcile",
) -> ReconcileResult:
    """Converge the junction rows of ``source_id`` to exactly ``target_ids``.

    Only changed pairs are touched: missing targets are inserted, stale pairs
    are deleted, and pairs present more than once are collapsed to one row.
    """
    require_junction(table, relation_name, relation, operation)
    junction = relation.junction_table
    foreign_key = relation.foreign_key
    related_key = relation.related_key

    rows = await executor.fetch(
        build_select_related_ids(junction, foreign_key, related_key, source_id),
        table=junction,
        operation=operation,
    )
    current = Counter(row[related_key] for row in rows)
    target = _unique(target_ids)
    target_set = set(target)

    to_add = [related_id for related_id in target if related_id not in current]
    to_remove = [related_id for related_id in current if related_id not in target_set]
    duplicated = [related_id for related_id in target if current.get(related_id, 0) > 1]

    for related_id in to_remove + duplicated:
        await executor.execute(
            build_delete_junction(junction, foreign_key, related_key, source_id, related_id),
            table=junction,
            operation=operation,
        )
    for related_id in to_add + duplicated:
        await executor.execute(
            build_insert_junction(junction, foreign_key, related_key, source_id, related_id),
            table=junction,
            operation=operation,
        )

    logger.debug(
        "relmap_reconcile table=%s relation=%s added=%d removed=%d",
        table.name,
        relation_name,
        len(to_add),
        len(to_remove),
    )
    return ReconcileResult(added=tuple(to_add), removed=tuple(to_remove))


class RelationResolver:
    """Applies relation payloads after the owning row has been written."""

    def __init__(self, model: Any) -> None:
        """Bind to the model (and thereby the executor) that wrote the parent row."""
        self._model = model

    async def apply(
        self, row: Dict[str, Any], relations: Mapping[str, Any], operation: str
    ) -> Dict[str, Any]:
        """Resolve each relation in order and return the (possibly refreshed) row."""
        table = self._model.table
        for relation_name, payload in relations.items():
            relation = table.relation(relation_name, operation)
            require_junction(table, relation_name, relation, operation)

            if relation.kind in (RelationKind.HAS_MANY, RelationKind.HAS_ONE):
                await self._write_children(relation, row, payload, operation)
            elif relation.kind is RelationKind.BELONGS_TO:
                row = await self._set_parent(relation, row, payload, operation)
            else:
                await self._reconcile(relation_name, relation, row, payload, operation)
        return row

    async def _write_children(
        self, relation: RelationDescriptor, row: Dict[str, Any], payload: Any, operation: str
    ) -> None:
        parent_id = row[self._model.table.key_field]
        child_model = self._model.sibling(relation.target_table)
        child_table = child_model.table

        for item in _as_list(payload):
            data = dict(item)
            nested = split_relations(child_table, data)
            data[relation.foreign_key] = parent_id
            key = {column: data.get(column) for column in child_table.primary_key}
            if child_table.primary_key and all(value is not None for value in key.values()):
                for column in child_table.primary_key:
                    data.pop(column, None)
                await child_model.update(key, data, relations=nested or None)
            else:
                await child_model.create(data, relations=nested or None)

    async def _set_parent(
        self, relation: RelationDescriptor, row: Dict[str, Any], parent_id: Any, operation: str
    ) -> Dict[str, Any]:
        table = self._model.table
        key = {column: row[column] for column in table.primary_key}
        updated = await self._model.executor.fetchrow(
            build_set_foreign_key(table, key, relation.foreign_key, parent_id),
            table=table.name,
            operation=operation,
        )
        return updated if updated is not None else row

    async def _reconcile(
        self,
        relation_name: str,
        relation: RelationDescriptor,
        row: Dict[str, Any],
        payload: Any,
        operation: str,
    ) -> ReconcileResult:
        target_key = self._model.schema.table(relation.target_table).primary_key
        target_ids = []
        for item in _as_list(payload):
            if isinstance(item, Mapping) and len(target_key) == 1:
                if item.get(target_key[0]) is None:
                    raise RecordValidationError(
                        f"relation '{relation_name}' items must carry '{target_key[0]}'",
                        table=relation.target_table,
                        operation=operation,
                        missing_fields=[target_key[0]],
                    )
                target_ids.append(item[target_key[0]])
            else:
                target_ids.append(item)
        result = await reconcile_many_to_many(
            self._model.executor,
            self._model.table,
            relation_name,
            relation,
            row[self._model.table.key_field],
            target_ids,
            operation,
        )
        if relation.junction_table in self._model.schema:
            self._model.sibling(relation.junction_table)._invalidate()
        return result


async def load_relations(
    model: Any, rows: List[Dict[str, Any]], relation_names: Sequence[str]
) -> List[Dict[str, Any]]:
    """Attach related records to each row, one batched query per relation."""
    table = model.table
    operation = "find_all_with_relations"
    results = [dict(row) for row in rows]
    for relation_name in relation_names:
        relation = table.relation(relation_name, operation)
        require_junction(table, relation_name, relation, operation)
        target_model = model.sibling(relation.target_table)
        target_table = target_model.table

        if relation.kind is RelationKind.BELONGS_TO:
            target_key = target_table.key_field
            parent_ids = _unique(
                row[relation.foreign_key]
                for row in results
                if row.get(relation.foreign_key) is not None
            )
            related = await _fetch_any(model, target_table.name, target_key, parent_ids, operation)
            by_key = {record[target_key]: record for record in related}
            for row in results:
                row[relation_name] = by_key.get(row.get(relation.foreign_key))
            continue

        own_key = table.key_field
        own_ids = _unique(row[own_key] for row in results if row.get(own_key) is not None)

        if relation.kind is RelationKind.MANY_TO_MANY:
            pairs = await _fetch_any(
                model, relation.junction_table, relation.foreign_key, own_ids, operation
            )
            target_key = target_table.key_field
            related_ids = _unique(pair[relation.related_key] for pair in pairs)
            related = await _fetch_any(model, target_table.name, target_key, related_ids, operation)
            by_key = {record[target_key]: record for record in related}
            linked: Dict[Any, List[Dict[str, Any]]] = {}
            for pair in pairs:
                record = by_key.get(pair[relation.related_key])
                if record is not None:
                    linked.setdefault(pair[relation.foreign_key], []).append(record)
            for row in results:
                row[relation_name] = linked.get(row.get(own_key), [])
            continue

        related = await _fetch_any(
            model, target_table.name, relation.foreign_key, own_ids, operation
        )
        grouped: Dict[Any, List[Dict[str, Any]]] = {}
        for record in related:
            grouped.setdefault(record[relation.foreign_key], []).append(record)
        for row in results:
            children = grouped.get(row.get(own_key), [])
            if relation.kind is RelationKind.HAS_ONE:
                row[relation_name] = children[0] if children else None
            else:
                row[relation_name] = children
    return results


async def _fetch_any(
    model: Any, table_name: str, column: str, values: List[Any], operation: str
) -> List[Dict[str, Any]]:
    if not values:
        return []
    return await model.executor.fetch(
        build_select_any(table_name, column, values), table=table_name, operation=operation
    )
