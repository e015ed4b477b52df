"""Schema-driven relational mapping over asyncpg.

A JSON schema describes tables, keys and relations; every table gets a
``Model`` accessor whose writes cascade through HasMany, HasOne, BelongsTo
and ManyToMany relations inside one transaction.
"""

from relmap.cache import ResultCache
from relmap.config import EngineSettings
from relmap.engine import Engine, create_tables, creation_order, drop_tables, init_models
from relmap.errors import (
    ExecutionError,
    RecordNotFoundError,
    RecordValidationError,
    RelationConfigurationError,
    RelmapError,
    SchemaError,
    StatementTimeoutError,
    TransactionError,
)
from relmap.executor import StatementExecutor
from relmap.model import Model, Page
from relmap.relations import ReconcileResult, reconcile_many_to_many
from relmap.schema import RelationKind, Schema, TableDefinition, load_schema, parse_schema
from relmap.transaction import transaction_scope

__all__ = [
    "Engine",
    "EngineSettings",
    "ExecutionError",
    "Model",
    "Page",
    "ReconcileResult",
    "RecordNotFoundError",
    "RecordValidationError",
    "RelationConfigurationError",
    "RelationKind",
    "RelmapError",
    "ResultCache",
    "Schema",
    "SchemaError",
    "StatementExecutor",
    "StatementTimeoutError",
    "TableDefinition",
    "TransactionError",
    "create_tables",
    "creation_order",
    "drop_tables",
    "init_models",
    "load_schema",
    "parse_schema",
    "reconcile_many_to_many",
    "transaction_scope",
]
