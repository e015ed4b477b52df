"""Engine wiring: connection pool, schema, result cache and table accessors."""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import asyncpg

from relmap.cache import ResultCache
from relmap.config import EngineSettings
from relmap.errors import SchemaError
from relmap.executor import StatementExecutor
from relmap.model import Model
from relmap.schema import RelationKind, Schema, load_schema
from relmap.statements import Statement, build_drop_table

logger = logging.getLogger(__name__)


def creation_order(schema: Schema) -> List[str]:
    """Order tables so every BelongsTo target is created before its owner."""
    dependencies = {
        name: {
            relation.target_table
            for relation in schema.table(name).relations.values()
            if relation.kind is RelationKind.BELONGS_TO and relation.target_table != name
        }
        for name in schema.names()
    }

    ordered: List[str] = []
    visiting = set()
    done = set()

    def visit(name: str) -> None:
        if name in done:
            return
        if name in visiting:
            raise SchemaError(
                f"circular belongsTo dependency involving '{name}'", operation="create_tables"
            )
        visiting.add(name)
        for dependency in sorted(dependencies[name]):
            visit(dependency)
        visiting.discard(name)
        done.add(name)
        ordered.append(name)

    for name in schema.names():
        visit(name)
    return ordered


def init_models(
    target: Any,
    schema: Schema,
    cache: Optional[ResultCache] = None,
    *,
    statement_timeout: Optional[float] = None,
    invalidate_on_write: bool = True,
) -> Dict[str, Model]:
    """Build one accessor per table over a pool (or a StatementExecutor)."""
    if isinstance(target, StatementExecutor):
        executor = target
    else:
        executor = StatementExecutor(target, statement_timeout=statement_timeout)
    return {
        name: Model(name, schema, executor, cache=cache, invalidate_on_write=invalidate_on_write)
        for name in schema.names()
    }


async def create_tables(models: Dict[str, Model], schema: Schema) -> List[str]:
    """Create every table (and declared index) in dependency order."""
    created = []
    for name in creation_order(schema):
        await models[name].ensure_table()
        created.append(name)
    logger.info("relmap_tables_created count=%d", len(created))
    return created


async def drop_tables(executor: StatementExecutor, schema: Schema) -> List[str]:
    """Drop every table in the schema with CASCADE and return the dropped names."""
    dropped = []
    for name in schema.names():
        await executor.execute(build_drop_table(name), table=name, operation="drop_table")
        dropped.append(name)
    logger.info("relmap_tables_dropped count=%d", len(dropped))
    return dropped


class Engine:
    """Owns the connection pool and the accessors built from one schema."""

    def __init__(
        self,
        pool: Any,
        schema: Schema,
        settings: Optional[EngineSettings] = None,
        cache: Optional[ResultCache] = None,
    ) -> None:
        """Wire accessors over an existing pool."""
        self._pool = pool
        self._schema = schema
        self._settings = settings or EngineSettings()
        if cache is None and self._settings.cache_enabled:
            cache = ResultCache(
                ttl_seconds=self._settings.cache_ttl_seconds,
                max_entries=self._settings.cache_max_entries,
            )
        self._cache = cache
        self._executor = StatementExecutor(
            pool, statement_timeout=self._settings.statement_timeout_seconds
        )
        self._models = init_models(
            self._executor,
            schema,
            cache,
            invalidate_on_write=self._settings.cache_invalidate_on_write,
        )

    @classmethod
    async def connect(
        cls, settings: Optional[EngineSettings] = None, schema: Optional[Schema] = None
    ) -> "Engine":
        """Create the pool, load the schema and optionally create the tables."""
        settings = settings or EngineSettings.from_env()
        if schema is None:
            if not settings.schema_path:
                raise SchemaError("No schema given and RELMAP_SCHEMA_PATH is not set.")
            schema = load_schema(settings.schema_path)
        if not settings.dsn:
            raise ValueError("RELMAP_DATABASE_URL (or DB_HOST) must be set to connect.")

        pool = await asyncpg.create_pool(
            settings.dsn,
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size,
            command_timeout=settings.command_timeout,
            server_settings={"application_name": settings.application_name},
        )
        logger.info(
            "relmap_pool_established application_name=%s tables=%d",
            settings.application_name,
            len(schema),
        )

        engine = cls(pool, schema, settings)
        if settings.auto_create_tables:
            await engine.create_tables()
        return engine

    @property
    def schema(self) -> Schema:
        return self._schema

    @property
    def cache(self) -> Optional[ResultCache]:
        return self._cache

    @property
    def models(self) -> Dict[str, Model]:
        return dict(self._models)

    def model(self, name: str) -> Model:
        """Return the accessor for a table."""
        try:
            return self._models[name]
        except KeyError:
            raise SchemaError(f"Unknown table '{name}'", operation="model") from None

    def __getitem__(self, name: str) -> Model:
        return self.model(name)

    @asynccontextmanager
    async def transaction(self):
        """Yield accessors for every table bound to one unit of work."""
        async with self._executor.transaction(operation="engine_transaction") as executor:
            yield {name: model.using(executor) for name, model in self._models.items()}

    async def create_tables(self) -> List[str]:
        return await create_tables(self._models, self._schema)

    async def drop_tables(self) -> List[str]:
        dropped = await drop_tables(self._executor, self._schema)
        if self._cache is not None:
            self._cache.invalidate()
        return dropped

    async def query(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        """Run caller-supplied SQL on the shared pool."""
        return await self._executor.fetch(
            Statement(sql, tuple(params or ())), table="*", operation="query"
        )

    async def close(self) -> None:
        """Close the pool; accessors used afterwards raise instead of touching it."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            self._executor.detach()
            logger.info("relmap_pool_closed")
