"""End-to-end behavior against a live PostgreSQL (RELMAP_DATABASE_URL)."""

import os
import uuid
from contextlib import asynccontextmanager

import pytest

from relmap import Engine, EngineSettings, RecordNotFoundError, RecordValidationError, parse_schema
from relmap.errors import ExecutionError


def _schema(prefix: str):
    author, book, tag, book_tag = (f"{prefix}_{name}" for name in ("author", "book", "tag", "bt"))
    return (
        parse_schema(
            {
                author: {
                    "fields": {"id": "uuid", "name": "varchar(80)", "createdAt": "timestamp"},
                    "required": ["name"],
                    "relations": {
                        "books": {"type": "hasMany", "model": book, "foreignKey": "authorId"}
                    },
                },
                book: {
                    "fields": {"id": "serial", "title": "text", "authorId": "varchar"},
                    "required": ["title"],
                    "relations": {
                        "author": {
                            "type": "belongsTo",
                            "model": author,
                            "foreignKey": "authorId",
                            "onDelete": "CASCADE",
                        },
                        "tags": {
                            "type": "manyToMany",
                            "model": tag,
                            "foreignKey": "bookId",
                            "junctionTable": book_tag,
                            "relatedKey": "tagId",
                        },
                    },
                },
                tag: {"fields": {"id": "serial", "label": "text"}},
                book_tag: {
                    "fields": {"bookId": "integer", "tagId": "integer"},
                    "primaryKey": ["bookId", "tagId"],
                },
            }
        ),
        author,
        book,
        tag,
        book_tag,
    )


@asynccontextmanager
async def _engine():
    dsn = os.getenv("RELMAP_DATABASE_URL")
    if not dsn:
        pytest.skip("RELMAP_DATABASE_URL not set")
    schema, *names = _schema(f"it_{uuid.uuid4().hex[:8]}")
    engine = await Engine.connect(
        EngineSettings(dsn=dsn, pool_min_size=1, pool_max_size=4, auto_create_tables=True),
        schema=schema,
    )
    try:
        yield (engine, *names)
    finally:
        await engine.drop_tables()
        await engine.close()


@pytest.mark.asyncio
async def test_create_round_trip_and_validation():
    async with _engine() as (engine, author, *_):
        authors = engine.model(author)

        created = await authors.create({"name": "Le Guin"})
        assert created["id"]
        found = await authors.find_by_id(created["id"])
        assert found["name"] == "Le Guin"

        with pytest.raises(RecordValidationError) as exc_info:
            await authors.create({})
        assert exc_info.value.missing_fields == ["name"]

        with pytest.raises(RecordValidationError) as exc_info:
            await authors.update(created["id"], {"nickname": "x"})
        assert exc_info.value.invalid_fields == ["nickname"]


@pytest.mark.asyncio
async def test_many_to_many_reconciliation_is_incremental_and_idempotent():
    async with _engine() as (engine, _author, book, tag, book_tag):
        tags = [await engine.model(tag).create({"label": label}) for label in "ABCD"]
        ids = {row["label"]: row["id"] for row in tags}

        created = await engine.model(book).create(
            {"title": "Dispossessed"}, relations={"tags": [ids["A"], ids["B"], ids["C"]]}
        )
        wanted = [ids["B"], ids["C"], ids["D"]]
        await engine.model(book).update(created["id"], {}, relations={"tags": wanted})
        await engine.model(book).update(created["id"], {}, relations={"tags": wanted})

        pairs = await engine.model(book_tag).find_all({"bookId": created["id"]})
        assert sorted(pair["tagId"] for pair in pairs) == sorted(wanted)


@pytest.mark.asyncio
async def test_failed_relation_rolls_back_parent():
    async with _engine() as (engine, author, *_):
        with pytest.raises(ExecutionError):
            await engine.model(author).create(
                {"name": "Ghost"},
                relations={"books": [{"title": "ok"}, {"title": "bad", "id": "not-an-int"}]},
            )

        assert await engine.model(author).find_all({"name": "Ghost"}) == []


@pytest.mark.asyncio
async def test_paginate_and_not_found_semantics():
    async with _engine() as (engine, _author, _book, tag, _bt):
        tags = engine.model(tag)
        for n in range(25):
            await tags.create({"label": f"t{n}"})

        page = await tags.paginate(2, 10)
        assert len(page.data) == 10
        assert page.total == 25
        assert page.total_pages == 3

        assert await tags.delete(999999) is None
        with pytest.raises(RecordNotFoundError):
            await tags.update(999999, {"label": "x"})
