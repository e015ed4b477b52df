"""asyncpg stand-ins and the sample schema used by relmap unit tests."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

SCHEMA_DATA = {
    "User": {
        "fields": {
            "id": "uuid",
            "name": "varchar(120)",
            "email": "varchar",
            "age": "integer",
            "settings": "jsonb",
            "createdAt": "timestamp",
            "deletedAt": "timestamp",
        },
        "required": ["name", "email"],
        "indexes": [{"fields": ["email"], "unique": True}],
        "relations": {
            "posts": {"type": "hasMany", "model": "Post", "foreignKey": "authorId"},
            "profile": {"type": "hasOne", "model": "Profile", "foreignKey": "userId"},
            "roles": {
                "type": "manyToMany",
                "model": "Role",
                "foreignKey": "userId",
                "junctionTable": "UserRole",
                "relatedKey": "roleId",
            },
            "badges": {"type": "manyToMany", "model": "Role", "foreignKey": "userId"},
        },
    },
    "Post": {
        "fields": {"id": "serial", "title": "text", "authorId": "varchar"},
        "required": ["title"],
        "relations": {
            "author": {
                "type": "belongsTo",
                "model": "User",
                "foreignKey": "authorId",
                "onDelete": "cascade",
            },
            "comments": {"type": "hasMany", "model": "Comment", "foreignKey": "postId"},
        },
    },
    "Comment": {
        "fields": {"id": "serial", "body": "text", "postId": "integer"},
        "required": ["body"],
    },
    "Profile": {"fields": {"id": "serial", "bio": "text", "userId": "varchar"}},
    "Role": {"fields": {"id": "serial", "name": "text"}},
    "UserRole": {
        "fields": {"userId": "varchar", "roleId": "integer"},
        "primaryKey": ["userId", "roleId"],
    },
    "AuditLog": {"fields": {"message": "text"}},
}


class FakeConnection:
    """asyncpg connection stand-in recording every call."""

    def __init__(self):
        self.fetch = AsyncMock(return_value=[])
        self.fetchrow = AsyncMock(return_value=None)
        self.fetchval = AsyncMock(return_value=0)
        self.execute = AsyncMock(return_value="OK")
        self.tx = MagicMock()
        self.tx.start = AsyncMock()
        self.tx.commit = AsyncMock()
        self.tx.rollback = AsyncMock()
        self.transaction = MagicMock(return_value=self.tx)


class FakePool(FakeConnection):
    """Pool stand-in whose acquired connection shares the same call recorders."""

    def __init__(self):
        super().__init__()
        self.acquired = 0
        self.close = AsyncMock()

    @asynccontextmanager
    async def acquire(self):
        self.acquired += 1
        yield self


def sql_calls(mock):
    """Return the SQL text of every awaited call on a recorder."""
    return [call.args[0] for call in mock.await_args_list]


