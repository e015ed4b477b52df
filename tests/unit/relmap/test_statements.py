import pytest

from relmap.errors import RecordValidationError, SchemaError
from relmap.schema import parse_schema
from relmap.statements import (
    build_count,
    build_create_index,
    build_create_table,
    build_declared_indexes,
    build_delete_by_filter,
    build_delete_by_key,
    build_delete_junction,
    build_drop_index,
    build_drop_table,
    build_insert,
    build_insert_junction,
    build_select,
    build_select_any,
    build_select_by_key,
    build_select_related_ids,
    build_set_deleted_marker,
    build_set_foreign_key,
    build_update_by_filter,
    build_update_by_key,
    key_values,
    quote_identifier,
)


def test_quote_identifier_escapes_quotes():
    assert quote_identifier('we"ird') == '"we""ird"'


class TestCreateTable:
    """DDL synthesis."""

    def test_user_table(self, schema):
        statement = build_create_table(schema.table("User"), schema)

        assert statement.sql == (
            'CREATE TABLE IF NOT EXISTS "User" ('
            '"id" VARCHAR PRIMARY KEY, '
            '"name" VARCHAR(120) NOT NULL, '
            '"email" VARCHAR NOT NULL, '
            '"age" INTEGER, '
            '"settings" JSONB, '
            '"createdAt" TIMESTAMP DEFAULT now(), '
            '"deletedAt" TIMESTAMP)'
        )
        assert statement.params == ()

    def test_belongs_to_emits_foreign_key(self, schema):
        statement = build_create_table(schema.table("Post"), schema)

        assert '"id" SERIAL PRIMARY KEY' in statement.sql
        assert '"title" TEXT NOT NULL' in statement.sql
        assert (
            'FOREIGN KEY ("authorId") REFERENCES "User" ("id") ON DELETE CASCADE'
            in statement.sql
        )

    def test_composite_primary_key(self, schema):
        statement = build_create_table(schema.table("UserRole"), schema)

        assert statement.sql == (
            'CREATE TABLE IF NOT EXISTS "UserRole" ('
            '"userId" VARCHAR, "roleId" INTEGER, PRIMARY KEY ("userId", "roleId"))'
        )

    def test_foreign_key_to_keyless_table_rejected(self, schema_data):
        schema_data["Comment"]["fields"]["logId"] = "integer"
        schema_data["Comment"]["relations"] = {
            "log": {"type": "belongsTo", "model": "AuditLog", "foreignKey": "logId"}
        }
        schema = parse_schema(schema_data)

        with pytest.raises(SchemaError, match="no single-column primary key"):
            build_create_table(schema.table("Comment"), schema)

    def test_drop_table_cascades(self):
        assert build_drop_table("User").sql == 'DROP TABLE IF EXISTS "User" CASCADE'
        assert build_drop_table("User", cascade=False).sql == 'DROP TABLE IF EXISTS "User"'


class TestIndexes:
    def test_declared_unique_index(self, schema):
        statements = build_declared_indexes(schema.table("User"))

        assert [s.sql for s in statements] == [
            'CREATE UNIQUE INDEX IF NOT EXISTS "idx_User_email" ON "User" ("email")'
        ]

    def test_create_index_kind(self):
        statement = build_create_index("User", "email", "hash")

        assert statement.sql == (
            'CREATE INDEX IF NOT EXISTS "idx_User_email" ON "User" USING HASH ("email")'
        )

    def test_create_index_rejects_unknown_kind(self):
        with pytest.raises(RecordValidationError, match="unsupported index kind"):
            build_create_index("User", "email", "fulltext")

    def test_drop_index(self):
        assert build_drop_index("User", "email").sql == 'DROP INDEX IF EXISTS "idx_User_email"'


class TestInsertAndSelect:
    def test_insert_returns_row(self):
        statement = build_insert("User", {"name": "Ada", "email": "ada@example.com"})

        assert statement.sql == (
            'INSERT INTO "User" ("name", "email") VALUES ($1, $2) RETURNING *'
        )
        assert statement.params == ("Ada", "ada@example.com")

    def test_insert_without_values(self):
        assert build_insert("Role", {}).sql == 'INSERT INTO "Role" DEFAULT VALUES RETURNING *'

    def test_select_all_clauses(self):
        statement = build_select(
            "User", {"name": "Ada", "deletedAt": None}, order_by="-createdAt", limit=10, offset=20
        )

        assert statement.sql == (
            'SELECT * FROM "User" WHERE "name" = $1 AND "deletedAt" IS NULL '
            'ORDER BY "createdAt" DESC LIMIT $2 OFFSET $3'
        )
        assert statement.params == ("Ada", 10, 20)

    def test_select_without_filter(self):
        statement = build_select("User", order_by="name")

        assert statement.sql == 'SELECT * FROM "User" ORDER BY "name" ASC'
        assert statement.params == ()

    def test_select_by_key(self, schema):
        statement = build_select_by_key(schema.table("User"), "u1")

        assert statement.sql == 'SELECT * FROM "User" WHERE "id" = $1'
        assert statement.params == ("u1",)

    def test_select_any(self):
        statement = build_select_any("Post", "authorId", ("u1", "u2"))

        assert statement.sql == 'SELECT * FROM "Post" WHERE "authorId" = ANY($1)'
        assert statement.params == (["u1", "u2"],)

    def test_count(self):
        statement = build_count("Post", {"authorId": "u1"})

        assert statement.sql == 'SELECT COUNT(*) AS count FROM "Post" WHERE "authorId" = $1'
        assert statement.params == ("u1",)


class TestUpdateAndDelete:
    def test_update_by_key(self, schema):
        statement = build_update_by_key(schema.table("User"), "u1", {"name": "B", "age": 3})

        assert statement.sql == (
            'UPDATE "User" SET "name" = $1, "age" = $2 WHERE "id" = $3 RETURNING *'
        )
        assert statement.params == ("B", 3, "u1")

    def test_update_by_filter_returns_keys(self, schema):
        statement = build_update_by_filter(schema.table("User"), {"age": 3}, {"name": "x"})

        assert statement.sql == 'UPDATE "User" SET "name" = $1 WHERE "age" = $2 RETURNING "id"'
        assert statement.params == ("x", 3)

    def test_delete_by_composite_key(self, schema):
        statement = build_delete_by_key(schema.table("UserRole"), ("u1", 2))

        assert statement.sql == (
            'DELETE FROM "UserRole" WHERE "userId" = $1 AND "roleId" = $2 RETURNING *'
        )
        assert statement.params == ("u1", 2)

    def test_delete_by_filter(self):
        statement = build_delete_by_filter("Post", {"authorId": "u1"})

        assert statement.sql == 'DELETE FROM "Post" WHERE "authorId" = $1'

    def test_soft_delete_and_restore(self, schema):
        user = schema.table("User")

        assert build_set_deleted_marker(user, "u1", deleted=True).sql == (
            'UPDATE "User" SET "deletedAt" = now() WHERE "id" = $1 '
            'AND "deletedAt" IS NULL RETURNING *'
        )
        assert build_set_deleted_marker(user, "u1", deleted=False).sql == (
            'UPDATE "User" SET "deletedAt" = NULL WHERE "id" = $1 '
            'AND "deletedAt" IS NOT NULL RETURNING *'
        )

    def test_set_foreign_key(self, schema):
        statement = build_set_foreign_key(schema.table("Post"), 5, "authorId", "u1")

        assert statement.sql == 'UPDATE "Post" SET "authorId" = $1 WHERE "id" = $2 RETURNING *'
        assert statement.params == ("u1", 5)


class TestKeys:
    def test_mapping_and_tuple_keys(self, schema):
        user_role = schema.table("UserRole")

        assert key_values(user_role, {"roleId": 2, "userId": "u1"}) == {
            "userId": "u1",
            "roleId": 2,
        }
        assert key_values(user_role, ["u1", 2]) == {"userId": "u1", "roleId": 2}

    def test_composite_key_requires_every_column(self, schema):
        with pytest.raises(RecordValidationError) as exc_info:
            key_values(schema.table("UserRole"), {"userId": "u1"}, "update")

        assert exc_info.value.missing_fields == ["roleId"]

    def test_keyless_table(self, schema):
        with pytest.raises(SchemaError, match="no primary key"):
            key_values(schema.table("AuditLog"), 1, "delete")


class TestJunction:
    def test_junction_statements(self):
        assert build_select_related_ids("UserRole", "userId", "roleId", "u1").sql == (
            'SELECT "roleId" FROM "UserRole" WHERE "userId" = $1'
        )
        insert = build_insert_junction("UserRole", "userId", "roleId", "u1", 3)
        assert insert.sql == 'INSERT INTO "UserRole" ("userId", "roleId") VALUES ($1, $2)'
        assert insert.params == ("u1", 3)
        delete = build_delete_junction("UserRole", "userId", "roleId", "u1", 3)
        assert delete.sql == 'DELETE FROM "UserRole" WHERE "userId" = $1 AND "roleId" = $2'
