# polydb — multi-backend database abstraction layer
# Copyright (C) 2024-2026 Dr Horst Herb
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""Tests for polydb.schema — declaration, diffing and DDL generation."""

from __future__ import annotations

from unittest.mock import MagicMock

from polydb import DatabaseConfig, SchemaBuilder, connect
from polydb.schema import IndexSpec, LiveTable, get_schema_dialect, normalize_default


def _mem(prefix="app"):
    return connect(DatabaseConfig("sqlite", database=":memory:", prefix=prefix))


def _users(conn, table="#__users"):
    return SchemaBuilder(table, conn).id().string("name", 100, nullable=False)


def _everything(conn):
    return (
        SchemaBuilder("#__all", conn)
        .id()
        .int("count", nullable=False, default=0)
        .bigint("big")
        .tinyint("tiny", default=1)
        .string("name", 100, default="x")
        .text("body")
        .longtext("blob")
        .datetime("seen")
        .date("day")
        .time("at")
        .timestamp("created")
        .decimal("price", 8, 2, default=0)
        .boolean("active", default=True)
        .index("idx_all_name", ["name"])
        .index("idx_all_day", ["day", "at"], unique=True)
    )


def _fake_conn(dialect, struct=None, keys=None, indexes=None):
    """Connection stand-in reporting an existing table."""
    conn = MagicMock()
    conn.dialect = dialect
    conn.prefix = ""
    conn.in_transaction = False
    conn.config.charset = "utf8mb4"
    conn.table_exists.return_value = struct is not None
    conn.describe.return_value = {
        "fields": {name: row["Type"] for name, row in (struct or {}).items()},
        "keys": keys or [],
        "struct": struct or {},
    }
    conn.list_indexes.return_value = indexes or []
    return conn


def _row(name, type_, null="YES", default=None, extra=""):
    return {"Field": name, "Type": type_, "Null": null, "Key": "", "Default": default, "Extra": extra}


MYSQL_USERS = {
    "id": _row("id", "int(11)", "NO", extra="auto_increment"),
    "name": _row("name", "varchar(255)"),
}


class TestSQLiteCreate:
    def test_create_then_modify_is_noop(self):
        conn = _mem()
        table = _everything(conn)
        assert table.create()
        assert table.statements[0].startswith("CREATE TABLE `#__all`")
        assert len(table.statements) == 3

        again = _everything(conn)
        assert again.modify()
        assert again.statements == []
        assert again.plan() == []

    def test_create_existing_fails(self):
        conn = _mem()
        assert _users(conn).create()
        table = _users(conn)
        assert table.create() is False
        assert "already exists" in table.last_error

    def test_create_without_columns_fails(self):
        table = SchemaBuilder("#__empty", _mem())
        assert table.create() is False
        assert table.last_error

    def test_modify_missing_table_creates(self):
        conn = _mem()
        table = _users(conn)
        assert table.modify()
        assert table.differences["action"] == "create"
        assert conn.table_exists("#__users")

    def test_composite_primary_key(self):
        conn = _mem()
        table = (
            SchemaBuilder("#__links", conn)
            .int("a", nullable=False).int("b", nullable=False).string("label")
            .set_primary_key(["b", "a", "missing"])
        )
        assert table.definition.primary_key == ["b", "a"]
        assert table.create()
        assert conn.describe("#__links")["keys"] == ["b", "a"]

    def test_remove_primary_keys(self):
        conn = _mem()
        table = _users(conn).remove_primary_keys()
        assert "id" not in table.definition.columns
        assert table.definition.primary_key == []

    def test_drop_is_idempotent(self):
        conn = _mem()
        _users(conn).create()
        table = _users(conn)
        assert table.drop()
        assert table.drop()
        assert not table.exists()


class TestSQLiteModify:
    def test_add_nullable_column_in_place(self):
        conn = _mem()
        _users(conn).create()
        table = _users(conn).string("email", after="id")
        assert table.modify()
        assert table.statements == ["ALTER TABLE `#__users` ADD COLUMN `email` TEXT"]
        assert table.differences["added"] == ["email"]
        assert _users(conn).string("email").modify()

    def test_not_null_column_rebuilds_and_keeps_rows(self):
        conn = _mem()
        _users(conn).create()
        conn.insert("#__users", {"name": "ada"})
        table = _users(conn).string("email", nullable=False)
        assert table.modify()
        assert table.statements[0].startswith("CREATE TABLE `#__users__rebuild`")
        row = conn.row("SELECT * FROM `#__users`")
        assert row == {"id": 1, "name": "ada", "email": ""}
        again = _users(conn).string("email", nullable=False)
        assert again.modify()
        assert again.statements == []

    def test_type_change_keeps_live_only_columns(self):
        conn = _mem()
        SchemaBuilder("#__t", conn).id().string("code").string("legacy").create()
        conn.insert("#__t", {"code": "42", "legacy": "keep me"})

        table = SchemaBuilder("#__t", conn).id().int("code")
        assert table.modify()
        assert "code" in table.differences["changed"]
        row = conn.row("SELECT * FROM `#__t`")
        assert row == {"id": 1, "code": 42, "legacy": "keep me"}
        assert conn.describe("#__t")["fields"]["code"] == "INTEGER"

    def test_default_change_rebuilds(self):
        conn = _mem()
        SchemaBuilder("#__t", conn).id().boolean("flag").create()
        table = SchemaBuilder("#__t", conn).id().boolean("flag", default=True)
        assert table.modify()
        assert conn.describe("#__t")["struct"]["flag"]["Default"] == "1"

    def test_index_changes(self):
        conn = _mem()
        _users(conn).create()
        table = _users(conn).index("#__idx_users_name", ["name"], unique=True)
        assert table.modify()
        assert table.statements == [
            "CREATE UNIQUE INDEX `app_idx_users_name` ON `#__users` (`name`)",
        ]
        assert _users(conn).index("#__idx_users_name", ["name"], unique=True).plan() == []

        table = _users(conn)
        assert table.modify()
        assert table.statements == ["DROP INDEX `app_idx_users_name`"]
        assert conn.list_indexes("#__users") == []

    def test_plan_does_not_execute(self):
        conn = _mem()
        _users(conn).create()
        plan = _users(conn).text("bio").plan()
        assert plan == ["ALTER TABLE `#__users` ADD COLUMN `bio` TEXT"]
        assert "bio" not in conn.describe("#__users", cache=False)["fields"]

    def _with_children(self, conn):
        _users(conn).create()
        conn.insert("#__users", {"name": "ada"})
        assert conn.execute_script(
            "CREATE TABLE `#__posts` (`id` INTEGER PRIMARY KEY, `user_id` INTEGER "
            "REFERENCES `#__users` (`id`) ON DELETE CASCADE);"
            "INSERT INTO `#__posts` (`user_id`) VALUES (1);"
        )

    def test_rebuild_cascades_into_children_with_foreign_keys_on(self):
        conn = _mem()
        self._with_children(conn)
        assert _users(conn).string("email", nullable=False).modify()
        assert conn.scalar("SELECT COUNT(*) FROM `#__users`") == 1
        assert conn.scalar("SELECT COUNT(*) FROM `#__posts`") == 0

    def test_rebuild_keeps_children_with_foreign_keys_off(self):
        conn = _mem()
        self._with_children(conn)
        conn.execute("PRAGMA foreign_keys=OFF").close()
        assert _users(conn).string("email", nullable=False).modify()
        conn.execute("PRAGMA foreign_keys=ON").close()
        assert conn.scalar("SELECT COUNT(*) FROM `#__posts`") == 1

    def test_failed_rebuild_rolls_back(self):
        conn = _mem()
        SchemaBuilder("#__t", conn).id().string("code").create()
        conn.insert("#__t", {"code": "a"})
        conn.insert("#__t", {"code": "a"})
        table = SchemaBuilder("#__t", conn).id().string("code").string("new", nullable=False)
        table.index("#__t_code", ["code"], unique=True)
        assert table.modify() is False
        assert table.last_error
        assert not conn.in_transaction
        assert "new" not in conn.describe("#__t", cache=False)["fields"]
        assert conn.scalar("SELECT COUNT(*) FROM `#__t`") == 2


class TestMySQLPlans:
    def _definition(self):
        builder = _users(_fake_conn("mysql"))
        builder.definition.columns["name"].nullable = True
        builder.definition.columns["name"].length = 255
        return builder

    def test_converged(self):
        live = LiveTable("#__users", dict(MYSQL_USERS), ["id"])
        assert get_schema_dialect("mysql").plan(self._definition().definition, live) == []

    def test_add_column_after_hint_is_single_statement(self):
        conn = _fake_conn("mysql", dict(MYSQL_USERS), ["id"])
        conn.execute.return_value = MagicMock()
        table = (
            SchemaBuilder("#__users", conn)
            .id().string("name").string("email", after="id")
        )
        assert table.modify()
        expected = "ALTER TABLE `#__users` ADD COLUMN `email` varchar(255) NULL AFTER `id`"
        assert table.statements == [expected]
        conn.execute.assert_called_once_with(expected)
        conn.begin.assert_not_called()

    def test_position_without_hint(self):
        live = LiveTable("#__users", dict(MYSQL_USERS), ["id"])
        definition = self._definition().string("email").definition
        assert get_schema_dialect("mysql").plan(definition, live) == [
            "ALTER TABLE `#__users` ADD COLUMN `email` varchar(255) NULL AFTER `name`",
        ]

    def test_new_first_column(self):
        live = LiveTable("#__t", {"name": _row("name", "varchar(255)")}, [])
        definition = (
            SchemaBuilder("#__t", _fake_conn("mysql")).string("code").string("name").definition
        )
        assert get_schema_dialect("mysql").plan(definition, live) == [
            "ALTER TABLE `#__t` ADD COLUMN `code` varchar(255) NULL FIRST",
        ]

    def test_modify_and_indexes(self):
        live = LiveTable(
            "#__users", dict(MYSQL_USERS), ["id"],
            {"old_idx": IndexSpec("old_idx", ["name"])},
        )
        definition = (
            SchemaBuilder("#__users", _fake_conn("mysql"))
            .id().string("name", 100, nullable=False).index("idx_name", ["name"], unique=True)
            .definition
        )
        assert get_schema_dialect("mysql").plan(definition, live) == [
            "ALTER TABLE `#__users` DROP INDEX `old_idx`",
            "ALTER TABLE `#__users` MODIFY COLUMN `name` varchar(100) NOT NULL",
            "ALTER TABLE `#__users` ADD UNIQUE INDEX `idx_name` (`name`)",
        ]

    def test_primary_key_change(self):
        live = LiveTable("#__users", dict(MYSQL_USERS), ["id"])
        definition = self._definition().definition
        definition.primary_key = ["id", "name"]
        statements = get_schema_dialect("mysql").plan(definition, live)
        assert statements[-1] == (
            "ALTER TABLE `#__users` DROP PRIMARY KEY, ADD PRIMARY KEY (`id`, `name`)"
        )

    def test_equivalent_spellings_converge(self):
        live = LiveTable("#__t", {
            "flag": _row("flag", "tinyint(1)", default="1"),
            "made": _row("made", "timestamp", default="CURRENT_TIMESTAMP", extra="DEFAULT_GENERATED"),
            "n": _row("n", "int", "NO", default="0"),
            "price": _row("price", "decimal(10,2)", default="0.00"),
        }, [])
        definition = (
            SchemaBuilder("#__t", _fake_conn("mysql"))
            .boolean("flag", default=True).timestamp("made")
            .int("n", nullable=False, default=0).decimal("price", default=0)
            .definition
        )
        assert get_schema_dialect("mysql").plan(definition, live) == []

    def test_create_statement(self):
        definition = _everything(_fake_conn("mysql")).definition
        [create] = get_schema_dialect("mysql").create_statements(definition, "utf8mb4")
        assert "`id` int NOT NULL AUTO_INCREMENT" in create
        assert "`active` tinyint(1) NULL DEFAULT 1" in create
        assert "`name` varchar(100) NULL DEFAULT 'x'" in create
        assert "PRIMARY KEY (`id`)" in create
        assert "UNIQUE KEY `idx_all_day` (`day`, `at`)" in create
        assert "KEY `idx_all_name` (`name`)" in create
        assert create.endswith("ENGINE=InnoDB DEFAULT CHARSET=utf8mb4")


class TestPostgreSQLPlans:
    def test_create_statements(self):
        definition = _everything(_fake_conn("postgresql")).definition
        statements = get_schema_dialect("postgresql").create_statements(definition)
        assert "`id` SERIAL NOT NULL" in statements[0]
        assert "`active` BOOLEAN DEFAULT TRUE" in statements[0]
        assert "`price` NUMERIC(8,2) DEFAULT 0" in statements[0]
        assert statements[1:] == [
            "CREATE INDEX `idx_all_name` ON `#__all` (`name`)",
            "CREATE UNIQUE INDEX `idx_all_day` ON `#__all` (`day`, `at`)",
        ]

    def test_alter_column(self):
        live = LiveTable("#__users", {
            "id": _row("id", "integer", "NO", extra="auto_increment"),
            "name": _row("name", "varchar(255)", default="anon"),
        }, ["id"])
        definition = (
            SchemaBuilder("#__users", _fake_conn("postgresql"))
            .id().string("name", 100, nullable=False).definition
        )
        assert get_schema_dialect("postgresql").plan(definition, live) == [
            "ALTER TABLE `#__users` ALTER COLUMN `name` TYPE VARCHAR(100) USING `name`::VARCHAR(100)",
            "ALTER TABLE `#__users` ALTER COLUMN `name` SET NOT NULL",
            "ALTER TABLE `#__users` ALTER COLUMN `name` DROP DEFAULT",
        ]

    def test_converged(self):
        live = LiveTable("#__users", {
            "id": _row("id", "integer", "NO", extra="auto_increment"),
            "ok": _row("ok", "boolean", default="true"),
            "made": _row("made", "timestamp", default="CURRENT_TIMESTAMP"),
        }, ["id"])
        definition = (
            SchemaBuilder("#__users", _fake_conn("postgresql"))
            .id().boolean("ok", default=True).timestamp("made").definition
        )
        assert get_schema_dialect("postgresql").plan(definition, live) == []

    def test_primary_key_change(self):
        live = LiveTable("#__t", {
            "a": _row("a", "integer", "NO"),
            "b": _row("b", "integer", "NO"),
        }, ["a"])
        definition = (
            SchemaBuilder("#__t", _fake_conn("postgresql"))
            .int("a", nullable=False).int("b", nullable=False).set_primary_key(["a", "b"])
            .definition
        )
        assert get_schema_dialect("postgresql").plan(definition, live) == [
            "ALTER TABLE `#__t` DROP CONSTRAINT `#__t_pkey`",
            "ALTER TABLE `#__t` ADD PRIMARY KEY (`a`, `b`)",
        ]


class TestNormalizeDefault:
    def test_equivalences(self):
        assert normalize_default(True) == normalize_default("1") == normalize_default("true")
        assert normalize_default(0) == normalize_default("0.00") == normalize_default("'0'")
        assert normalize_default("now()") == normalize_default("CURRENT_TIMESTAMP")
        assert normalize_default("NULL") is None
        assert normalize_default("abc") == "abc"
