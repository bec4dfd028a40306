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

"""Per-dialect DDL rendering and schema diffing.

Each :class:`SchemaDialect` turns a :class:`TableDefinition` into CREATE
statements and, given the :class:`LiveTable` the database reports, plans
the statements that bring the live table in line with the definition.
Planning is pure: nothing here talks to a database, so plans can be
inspected (or tested) without executing them.

Statements are generic SQL (backtick identifiers, ``#__`` prefix token);
the connection converts them for its backend when they run.

Columns present in the live table but absent from the definition are
never dropped.  Narrowing a column (shorter ``varchar``, smaller integer
type) is planned like any other change: guarding against data loss is the
caller's job.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from polydb.dialects import MYSQL, POSTGRESQL, SQLITE, normalize_dialect
from polydb.schema.model import ColumnSpec, IndexSpec, LiveTable, TableDefinition
from polydb.statements import quote_name

_SQL_KEYWORDS = {"CURRENT_TIMESTAMP", "CURRENT_DATE", "CURRENT_TIME", "NULL"}
_NOW_SPELLINGS = {
    "current_timestamp",
    "current_timestamp()",
    "now()",
    "localtimestamp",
    "datetime('now')",
}
_CHARSET = re.compile(r"^[A-Za-z0-9_]+$")


def normalize_default(value: Any) -> str | None:
    """Bring a declared or introspected default to a comparable form."""
    if value is None:
        return None
    if isinstance(value, bool):
        value = int(value)
    text = str(value).strip()
    if len(text) >= 2 and text[0] == text[-1] == "'":
        text = text[1:-1].replace("''", "'")
    lowered = text.lower()
    if lowered in _NOW_SPELLINGS:
        return "current_timestamp"
    if lowered == "null":
        return None
    if lowered in ("true", "false"):
        text = "1" if lowered == "true" else "0"
    try:
        return repr(float(text))
    except ValueError:
        return text


@dataclass
class SchemaDiff:
    """Differences between a definition and its live table."""

    table: str
    added: list[ColumnSpec] = field(default_factory=list)
    changed: dict[str, dict[str, Any]] = field(default_factory=dict)
    primary_key: tuple[list[str], list[str]] | None = None
    dropped_indexes: list[str] = field(default_factory=list)
    added_indexes: list[IndexSpec] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.added
            or self.changed
            or self.primary_key
            or self.dropped_indexes
            or self.added_indexes
        )

    def summary(self) -> dict[str, Any]:
        return {
            "action": "modify",
            "table": self.table,
            "added": [c.name for c in self.added],
            "changed": {
                name: {"old": dict(change["old"]), "new": change["new"]}
                for name, change in self.changed.items()
            },
            "primary_key": (
                {"old": self.primary_key[0], "new": self.primary_key[1]}
                if self.primary_key else None
            ),
            "dropped_indexes": list(self.dropped_indexes),
            "added_indexes": [i.name for i in self.added_indexes],
        }


class SchemaDialect(ABC):
    """DDL rendering and planning for one backend."""

    name: str
    inline_indexes = False
    transactional_ddl = False

    # --- rendering ----------------------------------------------------------

    @abstractmethod
    def column_type(self, column: ColumnSpec) -> str:
        """Backend type for *column* as used in CREATE TABLE."""

    @abstractmethod
    def normalize_type(self, type_name: str) -> str:
        """Comparable form of a declared or introspected type."""

    def default_sql(self, value: Any) -> str:
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, (int, float)):
            return str(value)
        text = str(value)
        if text.upper() in _SQL_KEYWORDS:
            return text.upper()
        return "'" + text.replace("'", "''") + "'"

    def column_sql(self, column: ColumnSpec, table: TableDefinition) -> str:
        sql = f"{quote_name(column.name)} {self.column_type(column)}"
        sql += "" if table.is_nullable(column) else " NOT NULL"
        if column.default is not None and not column.auto_increment:
            sql += f" DEFAULT {self.default_sql(column.default)}"
        return sql

    def primary_key_clause(self, table: TableDefinition) -> str | None:
        if not table.primary_key:
            return None
        return f"PRIMARY KEY ({_column_list(table.primary_key)})"

    def index_sql(self, index: IndexSpec, table_name: str) -> str:
        kind = "CREATE UNIQUE INDEX" if index.unique else "CREATE INDEX"
        return (
            f"{kind} {quote_name(index.name)} ON {quote_name(table_name)} "
            f"({_column_list(index.columns)})"
        )

    def inline_index_sql(self, index: IndexSpec) -> str:
        kind = "UNIQUE KEY" if index.unique else "KEY"
        return f"{kind} {quote_name(index.name)} ({_column_list(index.columns)})"

    def table_options(self, charset: str | None) -> str:
        return ""

    def create_statements(self, table: TableDefinition, charset: str | None = None) -> list[str]:
        """CREATE TABLE (plus CREATE INDEX where indexes are not inline)."""
        lines = [self.column_sql(c, table) for c in table.columns.values()]
        primary_key = self.primary_key_clause(table)
        if primary_key:
            lines.append(primary_key)
        if self.inline_indexes:
            lines.extend(self.inline_index_sql(i) for i in table.indexes.values())

        create = (
            f"CREATE TABLE {quote_name(table.name)} (\n  "
            + ",\n  ".join(lines)
            + "\n)"
            + self.table_options(charset)
        )
        statements = [create]
        if not self.inline_indexes:
            statements.extend(self.index_sql(i, table.name) for i in table.indexes.values())
        return statements

    # --- diffing ------------------------------------------------------------

    def auto_increment_matches(self, column: ColumnSpec, row: dict[str, Any]) -> bool:
        return True

    def column_matches(
        self, column: ColumnSpec, row: dict[str, Any], table: TableDefinition,
    ) -> bool:
        """Whether the live *row* already satisfies the declared *column*."""
        if self.normalize_type(self.column_type(column)) != self.normalize_type(row["Type"] or ""):
            return False
        if table.is_nullable(column) != (row["Null"] == "YES"):
            return False
        if not column.auto_increment and (
            normalize_default(column.default) != normalize_default(row["Default"])
        ):
            return False
        return self.auto_increment_matches(column, row)

    def diff(self, table: TableDefinition, live: LiveTable) -> SchemaDiff:
        """Compare by column name; declaration order does not matter."""
        diff = SchemaDiff(table.name)
        for name, column in table.columns.items():
            row = live.columns.get(name)
            if row is None:
                diff.added.append(column)
            elif not self.column_matches(column, row, table):
                diff.changed[name] = {"old": row, "new": column}

        if table.primary_key != live.primary_key:
            diff.primary_key = (list(live.primary_key), list(table.primary_key))

        for name, index in live.indexes.items():
            wanted = table.indexes.get(name)
            if wanted is None or not wanted.same_as(index):
                diff.dropped_indexes.append(name)
        for name, index in table.indexes.items():
            current = live.indexes.get(name)
            if current is None or not current.same_as(index):
                diff.added_indexes.append(index)
        return diff

    @abstractmethod
    def alter_statements(
        self, table: TableDefinition, live: LiveTable, diff: SchemaDiff,
    ) -> list[str]:
        """Statements applying a non-empty *diff*."""

    def plan(self, table: TableDefinition, live: LiveTable) -> list[str]:
        """Statements that bring *live* in line with *table* (empty if converged)."""
        diff = self.diff(table, live)
        if diff.is_empty():
            return []
        return self.alter_statements(table, live, diff)


def _column_list(columns: list[str]) -> str:
    return ", ".join(quote_name(c) for c in columns)


# ---------------------------------------------------------------------------
# MySQL
# ---------------------------------------------------------------------------

_INT_DISPLAY_WIDTH = re.compile(r"^(tinyint|smallint|mediumint|int|integer|bigint)\(\d+\)")


class MySQLSchema(SchemaDialect):
    name = MYSQL
    inline_indexes = True

    def column_type(self, column: ColumnSpec) -> str:
        if column.type == "boolean":
            return "tinyint(1)"
        if column.type == "varchar":
            return f"varchar({column.length or 255})"
        if column.type == "decimal":
            return f"decimal({column.precision or 10},{column.scale or 0})"
        return column.type

    def normalize_type(self, type_name: str) -> str:
        text = " ".join(type_name.lower().split())
        text = _INT_DISPLAY_WIDTH.sub(r"\1", text)
        if text.startswith("integer"):
            text = "int" + text[len("integer"):]
        if text in ("boolean", "bool"):
            text = "tinyint"
        return text

    def column_sql(self, column: ColumnSpec, table: TableDefinition) -> str:
        sql = f"{quote_name(column.name)} {self.column_type(column)}"
        sql += " NULL" if table.is_nullable(column) else " NOT NULL"
        if column.default is not None and not column.auto_increment:
            sql += f" DEFAULT {self.default_sql(column.default)}"
        if column.auto_increment:
            sql += " AUTO_INCREMENT"
        return sql

    def table_options(self, charset: str | None) -> str:
        if charset and _CHARSET.match(charset):
            return f" ENGINE=InnoDB DEFAULT CHARSET={charset}"
        return " ENGINE=InnoDB"

    def auto_increment_matches(self, column: ColumnSpec, row: dict[str, Any]) -> bool:
        return column.auto_increment == ("auto_increment" in (row["Extra"] or "").lower())

    @staticmethod
    def _position(column: ColumnSpec, order: list[str], present: list[str]) -> str:
        """``AFTER x`` from the hint, else after the nearest existing predecessor."""
        if column.after and column.after in present:
            return f" AFTER {quote_name(column.after)}"
        for previous in reversed(order[:order.index(column.name)]):
            if previous in present:
                return f" AFTER {quote_name(previous)}"
        return " FIRST"

    def alter_statements(
        self, table: TableDefinition, live: LiveTable, diff: SchemaDiff,
    ) -> list[str]:
        alter = f"ALTER TABLE {quote_name(table.name)}"
        statements = [f"{alter} DROP INDEX {quote_name(name)}" for name in diff.dropped_indexes]

        new_key = diff.primary_key[1] if diff.primary_key else []
        if diff.primary_key and live.primary_key and not new_key:
            statements.append(f"{alter} DROP PRIMARY KEY")

        order = list(table.columns)
        present = list(live.columns)
        key_added_inline = False
        for column in diff.added:
            sql = f"{alter} ADD COLUMN {self.column_sql(column, table)}"
            # An AUTO_INCREMENT column must be a key in the same statement.
            if column.auto_increment and new_key == [column.name] and not live.primary_key:
                sql += " PRIMARY KEY"
                key_added_inline = True
            statements.append(sql + self._position(column, order, present))
            present.append(column.name)

        for change in diff.changed.values():
            statements.append(f"{alter} MODIFY COLUMN {self.column_sql(change['new'], table)}")

        if new_key and not key_added_inline:
            columns = _column_list(new_key)
            if live.primary_key:
                statements.append(f"{alter} DROP PRIMARY KEY, ADD PRIMARY KEY ({columns})")
            else:
                statements.append(f"{alter} ADD PRIMARY KEY ({columns})")

        for index in diff.added_indexes:
            kind = "UNIQUE INDEX" if index.unique else "INDEX"
            statements.append(
                f"{alter} ADD {kind} {quote_name(index.name)} ({_column_list(index.columns)})"
            )
        return statements


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------


def sqlite_affinity(type_name: str) -> str:
    """Storage class a declared SQLite type maps to."""
    text = type_name.upper()
    if "INT" in text or text in ("BOOLEAN", "BOOL"):
        return "INTEGER"
    if any(word in text for word in ("CHAR", "CLOB", "TEXT", "DATE", "TIME")):
        return "TEXT"
    if "BLOB" in text:
        return "BLOB"
    if any(word in text for word in ("REAL", "FLOA", "DOUB", "DEC", "NUM")):
        return "REAL"
    return "TEXT"


_ZERO_VALUES = {"INTEGER": "0", "REAL": "0.0", "TEXT": "''", "BLOB": "NULL"}


class SQLiteSchema(SchemaDialect):
    """SQLite cannot alter or reposition columns.

    Simple additions use ``ADD COLUMN``; anything else rebuilds the table:
    create a replacement, copy the rows, drop the original and rename the
    replacement.  Live columns missing from the definition are carried
    over with their data.

    Dropping the original runs with foreign keys enforced (connections
    open with ``PRAGMA foreign_keys=ON`` unless ``options`` says
    ``foreign_keys=False``), so ``ON DELETE CASCADE`` rows in child tables
    are deleted and ``SET NULL`` keys are cleared.  Callers rebuilding a
    referenced table must run ``PRAGMA foreign_keys=OFF`` before
    :meth:`SchemaBuilder.modify` (outside any transaction, where SQLite
    ignores it) and switch it back on afterwards.
    """

    name = SQLITE
    transactional_ddl = True

    def column_type(self, column: ColumnSpec) -> str:
        return sqlite_affinity(column.type)

    def normalize_type(self, type_name: str) -> str:
        return sqlite_affinity(type_name)

    @staticmethod
    def _rowid_key(column: ColumnSpec, table: TableDefinition) -> bool:
        return column.auto_increment and table.primary_key == [column.name]

    def column_sql(self, column: ColumnSpec, table: TableDefinition) -> str:
        if self._rowid_key(column, table):
            return f"{quote_name(column.name)} INTEGER PRIMARY KEY AUTOINCREMENT"
        return super().column_sql(column, table)

    def primary_key_clause(self, table: TableDefinition) -> str | None:
        if any(self._rowid_key(c, table) for c in table.columns.values()):
            return None
        return super().primary_key_clause(table)

    def _can_add_in_place(self, column: ColumnSpec, table: TableDefinition) -> bool:
        if column.name in table.primary_key or column.auto_increment:
            return False
        if isinstance(column.default, str) and column.default.upper() in _SQL_KEYWORDS - {"NULL"}:
            return False
        return table.is_nullable(column) or column.default is not None

    def _fill_value(self, column: ColumnSpec, table: TableDefinition) -> str:
        """Value for a new column when existing rows are copied over."""
        if column.auto_increment:
            return "NULL"
        if column.default is not None:
            return self.default_sql(column.default)
        if table.is_nullable(column):
            return "NULL"
        return _ZERO_VALUES[self.column_type(column)]

    def _live_column_sql(self, row: dict[str, Any]) -> str:
        sql = f"{quote_name(row['Field'])} {row['Type'] or ''}".rstrip()
        if row["Null"] == "NO":
            sql += " NOT NULL"
        if row["Default"] is not None:
            sql += f" DEFAULT {self.default_sql(row['Default'])}"
        return sql

    def rebuild_statements(self, table: TableDefinition, live: LiveTable) -> list[str]:
        temp = f"{table.name}__rebuild"
        live_only = [name for name in live.columns if name not in table.columns]

        lines = [self.column_sql(c, table) for c in table.columns.values()]
        lines.extend(self._live_column_sql(live.columns[name]) for name in live_only)
        primary_key = self.primary_key_clause(table)
        if primary_key:
            lines.append(primary_key)
        create = f"CREATE TABLE {quote_name(temp)} (\n  " + ",\n  ".join(lines) + "\n)"

        targets, sources = [], []
        for column in table.columns.values():
            row = live.columns.get(column.name)
            targets.append(quote_name(column.name))
            if row is None:
                sources.append(self._fill_value(column, table))
            elif self.normalize_type(row["Type"] or "") != self.column_type(column):
                sources.append(f"CAST({quote_name(column.name)} AS {self.column_type(column)})")
            else:
                sources.append(quote_name(column.name))
        for name in live_only:
            targets.append(quote_name(name))
            sources.append(quote_name(name))
        copy = (
            f"INSERT INTO {quote_name(temp)} ({', '.join(targets)}) "
            f"SELECT {', '.join(sources)} FROM {quote_name(table.name)}"
        )

        return [
            create,
            copy,
            f"DROP TABLE {quote_name(table.name)}",
            f"ALTER TABLE {quote_name(temp)} RENAME TO {quote_name(table.name)}",
        ] + [self.index_sql(i, table.name) for i in table.indexes.values()]

    def alter_statements(
        self, table: TableDefinition, live: LiveTable, diff: SchemaDiff,
    ) -> list[str]:
        if (
            diff.changed
            or diff.primary_key
            or not all(self._can_add_in_place(c, table) for c in diff.added)
        ):
            return self.rebuild_statements(table, live)

        statements = [f"DROP INDEX {quote_name(name)}" for name in diff.dropped_indexes]
        statements.extend(
            f"ALTER TABLE {quote_name(table.name)} ADD COLUMN {self.column_sql(c, table)}"
            for c in diff.added
        )
        statements.extend(self.index_sql(i, table.name) for i in diff.added_indexes)
        return statements


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------

_PG_TYPE_ALIASES = {
    "serial": "integer",
    "serial4": "integer",
    "int": "integer",
    "int4": "integer",
    "bigserial": "bigint",
    "serial8": "bigint",
    "int8": "bigint",
    "smallserial": "smallint",
    "int2": "smallint",
    "bool": "boolean",
    "character varying": "varchar",
    "decimal": "numeric",
    "timestamp without time zone": "timestamp",
    "time without time zone": "time",
}

_PG_BASE_TYPES = {
    "int": "INTEGER",
    "bigint": "BIGINT",
    "tinyint": "SMALLINT",
    "boolean": "BOOLEAN",
    "text": "TEXT",
    "longtext": "TEXT",
    "datetime": "TIMESTAMP",
    "timestamp": "TIMESTAMP",
    "date": "DATE",
    "time": "TIME",
}


class PostgreSQLSchema(SchemaDialect):
    name = POSTGRESQL
    transactional_ddl = True

    def base_type(self, column: ColumnSpec) -> str:
        if column.type == "varchar":
            return f"VARCHAR({column.length or 255})"
        if column.type == "decimal":
            return f"NUMERIC({column.precision or 10},{column.scale or 0})"
        return _PG_BASE_TYPES.get(column.type, column.type.upper())

    def column_type(self, column: ColumnSpec) -> str:
        if column.auto_increment and column.type in ("int", "bigint"):
            return "BIGSERIAL" if column.type == "bigint" else "SERIAL"
        return self.base_type(column)

    def normalize_type(self, type_name: str) -> str:
        text = " ".join(type_name.lower().split())
        base, _, rest = text.partition("(")
        base = _PG_TYPE_ALIASES.get(base.strip(), base.strip())
        return f"{base}({rest}" if rest else base

    def default_sql(self, value: Any) -> str:
        if isinstance(value, bool):
            return "TRUE" if value else "FALSE"
        return super().default_sql(value)

    def alter_statements(
        self, table: TableDefinition, live: LiveTable, diff: SchemaDiff,
    ) -> list[str]:
        alter = f"ALTER TABLE {quote_name(table.name)}"
        statements = [f"DROP INDEX {quote_name(name)}" for name in diff.dropped_indexes]

        if diff.primary_key and live.primary_key:
            statements.append(f"{alter} DROP CONSTRAINT {quote_name(table.name + '_pkey')}")

        statements.extend(
            f"{alter} ADD COLUMN {self.column_sql(c, table)}" for c in diff.added
        )

        for name, change in diff.changed.items():
            old, new = change["old"], change["new"]
            column = quote_name(name)
            if self.normalize_type(old["Type"] or "") != self.normalize_type(self.column_type(new)):
                target = self.base_type(new)
                statements.append(
                    f"{alter} ALTER COLUMN {column} TYPE {target} USING {column}::{target}"
                )
            nullable = table.is_nullable(new)
            if nullable != (old["Null"] == "YES"):
                action = "DROP NOT NULL" if nullable else "SET NOT NULL"
                statements.append(f"{alter} ALTER COLUMN {column} {action}")
            if not new.auto_increment and (
                normalize_default(new.default) != normalize_default(old["Default"])
            ):
                if new.default is None:
                    statements.append(f"{alter} ALTER COLUMN {column} DROP DEFAULT")
                else:
                    statements.append(
                        f"{alter} ALTER COLUMN {column} SET DEFAULT {self.default_sql(new.default)}"
                    )

        if diff.primary_key and diff.primary_key[1]:
            statements.append(f"{alter} ADD PRIMARY KEY ({_column_list(diff.primary_key[1])})")

        statements.extend(self.index_sql(i, table.name) for i in diff.added_indexes)
        return statements


_DIALECTS: dict[str, SchemaDialect] = {
    MYSQL: MySQLSchema(),
    SQLITE: SQLiteSchema(),
    POSTGRESQL: PostgreSQLSchema(),
}


def get_schema_dialect(name: str) -> SchemaDialect:
    """Return the schema renderer for dialect *name*."""
    return _DIALECTS[normalize_dialect(name)]
