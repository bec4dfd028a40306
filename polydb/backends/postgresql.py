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

"""PostgreSQL backend (psycopg2, optional dependency).

Introspection reads ``information_schema`` and ``pg_index`` for the
current schema.  Inserts into a table with a single-column primary key
append ``RETURNING <pk>`` so :meth:`Connection.insert` can return the new
id; PostgreSQL has no ``lastrowid``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from polydb.connection import Connection
from polydb.dialects import POSTGRESQL, replace_prefix
from polydb.statements import quote_name

logger = logging.getLogger(__name__)

# Type OIDs from pg_type for the column types this library emits.
_TYPE_NAMES = {
    16: "BOOL",
    17: "BYTEA",
    20: "INT8",
    21: "INT2",
    23: "INT4",
    25: "TEXT",
    114: "JSON",
    700: "FLOAT4",
    701: "FLOAT8",
    1042: "BPCHAR",
    1043: "VARCHAR",
    1082: "DATE",
    1083: "TIME",
    1114: "TIMESTAMP",
    1184: "TIMESTAMPTZ",
    1700: "NUMERIC",
    2950: "UUID",
    3802: "JSONB",
}

_SHORT_TYPES = {
    "character varying": "varchar",
    "character": "char",
    "timestamp without time zone": "timestamp",
    "timestamp with time zone": "timestamptz",
    "time without time zone": "time",
    "time with time zone": "timetz",
}

_CAST_SUFFIX = re.compile(r"::[\w\s\"\[\]]+$")

_CHARSETS = {"utf8mb4": "UTF8", "utf8": "UTF8", "latin1": "LATIN1"}


def _driver() -> Any:
    """Import psycopg2 on demand."""
    try:
        import psycopg2
    except ImportError:
        raise ImportError(
            "psycopg2 not installed. Install with: pip install polydb[postgresql]"
        )
    return psycopg2


def _column_type(row: Mapping[str, Any]) -> str:
    base = _SHORT_TYPES.get(row["data_type"], row["data_type"])
    if row["character_maximum_length"]:
        return f"{base}({row['character_maximum_length']})"
    if base == "numeric" and row["numeric_precision"] is not None:
        return f"numeric({row['numeric_precision']},{row['numeric_scale'] or 0})"
    return base


def _column_default(expression: str | None) -> str | None:
    """``'abc'::character varying`` → ``abc``; other expressions unchanged."""
    if expression is None:
        return None
    value = expression.strip()
    while _CAST_SUFFIX.search(value):
        value = _CAST_SUFFIX.sub("", value).strip()
        if value.startswith("(") and value.endswith(")"):
            value = value[1:-1].strip()
    if len(value) >= 2 and value[0] == value[-1] == "'":
        return value[1:-1].replace("''", "'")
    return value


class PostgreSQLConnection(Connection):
    """Connection to a PostgreSQL server.

    ``config.options`` is passed to ``psycopg2.connect()`` (for example
    ``connect_timeout``, ``sslmode`` or ``options``).
    """

    DIALECT = POSTGRESQL
    PARAMSTYLE = "format"
    SEEKABLE_CURSORS = True

    def _open(self) -> Any:
        psycopg2 = _driver()
        conn = psycopg2.connect(
            host=self.config.host,
            port=self.config.port,
            dbname=self.config.database,
            user=self.config.user,
            password=self.config.password,
            **self.config.options,
        )
        conn.autocommit = True
        encoding = _CHARSETS.get(self.config.charset.lower(), self.config.charset)
        conn.set_client_encoding(encoding)
        if self.config.timezone:
            with conn.cursor() as cur:
                cur.execute("SET TIME ZONE %s", (self.config.timezone,))
            logger.debug("PostgreSQL session time zone set to %s", self.config.timezone)
        return conn

    @property
    def _statement_errors(self) -> tuple[type[BaseException], ...]:
        return (_driver().Error,)

    def _type_name(self, type_code: Any) -> str:
        return _TYPE_NAMES.get(type_code, str(type_code))

    def _insert_sql(self, table: str, fields: Mapping[str, Any]) -> tuple[str, list[Any]]:
        sql, params = super()._insert_sql(table, fields)
        info = self.describe(table)
        if info and len(info["keys"]) == 1:
            sql += f" RETURNING {quote_name(info['keys'][0])}"
        return sql, params

    def _insert_id(self, native: Any) -> Any:
        if not native.description:
            return None
        row = native.fetchone()
        return row[0] if row else None

    def _truncate_sql(self, table: str) -> list[tuple[str, list[Any]]]:
        return [(f"TRUNCATE TABLE {quote_name(table)} RESTART IDENTITY", [])]

    # --- introspection ------------------------------------------------------

    def _schema_objects(self, table_type: str) -> list[str]:
        rows = self.get_results(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = current_schema() AND table_type = ? "
            "ORDER BY table_name",
            [table_type],
        )
        return [r["table_name"] for r in rows or []]

    def _fetch_tables(self) -> list[str]:
        return self._schema_objects("BASE TABLE")

    def _fetch_views(self) -> list[str]:
        return self._schema_objects("VIEW")

    def view_definition(self, view: str) -> str | None:
        view = replace_prefix(view, self.prefix)
        if view not in self.list_views(cache=False):
            self.error = True
            self.last_error = f"View {view} does not exist"
            return None
        return self.scalar("SELECT pg_get_viewdef(quote_ident(?)::regclass, true)", [view])

    def show_create_table(self, table: str) -> str | None:
        """Reconstructed ``CREATE TABLE`` (PostgreSQL has no native equivalent)."""
        info = self.describe(table, cache=False)
        if info is None:
            return None
        table = replace_prefix(table, self.prefix)
        lines = []
        for column in info["struct"].values():
            line = f'  "{column["Field"]}" {column["Type"]}'
            if column["Null"] == "NO":
                line += " NOT NULL"
            if column["Default"] is not None:
                line += f" DEFAULT {column['Default']}"
            lines.append(line)
        if info["keys"]:
            lines.append("  PRIMARY KEY (" + ", ".join(f'"{k}"' for k in info["keys"]) + ")")
        return f'CREATE TABLE "{table}" (\n' + ",\n".join(lines) + "\n)"

    def _describe_rows(self, table: str) -> tuple[list[dict[str, Any]], list[str]] | None:
        columns = self.get_results(
            "SELECT column_name, data_type, character_maximum_length, "
            "numeric_precision, numeric_scale, is_nullable, column_default, is_identity "
            "FROM information_schema.columns "
            "WHERE table_schema = current_schema() AND table_name = ? "
            "ORDER BY ordinal_position",
            [table],
        )
        if not columns:
            return None if columns is None else ([], [])

        keys = self.get_results(
            "SELECT a.attname FROM pg_index i "
            "JOIN pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = ANY(i.indkey) "
            "WHERE i.indrelid = quote_ident(?)::regclass AND i.indisprimary "
            "ORDER BY array_position(i.indkey::int2[], a.attnum)",
            [table],
        )
        if keys is None:
            return None
        primary_key = [k["attname"] for k in keys]

        rows = []
        for c in columns:
            default = c["column_default"] or ""
            serial = default.startswith("nextval(") or c["is_identity"] == "YES"
            rows.append({
                "Field": c["column_name"],
                "Type": _column_type(c),
                "Null": c["is_nullable"],
                "Key": "PRI" if c["column_name"] in primary_key else "",
                "Default": None if serial else _column_default(c["column_default"]),
                "Extra": "auto_increment" if serial else "",
            })
        return rows, primary_key

    def list_indexes(self, table: str) -> list[dict[str, Any]] | None:
        table = replace_prefix(table, self.prefix)
        rows = self.get_results(
            "SELECT ic.relname AS index_name, ix.indisunique AS is_unique, "
            "a.attname AS column_name "
            "FROM pg_index ix "
            "JOIN pg_class ic ON ic.oid = ix.indexrelid "
            "JOIN pg_attribute a ON a.attrelid = ix.indrelid AND a.attnum = ANY(ix.indkey) "
            "WHERE ix.indrelid = quote_ident(?)::regclass AND NOT ix.indisprimary "
            "ORDER BY ic.relname, array_position(ix.indkey::int2[], a.attnum)",
            [table],
        )
        if rows is None:
            return None
        indexes: dict[str, dict[str, Any]] = {}
        for r in rows:
            entry = indexes.setdefault(
                r["index_name"],
                {"name": r["index_name"], "columns": [], "unique": bool(r["is_unique"])},
            )
            entry["columns"].append(r["column_name"])
        return list(indexes.values())
