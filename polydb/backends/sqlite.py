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

"""SQLite backend (standard-library ``sqlite3``).

The connection runs with ``isolation_level=None`` so the driver never opens
transactions behind our back: :meth:`Connection.begin` issues ``BEGIN``
explicitly and every other statement autocommits.  SQLite cursors are
forward-only; :class:`~polydb.cursor.ResultCursor` buffers them on the
first seek.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any

from polydb.connection import Connection
from polydb.dialects import SQLITE, replace_prefix
from polydb.statements import quote_name

logger = logging.getLogger(__name__)


def _default_value(expression: str | None) -> str | None:
    """Unquote a PRAGMA default ('abc' becomes abc); expressions stay as-is."""
    if expression and len(expression) >= 2 and expression[0] == expression[-1] == "'":
        return expression[1:-1].replace("''", "'")
    return expression


class SQLiteConnection(Connection):
    """Connection to a SQLite database file (or ``":memory:"``).

    ``config.options`` may carry ``wal_mode`` (default ``True``),
    ``foreign_keys`` (default ``True``) and any ``sqlite3.connect()``
    keyword such as ``timeout``.
    """

    DIALECT = SQLITE

    def _open(self) -> sqlite3.Connection:
        options = dict(self.config.options)
        wal_mode = options.pop("wal_mode", True)
        foreign_keys = options.pop("foreign_keys", True)
        options.setdefault("timeout", 5.0)

        path = self.config.database
        if path != ":memory:" and not path.startswith("file:"):
            path = str(Path(path).expanduser())
            Path(path).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            path, isolation_level=None, check_same_thread=False, **options,
        )
        if wal_mode and path != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL")
            logger.debug("SQLite WAL journal mode enabled: %s", path)
        if foreign_keys:
            conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @property
    def _statement_errors(self) -> tuple[type[BaseException], ...]:
        return (sqlite3.Error,)

    # --- introspection ------------------------------------------------------

    def _master_names(self, kind: str) -> list[str]:
        rows = self.get_results(
            "SELECT name FROM sqlite_master WHERE type = ? "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name",
            [kind],
        )
        return [r["name"] for r in rows or []]

    def _fetch_tables(self) -> list[str]:
        return self._master_names("table")

    def _fetch_views(self) -> list[str]:
        return self._master_names("view")

    def _master_sql(self, kind: str, name: str) -> str | None:
        sql = self.scalar(
            "SELECT sql FROM sqlite_master WHERE type = ? AND name = ?",
            [kind, replace_prefix(name, self.prefix)],
        )
        if sql is None and not self.error:
            self.error = True
            self.last_error = f"{kind.capitalize()} {replace_prefix(name, self.prefix)} does not exist"
        return sql

    def view_definition(self, view: str) -> str | None:
        return self._master_sql("view", view)

    def show_create_table(self, table: str) -> str | None:
        return self._master_sql("table", table)

    def _describe_rows(self, table: str) -> tuple[list[dict[str, Any]], list[str]] | None:
        info = self.get_results(f"PRAGMA table_info({quote_name(table)})")
        if info is None:
            return None

        ranked = sorted((r for r in info if r["pk"]), key=lambda r: r["pk"])
        primary_key = [r["name"] for r in ranked]

        rows = []
        for r in info:
            is_pk = r["name"] in primary_key
            # A lone INTEGER PRIMARY KEY aliases the rowid.
            rowid_alias = (
                is_pk and len(primary_key) == 1 and (r["type"] or "").upper() == "INTEGER"
            )
            rows.append({
                "Field": r["name"],
                "Type": (r["type"] or "").upper(),
                "Null": "NO" if (r["notnull"] or is_pk) else "YES",
                "Key": "PRI" if is_pk else "",
                "Default": _default_value(r["dflt_value"]),
                "Extra": "auto_increment" if rowid_alias else "",
            })
        return rows, primary_key

    def list_indexes(self, table: str) -> list[dict[str, Any]] | None:
        """Explicitly created indexes (SQLite's automatic ones are skipped)."""
        listing = self.get_results(f"PRAGMA index_list({quote_name(table)})")
        if listing is None:
            return None
        indexes = []
        for entry in listing:
            name = entry["name"]
            if name.startswith("sqlite_autoindex_") or entry.get("origin") == "pk":
                continue
            columns = self.get_results(f"PRAGMA index_info({quote_name(name)})")
            if columns is None:
                return None
            indexes.append({
                "name": name,
                "columns": [c["name"] for c in sorted(columns, key=lambda c: c["seqno"])],
                "unique": bool(entry["unique"]),
            })
        return indexes

    # --- maintenance --------------------------------------------------------

    def _truncate_sql(self, table: str) -> list[tuple[str, list[Any]]]:
        statements = [(f"DELETE FROM {quote_name(table)}", [])]
        has_sequence = self.scalar(
            "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_sequence'"
        )
        if has_sequence:
            statements.append(
                ("DELETE FROM sqlite_sequence WHERE name = ?", [replace_prefix(table, self.prefix)])
            )
        return statements
