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

"""MySQL / MariaDB backend (PyMySQL, optional dependency).

PyMySQL's default cursor buffers the whole result client-side, so
results seek natively and ``rowcount`` is exact.  The connection runs in
autocommit mode with the ``FOUND_ROWS`` client flag: ``affected_rows``
then counts rows *matched* by an UPDATE, which is what
:meth:`Connection.upsert` relies on.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from polydb.connection import Connection
from polydb.dialects import MYSQL
from polydb.statements import quote_name

logger = logging.getLogger(__name__)


def _driver() -> Any:
    """Import PyMySQL on demand."""
    try:
        import pymysql
    except ImportError:
        raise ImportError(
            "PyMySQL not installed. Install with: pip install polydb[mysql]"
        )
    return pymysql


def _field_type_names() -> dict[int, str]:
    field_type = _driver().constants.FIELD_TYPE
    names: dict[int, str] = {}
    for name in dir(field_type):
        # CHAR and INTERVAL alias TINY and ENUM
        if name.isupper() and name not in ("CHAR", "INTERVAL"):
            names.setdefault(getattr(field_type, name), name)
    return names


class MySQLConnection(Connection):
    """Connection to a MySQL-compatible server.

    ``config.options`` is passed to ``pymysql.connect()`` (for example
    ``connect_timeout``, ``read_timeout`` or ``ssl``).
    """

    DIALECT = MYSQL
    PARAMSTYLE = "format"
    SEEKABLE_CURSORS = True
    SUPPORTS_UPDATE_LIMIT = True
    BEGIN_SQL = "START TRANSACTION"

    _type_names: dict[int, str] | None = None

    def _open(self) -> Any:
        pymysql = _driver()
        conn = pymysql.connect(
            host=self.config.host,
            port=self.config.port,
            user=self.config.user,
            password=self.config.password,
            database=self.config.database,
            charset=self.config.charset,
            autocommit=True,
            client_flag=pymysql.constants.CLIENT.FOUND_ROWS,
            **self.config.options,
        )
        if self.config.timezone:
            with conn.cursor() as cur:
                cur.execute("SET time_zone = %s", (self.config.timezone,))
            logger.debug("MySQL session time zone set to %s", self.config.timezone)
        return conn

    @property
    def _statement_errors(self) -> tuple[type[BaseException], ...]:
        return (_driver().MySQLError,)

    def _type_name(self, type_code: Any) -> str:
        if MySQLConnection._type_names is None:
            MySQLConnection._type_names = _field_type_names()
        return MySQLConnection._type_names.get(type_code, str(type_code))

    def _insert_sql(self, table: str, fields: Mapping[str, Any]) -> tuple[str, list[Any]]:
        if not fields:
            return f"INSERT INTO {quote_name(table)} () VALUES ()", []
        return super()._insert_sql(table, fields)

    def _truncate_sql(self, table: str) -> list[tuple[str, list[Any]]]:
        return [(f"TRUNCATE TABLE {quote_name(table)}", [])]

    # --- introspection ------------------------------------------------------

    def _full_tables(self, table_type: str) -> list[str]:
        rows = self.get_results(
            "SHOW FULL TABLES WHERE Table_type = ?", [table_type],
        )
        return [next(iter(r.values())) for r in rows or []]

    def _fetch_tables(self) -> list[str]:
        return self._full_tables("BASE TABLE")

    def _fetch_views(self) -> list[str]:
        return self._full_tables("VIEW")

    def _show_create(self, kind: str, name: str, column: str) -> str | None:
        row = self.row(f"SHOW CREATE {kind} {quote_name(name)}")
        if row is None:
            return None
        return row.get(column)

    def view_definition(self, view: str) -> str | None:
        return self._show_create("VIEW", view, "Create View")

    def show_create_table(self, table: str) -> str | None:
        return self._show_create("TABLE", table, "Create Table")

    def _index_rows(self, table: str) -> list[dict[str, Any]] | None:
        rows = self.get_results(f"SHOW INDEX FROM {quote_name(table)}")
        if rows is None:
            return None
        return sorted(rows, key=lambda r: (r["Key_name"], r["Seq_in_index"]))

    def _describe_rows(self, table: str) -> tuple[list[dict[str, Any]], list[str]] | None:
        # SHOW COLUMNS fails on a missing table; report that as "no rows".
        if table not in self.list_tables(cache=False):
            return [], []
        columns = self.get_results(f"SHOW FULL COLUMNS FROM {quote_name(table)}")
        index_rows = self._index_rows(table)
        if columns is None or index_rows is None:
            return None

        primary_key = [r["Column_name"] for r in index_rows if r["Key_name"] == "PRIMARY"]
        rows = [
            {
                "Field": c["Field"],
                "Type": c["Type"],
                "Null": c["Null"],
                "Key": c["Key"],
                "Default": c["Default"],
                "Extra": c["Extra"],
            }
            for c in columns
        ]
        return rows, primary_key

    def list_indexes(self, table: str) -> list[dict[str, Any]] | None:
        index_rows = self._index_rows(table)
        if index_rows is None:
            return None
        indexes: dict[str, dict[str, Any]] = {}
        for r in index_rows:
            if r["Key_name"] == "PRIMARY":
                continue
            entry = indexes.setdefault(
                r["Key_name"],
                {"name": r["Key_name"], "columns": [], "unique": not int(r["Non_unique"])},
            )
            entry["columns"].append(r["Column_name"])
        return list(indexes.values())
