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

"""Multi-backend database abstraction layer.

Supports MySQL/MariaDB (optional, via PyMySQL), SQLite (built-in) and
PostgreSQL (optional, via psycopg2).  Application SQL is written once in
the generic MySQL-flavoured dialect (backtick identifiers, ``LIMIT s,c``,
``?`` placeholders, ``#__`` table-prefix token) and converted for the
backend each connection talks to.

Usage::

    from polydb import DatabaseConfig, Query, connect

    conn = connect(DatabaseConfig("sqlite", database="data/app.db", prefix="app"))
    conn.insert("#__users", {"name": "Ada", "status": 1})
    rows = (
        Query("#__users", conn)
        .where("status = ?", [1])
        .order("name", "asc")
        .limit(0, 10)
        .get_results()
    )
"""

from polydb.backends import connect, get_backend, list_backends, register_backend
from polydb.config import DatabaseConfig
from polydb.connection import Connection
from polydb.cursor import ResultCursor
from polydb.dialects import MYSQL, POSTGRESQL, SQLITE, DialectConverter, convert
from polydb.errors import CursorClosedError, DatabaseConnectionError, DatabaseError
from polydb.manager import ConnectionManager
from polydb.migrations import Migration, get_applied_versions, run_migrations
from polydb.query import Query
from polydb.schema import SchemaBuilder
from polydb.transactions import transaction

__all__ = [
    "MYSQL",
    "SQLITE",
    "POSTGRESQL",
    "DatabaseConfig",
    "Connection",
    "ConnectionManager",
    "ResultCursor",
    "DialectConverter",
    "convert",
    "connect",
    "get_backend",
    "list_backends",
    "register_backend",
    "Query",
    "SchemaBuilder",
    "transaction",
    "Migration",
    "run_migrations",
    "get_applied_versions",
    "DatabaseError",
    "DatabaseConnectionError",
    "CursorClosedError",
]
