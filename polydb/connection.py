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

"""Connection base class.

A :class:`Connection` owns one physical link to one backend, bound to one
dialect and one table prefix.  Backends subclass it and implement the
abstract hooks (opening the driver connection and introspection); all
statement execution, the write helpers, transactions and the error
contract live here so every backend behaves the same way.

Error contract: statement failures are never raised.  The helper returns
a sentinel (``None`` / ``False``), sets :attr:`Connection.error`, and
stores a readable message in :attr:`Connection.last_error`.  Only failure
to connect (:class:`~polydb.errors.DatabaseConnectionError`) and caller
bugs (:class:`ValueError`) raise.

A connection is not thread-safe: it holds per-statement state
(``last_error``, ``last_query``, ``affected_rows``).
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping, Sequence
from functools import partial
from typing import Any

from polydb.config import DatabaseConfig
from polydb.cursor import ResultCursor
from polydb.dialects import (
    DialectConverter,
    format_paramstyle,
    replace_prefix,
    split_quoted,
    split_statements,
)
from polydb.errors import DatabaseConnectionError
from polydb.statements import (
    count_statement,
    delete_statement,
    insert_statement,
    quote_name,
    update_statement,
)

logger = logging.getLogger(__name__)

# Statements that can run again without side effects.
_READ_ONLY = re.compile(r"\s*(?:SELECT|VALUES|EXPLAIN)\b", re.I)


def _as_params(params: Any) -> list[Any]:
    """Normalise *params*: ``None`` → ``[]``, scalar → ``[scalar]``."""
    if params is None:
        return []
    if isinstance(params, (list, tuple)):
        return list(params)
    return [params]


def _sql_literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


def interpolate(sql: str, params: Sequence[Any]) -> str:
    """Render *sql* with *params* inlined, for logs and debugging only."""
    values = list(params or ())
    out = []
    for quoted, chunk in split_quoted(sql):
        if quoted:
            out.append(chunk)
            continue
        pieces = chunk.split("?")
        out.append(pieces[0])
        for piece in pieces[1:]:
            out.append(_sql_literal(values.pop(0)) if values else "?")
            out.append(piece)
    return "".join(out)


class Connection(ABC):
    """One connection to one backend.

    Class attributes to override:
        DIALECT: canonical dialect name.
        PARAMSTYLE: ``"qmark"`` or ``"format"`` (driver placeholders).
        SEEKABLE_CURSORS: driver buffers results and supports ``scroll()``.
        SUPPORTS_UPDATE_LIMIT: ``UPDATE ... LIMIT n`` is valid SQL.
        BEGIN_SQL: statement that opens a transaction.
    """

    DIALECT: str
    PARAMSTYLE = "qmark"
    SEEKABLE_CURSORS = False
    SUPPORTS_UPDATE_LIMIT = False
    BEGIN_SQL = "BEGIN"

    def __init__(self, config: DatabaseConfig) -> None:
        if config.dialect != self.DIALECT:
            raise ValueError(
                f"{type(self).__name__} cannot serve a {config.dialect!r} configuration"
            )
        self.config = config
        self.prefix = config.prefix
        self.last_error = ""
        self.error = False
        self.in_transaction = False
        self.last_query = ""
        self.affected_rows = 0
        self.query_columns: list[str] = []
        self._handle: Any = None
        self._last_insert_id: Any = None
        self._converter = DialectConverter(self.DIALECT)
        self._describe_cache: dict[str, dict[str, Any]] = {}
        self._tables_cache: list[str] | None = None
        self._views_cache: list[str] | None = None
        self.connect()

    @property
    def dialect(self) -> str:
        return self.DIALECT

    # --- backend hooks ------------------------------------------------------

    @abstractmethod
    def _open(self) -> Any:
        """Open and return the driver connection (may raise driver errors)."""

    @property
    @abstractmethod
    def _statement_errors(self) -> tuple[type[BaseException], ...]:
        """Driver exceptions that count as ordinary statement failures."""

    @abstractmethod
    def _fetch_tables(self) -> list[str]: ...

    @abstractmethod
    def _fetch_views(self) -> list[str]: ...

    @abstractmethod
    def _describe_rows(self, table: str) -> tuple[list[dict[str, Any]], list[str]] | None:
        """Return the column rows of *table* and its primary key.

        Rows are ``{Field, Type, Null, Key, Default, Extra}`` dicts in
        column order; the key lists primary-key columns in key order.  No
        rows means the table does not exist; ``None`` an error.
        """

    @abstractmethod
    def list_indexes(self, table: str) -> list[dict[str, Any]] | None:
        """Secondary indexes as ``{"name", "columns", "unique"}`` dicts."""

    @abstractmethod
    def view_definition(self, view: str) -> str | None: ...

    @abstractmethod
    def show_create_table(self, table: str) -> str | None: ...

    def _type_name(self, type_code: Any) -> str:
        return str(type_code).upper()

    def _insert_sql(self, table: str, fields: Mapping[str, Any]) -> tuple[str, list[Any]]:
        return insert_statement(table, fields)

    def _insert_id(self, native: Any) -> Any:
        return native.lastrowid

    def _truncate_sql(self, table: str) -> list[tuple[str, list[Any]]]:
        return [(f"DELETE FROM {quote_name(table)}", [])]

    # --- lifecycle ----------------------------------------------------------

    def connect(self) -> None:
        """Open the driver connection.

        Raises :class:`DatabaseConnectionError` on failure: nothing else
        this object does is meaningful without a connection.
        """
        self.close()
        try:
            self._handle = self._open()
        except ImportError:
            raise
        except Exception as exc:
            self.error = True
            self.last_error = f"{self.DIALECT} connection failed: {exc}"
            logger.error(
                "%s connection failed (database=%s): %s",
                self.DIALECT, self.config.database, exc,
            )
            raise DatabaseConnectionError(
                self.last_error,
                self.DIALECT,
                {"database": self.config.database, "host": self.config.host},
            ) from exc
        logger.debug("%s connection opened: %s", self.DIALECT, self.config.database)

    def check_connection(self) -> bool:
        if self._handle is None:
            self.error = True
            self.last_error = "No database connection"
            return False
        return True

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None
            self.in_transaction = False
            logger.debug("%s connection closed: %s", self.DIALECT, self.config.database)

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def has_error(self) -> bool:
        return self.error

    # --- execution ----------------------------------------------------------

    def _run(self, sql: str, params: list[Any]) -> Any:
        """Execute on a fresh driver cursor and return it."""
        cur = self._handle.cursor()
        try:
            if self.PARAMSTYLE == "format":
                if params:
                    cur.execute(format_paramstyle(sql), tuple(params))
                else:
                    cur.execute(sql)
            else:
                cur.execute(sql, tuple(params))
        except BaseException:
            cur.close()
            raise
        return cur

    def _execute_native(self, sql: str, params: Any = None) -> Any | None:
        """Convert, execute and record state; return the driver cursor or ``None``."""
        if not self.check_connection():
            return None
        sql, params = self._converter.convert(sql, _as_params(params), prefix=self.prefix)
        self.last_query = sql
        self.error = False
        self.last_error = ""
        self.affected_rows = 0
        self.query_columns = []

        try:
            native = self._run(sql, params)
        except self._statement_errors as exc:
            self.error = True
            self.last_error = str(exc) or type(exc).__name__
            logger.error(
                "%s query failed: %s error: %s",
                self.DIALECT, interpolate(sql, params), self.last_error,
            )
            return None

        if native.description:
            self.query_columns = [d[0] for d in native.description]
        else:
            self.affected_rows = max(native.rowcount, 0)
        logger.debug("%s query: %s", self.DIALECT, interpolate(sql, params))
        return native

    def _rerun(self, sql: str, params: list[Any]) -> Any | None:
        """Run already-converted *sql* again; the driver cursor or ``None``."""
        try:
            return self._run(sql, params)
        except self._statement_errors as exc:
            self.error = True
            self.last_error = str(exc) or type(exc).__name__
            logger.error(
                "%s re-run failed: %s error: %s",
                self.DIALECT, interpolate(sql, params), self.last_error,
            )
            return None

    def _cursor(self, native: Any, params: Any = None) -> ResultCursor:
        reexecute = None
        if not self.SEEKABLE_CURSORS and _READ_ONLY.match(self.last_query):
            reexecute = partial(self._rerun, self.last_query, _as_params(params))
        return ResultCursor(
            native,
            seekable=self.SEEKABLE_CURSORS,
            type_namer=self._type_name,
            reexecute=reexecute,
        )

    def execute(self, sql: str, params: Any = None) -> ResultCursor | None:
        """Run one statement; return its cursor, or ``None`` on failure.

        *sql* is generic SQL (backticks, ``?`` placeholders, ``#__``
        prefix token); it is converted to this connection's dialect first.
        The caller must close the returned cursor.
        """
        native = self._execute_native(sql, params)
        if native is None:
            return None
        return self._cursor(native, params)

    def get_results(self, sql: str, params: Any = None) -> list[dict[str, Any]] | None:
        """All rows as dicts, or ``None`` on failure."""
        cursor = self.execute(sql, params)
        if cursor is None:
            return None
        with cursor:
            return cursor.fetch_all()

    def iterate(self, sql: str, params: Any = None) -> Iterator[dict[str, Any]]:
        """Stream rows one at a time without keeping them in memory."""
        native = self._execute_native(sql, params)
        if native is None:
            return
        yield from self._cursor(native)

    def row(self, sql: str, params: Any = None, offset: int = 0) -> dict[str, Any] | None:
        """The row at *offset* (default the first), or ``None``."""
        cursor = self.execute(sql, params)
        if cursor is None:
            return None
        with cursor:
            if offset and not cursor.seek(offset):
                return None
            return cursor.fetch_row_assoc()

    def scalar(self, sql: str, params: Any = None) -> Any:
        """First column of the first row, or ``None``."""
        cursor = self.execute(sql, params)
        if cursor is None:
            return None
        with cursor:
            row = cursor.fetch_row_assoc()
        if not row:
            return None
        return next(iter(row.values()))

    def execute_script(self, sql: str) -> bool:
        """Run a ``;``-separated script statement by statement.

        Stops at the first failing statement and returns ``False``.
        """
        for statement in split_statements(sql):
            native = self._execute_native(statement)
            if native is None:
                return False
            native.close()
        return True

    # --- write helpers ------------------------------------------------------

    def _refuse(self, message: str) -> bool:
        self.error = True
        self.last_error = message
        logger.warning("%s: %s", self.DIALECT, message)
        return False

    def insert(self, table: str, fields: Mapping[str, Any]) -> Any:
        """Insert one row; return the new id, or ``False`` on failure.

        Tables without an auto-increment key may return ``0``/``None`` as
        the id, so test the result with ``is False``.
        """
        sql, params = self._insert_sql(table, fields)
        native = self._execute_native(sql, params)
        if native is None:
            return False
        self._last_insert_id = self._insert_id(native)
        native.close()
        self._invalidate_counts()
        return self._last_insert_id

    def update(
        self,
        table: str,
        fields: Mapping[str, Any],
        where: Mapping[str, Any],
        limit: int = 0,
    ) -> bool:
        """Update rows matching *where*; the row count is in :attr:`affected_rows`.

        *limit* is honoured only where the backend supports
        ``UPDATE ... LIMIT``.  An empty *where* is refused.
        """
        if not fields:
            return self._refuse(f"update of {table} has no fields to set")
        if not where:
            return self._refuse(f"refusing to update {table} without WHERE conditions")
        sql, params = update_statement(
            table, fields, where, limit if self.SUPPORTS_UPDATE_LIMIT else 0,
        )
        native = self._execute_native(sql, params)
        if native is None:
            return False
        native.close()
        return True

    def delete(self, table: str, where: Mapping[str, Any]) -> bool:
        """Delete rows matching *where*.  An empty *where* is refused."""
        if not where:
            return self._refuse(f"refusing to delete from {table} without WHERE conditions")
        sql, params = delete_statement(table, where)
        native = self._execute_native(sql, params)
        if native is None:
            return False
        native.close()
        return True

    def upsert(
        self,
        table: str,
        fields: Mapping[str, Any],
        where: Mapping[str, Any],
    ) -> Any:
        """Update the row identified by *where*, or insert it.

        Returns the new id after an insert, ``True`` when an existing row
        matched, ``False`` on error.  *where* entries whose value is empty
        (``0``, ``""``, ``None``) are ignored, so ``{"id": 0}`` always
        inserts.

        This is update-then-insert, not an atomic upsert: two writers racing
        on the same key can both take the insert branch.  Guard with a
        unique key (the second insert then fails cleanly) or serialise the
        writers.
        """
        where = {k: v for k, v in where.items() if v not in (0, "", None)}
        if not where:
            return self.insert(table, fields)

        if fields:
            if not self.update(table, fields, where):
                return False
            matched = self.affected_rows > 0
        else:
            sql, params = count_statement(table, where)
            count = self.scalar(sql, params)
            if self.error:
                return False
            matched = bool(count)

        if matched:
            return True
        return self.insert(table, {**fields, **where})

    def insert_id(self) -> Any:
        """Id generated by the most recent :meth:`insert`."""
        return self._last_insert_id

    # --- transactions -------------------------------------------------------

    def _control(self, statement: str) -> bool:
        native = self._execute_native(statement)
        if native is None:
            return False
        native.close()
        return True

    def begin(self) -> bool:
        """Open a transaction.  Nothing rolls it back automatically."""
        if self.in_transaction:
            return self._refuse("a transaction is already open")
        if not self._control(self.BEGIN_SQL):
            return False
        self.in_transaction = True
        return True

    def commit(self) -> bool:
        ok = self._control("COMMIT")
        if ok:
            self.in_transaction = False
        return ok

    def rollback(self) -> bool:
        ok = self._control("ROLLBACK")
        if ok:
            self.in_transaction = False
        return ok

    # --- introspection ------------------------------------------------------

    def _invalidate_counts(self) -> None:
        """Hook for backends that cache anything row-dependent."""

    def invalidate_cache(self, table: str | None = None) -> None:
        """Forget cached introspection (for *table*, or everything)."""
        self._tables_cache = None
        self._views_cache = None
        if table is None:
            self._describe_cache.clear()
        else:
            self._describe_cache.pop(replace_prefix(table, self.prefix), None)

    def list_tables(self, cache: bool = True) -> list[str]:
        """Base tables in the current database."""
        if not self.check_connection():
            return []
        if not cache or self._tables_cache is None:
            self._tables_cache = self._fetch_tables()
        return list(self._tables_cache)

    def list_views(self, cache: bool = True) -> list[str]:
        """Views in the current database."""
        if not self.check_connection():
            return []
        if not cache or self._views_cache is None:
            self._views_cache = self._fetch_views()
        return list(self._views_cache)

    def table_exists(self, table: str) -> bool:
        return replace_prefix(table, self.prefix) in self.list_tables(cache=False)

    def describe(self, table: str, cache: bool = True) -> dict[str, Any] | None:
        """Describe *table* as ``{"fields", "keys", "struct"}``.

        ``fields`` maps column → type string, ``keys`` lists the primary-key
        columns in order, ``struct`` maps column → ``{"Field", "Type",
        "Null", "Key", "Default", "Extra"}``.  Returns ``None`` (with
        ``last_error`` set) if the table does not exist.
        """
        name = replace_prefix(table, self.prefix)
        if cache and name in self._describe_cache:
            return self._describe_cache[name]
        if not self.check_connection():
            return None

        described = self._describe_rows(name)
        if described is None:
            return None
        rows, primary_key = described
        if not rows:
            self.error = True
            self.last_error = f"Table {name} does not exist"
            return None

        info = {
            "fields": {r["Field"]: r["Type"] for r in rows},
            "keys": list(primary_key),
            "struct": {r["Field"]: r for r in rows},
        }
        self._describe_cache[name] = info
        return info

    # --- table maintenance --------------------------------------------------

    def drop_table(self, table: str) -> bool:
        ok = self._control(f"DROP TABLE IF EXISTS {quote_name(table)}")
        self.invalidate_cache(table)
        return ok

    def drop_view(self, view: str) -> bool:
        ok = self._control(f"DROP VIEW IF EXISTS {quote_name(view)}")
        self.invalidate_cache()
        return ok

    def rename_table(self, table: str, new_name: str) -> bool:
        ok = self._control(f"ALTER TABLE {quote_name(table)} RENAME TO {quote_name(new_name)}")
        self.invalidate_cache(table)
        return ok

    def truncate_table(self, table: str) -> bool:
        """Remove every row and reset the auto-increment counter."""
        if not table:
            return self._refuse("Table name is required")
        for sql, params in self._truncate_sql(table):
            native = self._execute_native(sql, params)
            if native is None:
                return False
            native.close()
        return True

    def quote_name(self, identifier: str) -> str:
        """Quote *identifier* for use in generic SQL passed to :meth:`execute`."""
        return quote_name(identifier)

    def interpolate(self, sql: str, params: Any = None) -> str:
        """Debug rendering of a statement with its parameters inlined."""
        return interpolate(sql, _as_params(params))
