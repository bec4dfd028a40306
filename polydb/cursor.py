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

"""Uniform result cursor over a DB-API cursor.

The cursor streams forward by default and keeps no rows it has returned.
Drivers that buffer the result set client-side (PyMySQL, psycopg2) seek
natively.  SQLite's cursor is forward-only, so the first
:meth:`ResultCursor.seek` or :meth:`ResultCursor.reset` pulls the result
into memory and serves everything from that buffer afterwards.  When rows
were already read, the buffer is rebuilt by running the statement again
(read-only statements only); without that the rows already passed cannot
be revisited.

Usage::

    cursor = conn.execute("SELECT id, name FROM `#__users`")
    cursor.seek(2)
    third = cursor.fetch_row_assoc()
    cursor.close()

    for row in conn.execute("SELECT * FROM `#__users`"):   # closes at the end
        print(row["name"])
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from types import SimpleNamespace
from typing import Any

from polydb.errors import CursorClosedError

logger = logging.getLogger(__name__)


def python_type_name(value: Any) -> str:
    """Map a Python value to the SQLite storage class it came from."""
    if value is None:
        return "NULL"
    if isinstance(value, (bool, int)):
        return "INTEGER"
    if isinstance(value, float):
        return "REAL"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "BLOB"
    if isinstance(value, str):
        return "TEXT"
    return type(value).__name__.upper()


class ResultCursor:
    """Sequential and random-access reads over one statement's result.

    Args:
        native: The DB-API cursor the statement ran on.  Rows must be plain
            sequences (no dict/row factories); column names come from
            ``native.description``.
        seekable: ``True`` if the driver buffers client-side and supports
            ``scroll(n, mode="absolute")`` and a reliable ``rowcount``.
        type_namer: Maps a driver type code from ``description`` to an
            upper-case type name.
        reexecute: Runs the statement again and returns a fresh driver
            cursor (or ``None`` on failure).  Used to go back to rows a
            non-seekable cursor has already passed.
    """

    def __init__(
        self,
        native: Any,
        *,
        seekable: bool = False,
        type_namer: Callable[[Any], str] | None = None,
        reexecute: Callable[[], Any] | None = None,
    ) -> None:
        self._native = native
        self._seekable = seekable
        self._type_namer = type_namer
        self._reexecute = reexecute
        self._closed = False
        self._position = 0
        self._buffer: list[Any] | None = None
        # Position of _buffer[0] in the result set.
        self._buffer_start = 0

        description = native.description or ()
        self._columns = [d[0] for d in description]
        self._type_codes = [d[1] for d in description]

    # --- internals ----------------------------------------------------------

    def _check_open(self) -> None:
        if self._closed:
            raise CursorClosedError("cursor closed")

    def _materialize(self) -> list[Any]:
        """Load the result set into the in-memory buffer.

        From the start when possible; otherwise from the current position.
        """
        if self._buffer is not None:
            return self._buffer
        if not self._columns:
            self._buffer = []
            return self._buffer

        if self._position and self._reexecute is not None:
            native = self._reexecute()
            if native is not None:
                self._native.close()
                self._native = native
                self._buffer_start = 0
                self._buffer = list(native.fetchall())
                logger.debug("Re-ran statement to buffer %d rows", len(self._buffer))
                return self._buffer

        self._buffer_start = self._position
        self._buffer = list(self._native.fetchall())
        logger.debug(
            "Buffered %d rows from position %d", len(self._buffer), self._buffer_start,
        )
        return self._buffer

    def _next_row(self) -> Any | None:
        if not self._columns:
            return None
        if self._buffer is not None:
            index = self._position - self._buffer_start
            if index >= len(self._buffer):
                return None
            row = self._buffer[index]
        else:
            row = self._native.fetchone()
            if row is None:
                return None
        self._position += 1
        return row

    # --- fetching -----------------------------------------------------------

    def fetch_row_assoc(self) -> dict[str, Any] | None:
        """Return the next row as a ``{column: value}`` dict, or ``None``."""
        self._check_open()
        row = self._next_row()
        if row is None:
            return None
        return dict(zip(self._columns, row))

    def fetch_row_object(self) -> SimpleNamespace | None:
        """Return the next row as an attribute record, or ``None``."""
        row = self.fetch_row_assoc()
        if row is None:
            return None
        return SimpleNamespace(**row)

    def fetch_all(self) -> list[dict[str, Any]]:
        """Return all remaining rows as dicts."""
        rows = []
        while True:
            row = self.fetch_row_assoc()
            if row is None:
                return rows
            rows.append(row)

    # --- metadata -----------------------------------------------------------

    def row_count(self) -> int:
        """Number of rows in the result set."""
        self._check_open()
        if not self._columns:
            return 0
        if self._seekable and self._native.rowcount >= 0:
            return self._native.rowcount
        return self._buffer_start + len(self._materialize())

    def column_count(self) -> int:
        self._check_open()
        return len(self._columns)

    def column_names(self) -> list[str]:
        self._check_open()
        return list(self._columns)

    def column_name(self, index: int) -> str | None:
        """Name of column *index*, or ``None`` if out of range."""
        self._check_open()
        if 0 <= index < len(self._columns):
            return self._columns[index]
        return None

    def column_type(self, index: int) -> str | None:
        """Upper-case type name of column *index*, or ``None`` if out of range.

        When the driver reports no type code (SQLite), the type is inferred
        from the first row's value.
        """
        self._check_open()
        if not 0 <= index < len(self._columns):
            return None
        code = self._type_codes[index]
        if code is None:
            rows = self._materialize()
            return python_type_name(rows[0][index] if rows else None)
        if self._type_namer is not None:
            return self._type_namer(code)
        return str(code).upper()

    # --- positioning --------------------------------------------------------

    def seek(self, offset: int) -> bool:
        """Move so the next fetch returns row *offset* (zero-based).

        Returns ``False`` if *offset* is outside the result set, or
        before the rows a non-seekable cursor can still return.
        """
        self._check_open()
        if offset < 0 or offset >= self.row_count():
            return False
        if self._seekable:
            self._native.scroll(offset, mode="absolute")
        else:
            self._materialize()
            if offset < self._buffer_start:
                return False
        self._position = offset
        return True

    def reset(self) -> bool:
        """Rewind to the first row; ``False`` if the first row can no longer be reached."""
        self._check_open()
        if not self._columns:
            return True
        if self._seekable:
            if self._native.rowcount > 0:
                self._native.scroll(0, mode="absolute")
        else:
            self._materialize()
            if self._buffer_start:
                return False
        self._position = 0
        return True

    # --- lifecycle ----------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Release the driver cursor.  Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._buffer = None
        self._native.close()

    def __iter__(self) -> Iterator[dict[str, Any]]:
        try:
            while True:
                row = self.fetch_row_assoc()
                if row is None:
                    return
                yield row
        finally:
            self.close()

    def __enter__(self) -> ResultCursor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
