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

"""Fluent SELECT builder.

Every clause method appends to the builder and returns it, so a query is
assembled across as many calls as convenient::

    query = (
        Query("#__users", conn)
        .select("id, name")
        .where("status = ?", [1])
        .where("age > ?", [18])
        .order("name", "asc")
        .limit(0, 10)
    )
    sql, params = query.compile()
    rows = query.get_results()
    total = query.total()

Each :meth:`Query.where` call becomes one parenthesised group; groups are
joined with the joiner given on the *later* call.  Parameters are
collected in call order, so callers must pass them in the order their
conditions are appended.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from polydb.dialects import MYSQL, DialectConverter
from polydb.statements import quote_name

if TYPE_CHECKING:
    from polydb.connection import Connection

logger = logging.getLogger(__name__)

_JOIN_WORDS = ("INNER", "LEFT", "RIGHT", "FULL", "CROSS", "NATURAL", "STRAIGHT_JOIN", "JOIN")
_BARE_TABLE = re.compile(r"^[A-Za-z_#][A-Za-z0-9_#]*$")

CLAUSES = ("select", "from", "where", "group", "having", "order", "limit")


def _params_list(params: Any) -> list[Any]:
    """A list or tuple is taken as is; any other value (``None`` too) is one parameter."""
    if isinstance(params, (list, tuple)):
        return list(params)
    return [params]


def _joiner(joiner: str) -> str:
    return "OR" if str(joiner).strip().upper() == "OR" else "AND"


def _compile_groups(groups: list[tuple[str, list[Any], str]]) -> tuple[str, list[Any]]:
    sql, params = "", []
    for predicate, group_params, joiner in groups:
        sql += f"({predicate})" if not sql else f" {joiner} ({predicate})"
        params.extend(group_params)
    return sql, params


class Query:
    """Accumulates the clauses of one SELECT statement.

    Args:
        table: Base table (``#__`` prefix token allowed).  A bare name is
            quoted; anything else (``"users u"``, a subquery) is used as is.
        conn: Connection the query runs on.  Optional: an unbound query can
            still be compiled, for *dialect*.
        dialect: Target dialect when no connection is given (default MySQL).
    """

    def __init__(
        self,
        table: str,
        conn: Connection | None = None,
        dialect: str | None = None,
    ) -> None:
        self.conn = conn
        self.dialect = conn.dialect if conn is not None else (dialect or MYSQL)
        self._converter = DialectConverter(self.dialect)
        self.from_base = quote_name(table) if _BARE_TABLE.match(table) else table
        self.select_fields: list[str] = []
        self.from_extra: list[str] = []
        self.where_groups: list[tuple[str, list[Any], str]] = []
        self.group_by: str | None = None
        self.having_groups: list[tuple[str, list[Any], str]] = []
        self.order_fields: list[str] = []
        self.order_dirs: list[str] = []
        self.limit_start: int | None = None
        self.limit_count: int | None = None
        self.sort_mappings: dict[str, str] = {}

    # --- clauses ------------------------------------------------------------

    def select(self, fields: str | Sequence[str]) -> Query:
        """Add select expressions (a comma-separated string or a list)."""
        if isinstance(fields, str):
            self.select_fields.append(fields)
        else:
            self.select_fields.extend(fields)
        return self

    def from_(self, fragment: str) -> Query:
        """Add a JOIN clause, or another table (prefixed with ``", "``)."""
        fragment = fragment.strip()
        first = fragment.split(" ", 1)[0].upper()
        self.from_extra.append(fragment if first in _JOIN_WORDS else f", {fragment}")
        return self

    def where(self, predicate: str, params: Any = (), joiner: str = "AND") -> Query:
        """Add one condition group.

        *params* may be a list or a single value.  *joiner* (``"AND"`` or
        ``"OR"``) links this group to the previous one; anything other than
        ``OR`` means ``AND``.
        """
        self.where_groups.append(
            (predicate.replace(";", ""), _params_list(params), _joiner(joiner))
        )
        return self

    def where_in(self, field: str, values: Sequence[Any], joiner: str = "AND") -> Query:
        """Add ``field IN (?, ?, ...)``.  An empty *values* adds nothing."""
        values = list(values)
        if not values:
            return self
        placeholders = ", ".join("?" for _ in values)
        return self.where(f"{quote_name(field)} IN ({placeholders})", values, joiner)

    def group(self, expression: str) -> Query:
        self.group_by = expression
        return self

    def having(self, predicate: str, params: Any = (), joiner: str = "AND") -> Query:
        """Add one HAVING group (same rules as :meth:`where`)."""
        self.having_groups.append(
            (predicate.replace(";", ""), _params_list(params), _joiner(joiner))
        )
        return self

    def order(
        self,
        fields: str | Sequence[str],
        dirs: str | Sequence[str] = "asc",
    ) -> Query:
        """Add ORDER BY terms.

        Pass one field and one direction, or parallel lists.  A single
        direction string applies to every field in a list.  Raises
        :class:`ValueError` for mismatched lists or a direction other than
        ``asc``/``desc``.
        """
        field_list = [fields] if isinstance(fields, str) else list(fields)
        if isinstance(dirs, str):
            dir_list = [dirs] * len(field_list)
        else:
            dir_list = list(dirs)
        if len(field_list) != len(dir_list):
            raise ValueError(
                f"order() got {len(field_list)} fields but {len(dir_list)} directions"
            )
        for field, direction in zip(field_list, dir_list):
            direction = direction.strip().upper()
            if direction not in ("ASC", "DESC"):
                raise ValueError(f"Invalid sort direction {direction!r}")
            self.order_fields.append(field)
            self.order_dirs.append(direction)
        return self

    def set_sort_mapping(self, virtual: str, real: str) -> Query:
        """Order by *real* whenever *virtual* is requested as an order field."""
        self.sort_mappings[virtual] = real
        return self

    def limit(self, start: int, count: int) -> Query:
        self.limit_start = abs(int(start))
        self.limit_count = abs(int(count))
        return self

    def clean(self, part: str | None = None) -> Query:
        """Reset one clause (``"select"``, ``"where"``, ...) or all of them."""
        if part is not None and part not in CLAUSES:
            raise ValueError(f"Unknown clause {part!r}. Available: {list(CLAUSES)}")
        if part in (None, "select"):
            self.select_fields = []
        if part in (None, "from"):
            self.from_extra = []
        if part in (None, "where"):
            self.where_groups = []
        if part in (None, "group"):
            self.group_by = None
        if part in (None, "having"):
            self.having_groups = []
        if part in (None, "order"):
            self.order_fields = []
            self.order_dirs = []
        if part in (None, "limit"):
            self.limit_start = None
            self.limit_count = None
        return self

    def has_select(self) -> bool:
        return bool(self.select_fields)

    def has_where(self) -> bool:
        return bool(self.where_groups)

    def has_group(self) -> bool:
        return bool(self.group_by)

    def has_having(self) -> bool:
        return bool(self.having_groups)

    def has_order(self) -> bool:
        return bool(self.order_fields)

    def has_limit(self) -> bool:
        return self.limit_count is not None

    # --- compilation --------------------------------------------------------

    def _from_where(self) -> tuple[str, list[Any]]:
        sql = f"FROM {self.from_base}"
        if self.from_extra:
            sql += " " + " ".join(self.from_extra)
        where, params = _compile_groups(self.where_groups)
        if where:
            sql += f" WHERE {where}"
        return sql, params

    def _grouping(self) -> tuple[str, list[Any]]:
        sql = f" GROUP BY {self.group_by}" if self.group_by else ""
        having, params = _compile_groups(self.having_groups)
        if having:
            sql += f" HAVING {having}"
        return sql, params

    def _finish(self, sql: str, params: list[Any], convert: bool) -> tuple[str, list[Any]]:
        if not convert:
            return sql, params
        return self._converter.convert(sql, params)

    def compile(self, convert: bool = True) -> tuple[str, list[Any]]:
        """Return ``(sql, params)`` for the full SELECT.

        With *convert* the SQL is rewritten for the target dialect; the
        ``#__`` prefix token is always left for the connection.
        """
        fields = ", ".join(self.select_fields) if self.select_fields else "*"
        body, params = self._from_where()
        grouping, having_params = self._grouping()
        sql = f"SELECT {fields} {body}{grouping}"
        params += having_params

        if self.order_fields:
            terms = [
                f"{self.sort_mappings.get(field, field)} {direction}"
                for field, direction in zip(self.order_fields, self.order_dirs)
            ]
            sql += " ORDER BY " + ", ".join(terms)
        if self.limit_count is not None:
            sql += f" LIMIT {self.limit_start or 0},{self.limit_count}"
        return self._finish(sql, params, convert)

    def compile_total(self, convert: bool = True) -> tuple[str, list[Any]]:
        """Return ``(sql, params)`` counting the rows :meth:`compile` would match.

        ORDER BY and LIMIT are left out.  A grouped (or HAVING-filtered)
        query counts groups: it becomes a subquery whose rows are counted.
        """
        body, params = self._from_where()
        if self.group_by or self.having_groups:
            grouping, having_params = self._grouping()
            sql = f"SELECT COUNT(*) FROM (SELECT 1 {body}{grouping}) AS grouped_rows"
            params += having_params
        else:
            sql = f"SELECT COUNT(*) {body}"
        return self._finish(sql, params, convert)

    def __str__(self) -> str:
        return self.compile()[0]

    # --- execution ----------------------------------------------------------

    def _bound(self) -> Connection:
        if self.conn is None:
            raise ValueError("Query is not bound to a connection")
        return self.conn

    def get_results(self) -> list[dict[str, Any]] | None:
        """Run the query; all rows as dicts, or ``None`` on failure."""
        return self._bound().get_results(*self.compile(convert=False))

    def get_row(self) -> dict[str, Any] | None:
        """Run the query limited to one row and return it (or ``None``)."""
        self.limit(0, 1)
        return self._bound().row(*self.compile(convert=False))

    def get_var(self) -> Any:
        """First column of the first row, or ``None``."""
        self.limit(0, 1)
        return self._bound().scalar(*self.compile(convert=False))

    def total(self) -> int:
        """Number of rows (or groups) the query matches; 0 on failure."""
        count = self._bound().scalar(*self.compile_total(convert=False))
        return int(count or 0)
