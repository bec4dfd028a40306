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

"""Parameterised statement builders.

Every helper returns ``(sql, params)`` in the generic (MySQL-flavoured)
dialect with one ``?`` per value.  Values only ever travel in *params*;
the SQL text contains nothing but quoted identifiers and placeholders, so
the write helpers on :class:`~polydb.connection.Connection` cannot be
turned into an injection vector by their data.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

MAX_IDENTIFIER_LENGTH = 64

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_#][A-Za-z0-9_ #\-]*$")
_ALIAS_RE = re.compile(r"^(.+?)\s+AS\s+(.+)$", re.I)


def _quote_part(name: str) -> str:
    name = name.strip()
    if len(name) >= 2 and name[0] == name[-1] == "`":
        return name
    if not name:
        raise ValueError("Empty identifier not allowed")
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise ValueError(f"Identifier too long: {name!r}")
    if name == "*":
        return name
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid identifier: {name!r}")
    return f"`{name}`"


def quote_name(identifier: str) -> str:
    """Quote an identifier with backticks after validating it.

    Handles ``table.column`` and ``expr AS alias`` forms; already-quoted
    parts are returned unchanged.  Raises :class:`ValueError` for names
    outside ``[A-Za-z_][A-Za-z0-9_ #-]*`` (the ``#__`` prefix token is
    allowed).
    """
    alias = _ALIAS_RE.match(identifier.strip())
    if alias:
        return f"{quote_name(alias.group(1))} AS {_quote_part(alias.group(2))}"
    if "." in identifier and not identifier.strip().startswith("`"):
        table, column = identifier.split(".", 1)
        return f"{_quote_part(table)}.{_quote_part(column)}"
    return _quote_part(identifier)


def where_clause(where: Mapping[str, Any]) -> tuple[str, list[Any]]:
    """Build ``a = ? AND b = ?`` from a mapping (``None`` becomes ``IS NULL``)."""
    parts, params = [], []
    for column, value in where.items():
        if value is None:
            parts.append(f"{quote_name(column)} IS NULL")
        else:
            parts.append(f"{quote_name(column)} = ?")
            params.append(value)
    return " AND ".join(parts), params


def insert_statement(table: str, fields: Mapping[str, Any]) -> tuple[str, list[Any]]:
    """``INSERT INTO`` for *fields*; an empty mapping inserts default values."""
    if not fields:
        return f"INSERT INTO {quote_name(table)} DEFAULT VALUES", []
    columns = ", ".join(quote_name(name) for name in fields)
    placeholders = ", ".join("?" for _ in fields)
    return (
        f"INSERT INTO {quote_name(table)} ({columns}) VALUES ({placeholders})",
        list(fields.values()),
    )


def update_statement(
    table: str,
    fields: Mapping[str, Any],
    where: Mapping[str, Any],
    limit: int = 0,
) -> tuple[str, list[Any]]:
    """``UPDATE ... SET ... WHERE ...`` with an optional ``LIMIT``."""
    assignments = ", ".join(f"{quote_name(name)} = ?" for name in fields)
    condition, where_params = where_clause(where)
    sql = f"UPDATE {quote_name(table)} SET {assignments} WHERE {condition}"
    if limit > 0:
        sql += f" LIMIT {int(limit)}"
    return sql, list(fields.values()) + where_params


def delete_statement(table: str, where: Mapping[str, Any]) -> tuple[str, list[Any]]:
    """``DELETE FROM ... WHERE ...``."""
    condition, params = where_clause(where)
    return f"DELETE FROM {quote_name(table)} WHERE {condition}", params


def count_statement(table: str, where: Mapping[str, Any]) -> tuple[str, list[Any]]:
    """``SELECT COUNT(*)`` of the rows matching *where*."""
    condition, params = where_clause(where)
    sql = f"SELECT COUNT(*) FROM {quote_name(table)}"
    if condition:
        sql += f" WHERE {condition}"
    return sql, params
