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

"""Declared and live table structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from polydb.connection import Connection


@dataclass
class ColumnSpec:
    """One declared column.

    Attributes:
        name: Column name.
        type: Portable type keyword (``int``, ``bigint``, ``tinyint``,
            ``boolean``, ``varchar``, ``text``, ``longtext``, ``datetime``,
            ``date``, ``time``, ``timestamp``, ``decimal``).
        length: Character length (``varchar``).
        precision / scale: Numeric precision (``decimal``).
        nullable: Whether NULL is allowed.  Primary-key columns are always
            NOT NULL regardless.
        default: Python value or SQL keyword such as ``"CURRENT_TIMESTAMP"``.
        auto_increment: Column generates its own values.
        after: Column this one should follow when added to an existing
            table (honoured by MySQL).
    """

    name: str
    type: str
    length: int | None = None
    precision: int | None = None
    scale: int | None = None
    nullable: bool = True
    default: Any = None
    auto_increment: bool = False
    after: str | None = None


@dataclass
class IndexSpec:
    name: str
    columns: list[str]
    unique: bool = False

    def same_as(self, other: IndexSpec) -> bool:
        return self.columns == other.columns and self.unique == other.unique


@dataclass
class TableDefinition:
    """Ordered columns and indexes plus the primary key of one table."""

    name: str
    columns: dict[str, ColumnSpec] = field(default_factory=dict)
    indexes: dict[str, IndexSpec] = field(default_factory=dict)
    primary_key: list[str] = field(default_factory=list)

    def is_nullable(self, column: ColumnSpec) -> bool:
        return column.nullable and column.name not in self.primary_key


@dataclass
class LiveTable:
    """What the database reports for an existing table.

    ``columns`` holds the ``struct`` rows of
    :meth:`Connection.describe <polydb.connection.Connection.describe>`
    (``Field``, ``Type``, ``Null``, ``Key``, ``Default``, ``Extra``) in
    column order.
    """

    name: str
    columns: dict[str, dict[str, Any]]
    primary_key: list[str] = field(default_factory=list)
    indexes: dict[str, IndexSpec] = field(default_factory=dict)

    @classmethod
    def from_connection(cls, conn: Connection, table: str) -> LiveTable | None:
        """Introspect *table*; ``None`` if it does not exist or cannot be read."""
        info = conn.describe(table, cache=False)
        if info is None:
            return None
        indexes = conn.list_indexes(table)
        if indexes is None:
            return None
        return cls(
            name=table,
            columns=dict(info["struct"]),
            primary_key=list(info["keys"]),
            indexes={
                i["name"]: IndexSpec(i["name"], list(i["columns"]), bool(i["unique"]))
                for i in indexes
            },
        )
