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

"""Fluent table declaration with create / modify / drop.

Declare the table the way it should look and let :meth:`SchemaBuilder.modify`
work out the statements that get the live table there::

    users = (
        SchemaBuilder("#__users", conn)
        .id()
        .string("name", 100, nullable=False)
        .string("email", after="id")
        .boolean("active", default=True)
        .timestamp("created")
        .index("idx_users_email", ["email"], unique=True)
    )
    if not users.modify():
        print(users.last_error)
    print(users.statements)   # what was executed; [] if already up to date

Index names are used as declared (the ``#__`` token is allowed).  On
SQLite and PostgreSQL index names share one namespace per database, so
they must be unique across tables.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from polydb.dialects import replace_prefix
from polydb.schema.dialects import SchemaDialect, get_schema_dialect
from polydb.schema.model import ColumnSpec, IndexSpec, LiveTable, TableDefinition
from polydb.statements import quote_name

if TYPE_CHECKING:
    from polydb.connection import Connection

logger = logging.getLogger(__name__)


class SchemaBuilder:
    """Declared structure of one table, bound to a connection.

    Column methods append in call order and return the builder.  Declaring
    a column name twice replaces the earlier declaration in place.
    """

    def __init__(self, table: str, conn: Connection) -> None:
        self.conn = conn
        self.definition = TableDefinition(table)
        self.dialect: SchemaDialect = get_schema_dialect(conn.dialect)
        self.statements: list[str] = []
        self.differences: dict[str, Any] = {}
        self.last_error = ""

    @property
    def table(self) -> str:
        return self.definition.name

    # --- declaration --------------------------------------------------------

    def _column(self, column: ColumnSpec) -> SchemaBuilder:
        self.definition.columns[column.name] = column
        return self

    def id(self, name: str = "id") -> SchemaBuilder:
        """Auto-increment integer primary key."""
        self.definition.primary_key = [name]
        return self._column(ColumnSpec(name, "int", nullable=False, auto_increment=True))

    def int(self, name: str, nullable: bool = True, default: Any = None,
            after: str | None = None) -> SchemaBuilder:
        return self._column(ColumnSpec(name, "int", nullable=nullable, default=default, after=after))

    def bigint(self, name: str, nullable: bool = True, default: Any = None,
               after: str | None = None) -> SchemaBuilder:
        return self._column(ColumnSpec(name, "bigint", nullable=nullable, default=default, after=after))

    def tinyint(self, name: str, nullable: bool = True, default: Any = None,
                after: str | None = None) -> SchemaBuilder:
        return self._column(ColumnSpec(name, "tinyint", nullable=nullable, default=default, after=after))

    def string(self, name: str, length: int = 255, nullable: bool = True,
               default: Any = None, after: str | None = None) -> SchemaBuilder:
        return self._column(ColumnSpec(
            name, "varchar", length=length, nullable=nullable, default=default, after=after,
        ))

    def text(self, name: str, nullable: bool = True, after: str | None = None) -> SchemaBuilder:
        return self._column(ColumnSpec(name, "text", nullable=nullable, after=after))

    def longtext(self, name: str, nullable: bool = True, after: str | None = None) -> SchemaBuilder:
        return self._column(ColumnSpec(name, "longtext", nullable=nullable, after=after))

    def datetime(self, name: str, nullable: bool = True, default: Any = None,
                 after: str | None = None) -> SchemaBuilder:
        return self._column(ColumnSpec(name, "datetime", nullable=nullable, default=default, after=after))

    def date(self, name: str, nullable: bool = True, default: Any = None,
             after: str | None = None) -> SchemaBuilder:
        return self._column(ColumnSpec(name, "date", nullable=nullable, default=default, after=after))

    def time(self, name: str, nullable: bool = True, default: Any = None,
             after: str | None = None) -> SchemaBuilder:
        return self._column(ColumnSpec(name, "time", nullable=nullable, default=default, after=after))

    def timestamp(self, name: str, nullable: bool = True, default: Any = "CURRENT_TIMESTAMP",
                  after: str | None = None) -> SchemaBuilder:
        return self._column(ColumnSpec(name, "timestamp", nullable=nullable, default=default, after=after))

    def decimal(self, name: str, precision: int = 10, scale: int = 2, nullable: bool = True,
                default: Any = None, after: str | None = None) -> SchemaBuilder:
        return self._column(ColumnSpec(
            name, "decimal", precision=precision, scale=scale,
            nullable=nullable, default=default, after=after,
        ))

    def boolean(self, name: str, nullable: bool = True, default: Any = False,
                after: str | None = None) -> SchemaBuilder:
        return self._column(ColumnSpec(name, "boolean", nullable=nullable, default=default, after=after))

    def index(self, name: str, columns: Sequence[str] | None = None,
              unique: bool = False) -> SchemaBuilder:
        """Declare an index; without *columns* it covers the column *name*."""
        resolved = replace_prefix(name, self.conn.prefix)
        self.definition.indexes[resolved] = IndexSpec(
            resolved, list(columns) if columns else [name], unique,
        )
        return self

    def set_primary_key(self, columns: str | Sequence[str]) -> SchemaBuilder:
        """Replace the primary key; undeclared columns are ignored."""
        wanted = [columns] if isinstance(columns, str) else list(columns)
        self.definition.primary_key = [c for c in wanted if c in self.definition.columns]
        return self

    def remove_primary_keys(self) -> SchemaBuilder:
        """Remove the primary-key columns from the declaration and clear the key."""
        for name in self.definition.primary_key:
            self.definition.columns.pop(name, None)
        self.definition.primary_key = []
        return self

    # --- operations ---------------------------------------------------------

    def exists(self) -> bool:
        return self.conn.table_exists(self.table)

    def _reset(self) -> None:
        self.statements = []
        self.differences = {}
        self.last_error = ""

    def _fail(self, message: str) -> bool:
        self.last_error = message
        logger.warning("Schema change on %s refused: %s", self.table, message)
        return False

    def _execute(self, statements: list[str]) -> bool:
        """Run *statements* in order, inside one transaction where DDL is transactional."""
        atomic = (
            self.dialect.transactional_ddl
            and len(statements) > 1
            and not self.conn.in_transaction
        )
        if atomic and not self.conn.begin():
            self.last_error = self.conn.last_error
            return False

        try:
            for sql in statements:
                cursor = self.conn.execute(sql)
                if cursor is None:
                    self.last_error = self.conn.last_error
                    if atomic:
                        self.conn.rollback()
                    return False
                cursor.close()
                self.statements.append(sql)

            if atomic and not self.conn.commit():
                self.last_error = self.conn.last_error
                self.conn.rollback()
                return False
            return True
        finally:
            self.conn.invalidate_cache(self.table)

    def create(self) -> bool:
        """Create the table; ``False`` if it already exists or has no columns."""
        self._reset()
        if not self.definition.columns:
            return self._fail(f"No columns declared for table {self.table}")
        if self.exists():
            return self._fail(f"Table {self.table} already exists")

        statements = self.dialect.create_statements(self.definition, self.conn.config.charset)
        if not self._execute(statements):
            return False
        self.differences = {
            "action": "create",
            "table": self.table,
            "added": list(self.definition.columns),
        }
        logger.info("Created table %s", self.table)
        return True

    def _live(self) -> LiveTable | None:
        live = LiveTable.from_connection(self.conn, self.table)
        if live is None:
            self.last_error = self.conn.last_error or f"Cannot read structure of {self.table}"
        return live

    def plan(self) -> list[str] | None:
        """Statements :meth:`modify` would run, without running them.

        ``None`` (with :attr:`last_error`) if the live table cannot be read.
        """
        self.last_error = ""
        if not self.exists():
            return self.dialect.create_statements(self.definition, self.conn.config.charset)
        live = self._live()
        if live is None:
            return None
        return self.dialect.plan(self.definition, live)

    def modify(self) -> bool:
        """Bring the live table in line with the declaration.

        Creates the table if it is missing.  A converged table runs no
        statements and leaves :attr:`statements` empty.
        """
        self._reset()
        if not self.definition.columns:
            return self._fail(f"No columns declared for table {self.table}")
        if not self.exists():
            return self.create()

        live = self._live()
        if live is None:
            return False
        diff = self.dialect.diff(self.definition, live)
        self.differences = diff.summary()
        if diff.is_empty():
            logger.debug("Table %s is up to date", self.table)
            return True

        if not self._execute(self.dialect.alter_statements(self.definition, live, diff)):
            return False
        logger.info("Modified table %s (%d statements)", self.table, len(self.statements))
        return True

    def drop(self) -> bool:
        """Drop the table if it exists."""
        self._reset()
        if not self._execute([f"DROP TABLE IF EXISTS {quote_name(self.table)}"]):
            return False
        self.differences = {"action": "drop", "table": self.table}
        logger.info("Dropped table %s", self.table)
        return True
