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

"""Table declaration, diffing and DDL generation.

Usage::

    from polydb.schema import SchemaBuilder

    builder = SchemaBuilder("#__users", conn).id().string("name")
    builder.modify()        # create or alter as needed
    builder.plan()          # statements modify() would run next
"""

from polydb.schema.builder import SchemaBuilder
from polydb.schema.dialects import (
    SchemaDialect,
    SchemaDiff,
    get_schema_dialect,
    normalize_default,
)
from polydb.schema.model import ColumnSpec, IndexSpec, LiveTable, TableDefinition

__all__ = [
    "SchemaBuilder",
    "SchemaDialect",
    "SchemaDiff",
    "get_schema_dialect",
    "normalize_default",
    "ColumnSpec",
    "IndexSpec",
    "LiveTable",
    "TableDefinition",
]
