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

"""Idempotent database migration runner.

Provides a simple, sequential migration system that tracks applied
migrations in a ``schema_version`` table.  Each migration is a Python
function that receives a :class:`~polydb.connection.Connection`; the same
migration list runs unchanged on every backend.

Usage::

    from polydb import Migration, SchemaBuilder, run_migrations

    def _m001_create_users(conn):
        SchemaBuilder("#__users", conn).id().string("name").create()

    MIGRATIONS = [Migration(1, "create_users", _m001_create_users)]

    run_migrations(conn, MIGRATIONS)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from polydb.errors import DatabaseError
from polydb.schema import SchemaBuilder
from polydb.statements import quote_name
from polydb.transactions import transaction

if TYPE_CHECKING:
    from polydb.connection import Connection

logger = logging.getLogger(__name__)

VERSION_TABLE = "#__schema_version"


@dataclass
class Migration:
    """A single database migration.

    Attributes:
        version: Sequential integer (1, 2, 3, ...). Must be unique.
        name: Short descriptive name (e.g. ``"initial_schema"``).
        up: Callable that takes a connection and applies the change.  An
            explicit ``False`` return marks the migration as failed.
    """

    version: int
    name: str
    up: Callable[[Any], Any]


def _version_table(conn: Connection) -> SchemaBuilder:
    return (
        SchemaBuilder(VERSION_TABLE, conn)
        .int("version", nullable=False)
        .string("name", nullable=False)
        .timestamp("applied_at")
        .set_primary_key("version")
    )


def _ensure_version_table(conn: Connection) -> None:
    """Create the ``schema_version`` table if it does not exist."""
    table = _version_table(conn)
    if table.exists():
        return
    if not table.create():
        raise DatabaseError(f"Cannot create schema_version table: {table.last_error}")
    logger.info("Created schema_version table")


def get_applied_versions(conn: Connection) -> set[int]:
    """Return the set of migration version numbers already applied.

    Returns an empty set if the ``schema_version`` table does not exist.
    """
    if not conn.table_exists(VERSION_TABLE):
        return set()

    rows = conn.get_results(f"SELECT `version` FROM {quote_name(VERSION_TABLE)}")
    if rows is None:
        raise DatabaseError(f"Cannot read applied migrations: {conn.last_error}")
    return {int(r["version"]) for r in rows}


def run_migrations(conn: Connection, migrations: list[Migration]) -> int:
    """Apply all pending migrations in version order.

    Each migration runs in its own transaction together with its
    ``schema_version`` row.  MySQL commits DDL implicitly, so there a
    failed migration can leave its completed statements behind.

    Args:
        conn: An open connection.
        migrations: ``Migration`` objects, in any order.

    Returns:
        Number of migrations applied.

    Raises:
        DatabaseError: a migration failed; later ones are not attempted.
    """
    _ensure_version_table(conn)
    applied = get_applied_versions(conn)

    count = 0
    for migration in sorted(migrations, key=lambda m: m.version):
        if migration.version in applied:
            continue

        logger.info(
            "Applying migration %d: %s", migration.version, migration.name
        )
        with transaction(conn):
            if migration.up(conn) is False:
                raise DatabaseError(
                    f"Migration {migration.version} ({migration.name}) failed: {conn.last_error}"
                )
            recorded = conn.insert(
                VERSION_TABLE, {"version": migration.version, "name": migration.name},
            )
            if recorded is False:
                raise DatabaseError(
                    f"Cannot record migration {migration.version}: {conn.last_error}"
                )
        count += 1

    if count:
        logger.info("Applied %d migration(s)", count)
    return count
