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

"""Transaction context manager."""

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from polydb.errors import DatabaseError

if TYPE_CHECKING:
    from polydb.connection import Connection

logger = logging.getLogger(__name__)


@contextmanager
def transaction(conn: Connection) -> Generator[Connection, None, None]:
    """Context manager that commits on success, rolls back on exception.

    Usage::

        with transaction(conn):
            conn.insert("#__orders", {"customer": 7})
            conn.update("#__stock", {"reserved": 1}, {"item": 12})
        # committed here

    Statement failures inside the block do not raise by themselves; raise
    (for example :class:`~polydb.errors.DatabaseError`) to abandon the
    transaction.  Transactions do not nest: entering a second one on the
    same connection raises :class:`~polydb.errors.DatabaseError`, as does
    a failed ``BEGIN`` or ``COMMIT``.
    """
    if not conn.begin():
        raise DatabaseError(f"Cannot start transaction: {conn.last_error}")

    try:
        yield conn
    except Exception:
        if not conn.rollback():
            logger.error("Rollback failed: %s", conn.last_error)
        raise

    if not conn.commit():
        message = conn.last_error
        conn.rollback()
        raise DatabaseError(f"Commit failed: {message}")
