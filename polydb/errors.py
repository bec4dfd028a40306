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

"""Exception classes.

Ordinary statement failures (syntax errors, constraint violations, lock
timeouts) are *not* raised: connections report them through ``last_error``
and a sentinel return value.  Exceptions are reserved for conditions where
no further work is meaningful or the caller has a bug.
"""

from __future__ import annotations


class DatabaseError(Exception):
    """Base class for all polydb errors."""


class DatabaseConnectionError(DatabaseError):
    """The backend could not be reached or opened."""

    def __init__(self, message: str, dialect: str = "", details: dict | None = None) -> None:
        super().__init__(message)
        self.dialect = dialect
        self.details = details or {}


class CursorClosedError(DatabaseError):
    """A result cursor was used after ``close()``."""
