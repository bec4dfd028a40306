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

"""Backend registry.

Backends are registered by dialect name and instantiated on demand.  The
built-in backends import their drivers lazily, so registering them never
requires PyMySQL or psycopg2 to be installed; the driver is only needed
once a connection of that dialect is opened.

Additional backends can be added at runtime via :func:`register_backend`.
"""

from __future__ import annotations

from typing import Type

from polydb.config import DatabaseConfig
from polydb.connection import Connection
from polydb.dialects import normalize_dialect

__all__ = [
    "connect",
    "get_backend",
    "list_backends",
    "register_backend",
]

# Registry: dialect name → class
_REGISTRY: dict[str, Type[Connection]] = {}
_BUILTINS_LOADED = False


def register_backend(name: str, cls: Type[Connection]) -> None:
    """Register a connection class for dialect *name*."""
    _REGISTRY[normalize_dialect(name)] = cls


def list_backends() -> list[str]:
    """Return the dialects that have a registered backend."""
    _ensure_builtins()
    return list(_REGISTRY.keys())


def get_backend(name: str) -> Type[Connection]:
    """Return the connection class for dialect *name*.

    Raises :class:`ValueError` for an unknown dialect.
    """
    _ensure_builtins()
    dialect = normalize_dialect(name)
    cls = _REGISTRY.get(dialect)
    if cls is None:
        raise ValueError(
            f"No backend for dialect {name!r}. Available: {list(_REGISTRY.keys())}"
        )
    return cls


def connect(config: DatabaseConfig) -> Connection:
    """Open a connection for *config* with the matching backend."""
    return get_backend(config.dialect)(config)


def _ensure_builtins() -> None:
    """Lazily register built-in backends on first access."""
    global _BUILTINS_LOADED
    if _BUILTINS_LOADED:
        return
    _BUILTINS_LOADED = True

    from polydb.backends.mysql import MySQLConnection
    from polydb.backends.postgresql import PostgreSQLConnection
    from polydb.backends.sqlite import SQLiteConnection

    # Backends registered explicitly take precedence.
    _REGISTRY.setdefault("sqlite", SQLiteConnection)
    _REGISTRY.setdefault("mysql", MySQLConnection)
    _REGISTRY.setdefault("postgresql", PostgreSQLConnection)
