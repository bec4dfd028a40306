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

"""Primary / secondary connection slots.

A :class:`ConnectionManager` is created once by the host application and
passed to whatever needs a database (dependency injection, no global
accessor).  Each slot is opened on first access and cached until
:meth:`ConnectionManager.close`.

Usage::

    manager = ConnectionManager(
        DatabaseConfig("mysql", database="app", user="app", prefix="app"),
        DatabaseConfig("sqlite", database="data/archive.db"),
    )
    rows = manager.primary.get_results("SELECT * FROM `#__users`")
    manager.close()
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from polydb.backends import get_backend
from polydb.config import DatabaseConfig
from polydb.connection import Connection

logger = logging.getLogger(__name__)

PRIMARY = "primary"
SECONDARY = "secondary"
SLOTS = (PRIMARY, SECONDARY)


class ConnectionManager:
    """Lazily opens and caches exactly two named connections.

    Without a secondary configuration the secondary slot resolves to the
    primary connection.  The backend of each slot is chosen from its
    configuration when the manager is built and never changes.
    """

    def __init__(
        self,
        primary: DatabaseConfig,
        secondary: DatabaseConfig | None = None,
    ) -> None:
        self._configs: dict[str, DatabaseConfig | None] = {
            PRIMARY: primary,
            SECONDARY: secondary,
        }
        self._backends = {
            slot: get_backend(config.dialect)
            for slot, config in self._configs.items()
            if config is not None
        }
        self._connections: dict[str, Connection] = {}

    @classmethod
    def from_mapping(cls, settings: Mapping[str, Any]) -> ConnectionManager:
        """Build from the framework's flat settings keys.

        ``db_type``, ``connect_ip``, ``connect_login``, ... configure the
        primary slot; the same keys with a ``2`` suffix configure the
        secondary slot when ``db_type2`` is present.
        """
        primary = DatabaseConfig.from_mapping(settings)
        secondary = None
        if settings.get("db_type2"):
            secondary = DatabaseConfig.from_mapping(settings, suffix="2")
        return cls(primary, secondary)

    def _resolve(self, name: str) -> str:
        if name not in SLOTS:
            raise ValueError(f"Unknown connection slot {name!r}. Available: {list(SLOTS)}")
        if name == SECONDARY and self._configs[SECONDARY] is None:
            return PRIMARY
        return name

    def get(self, name: str = PRIMARY) -> Connection:
        """Return the connection in slot *name*, opening it on first use.

        Raises :class:`~polydb.errors.DatabaseConnectionError` if the
        connection cannot be opened.
        """
        slot = self._resolve(name)
        conn = self._connections.get(slot)
        if conn is None:
            config = self._configs[slot]
            conn = self._backends[slot](config)
            self._connections[slot] = conn
            logger.info("Opened %s connection (%s)", slot, config.dialect)
        return conn

    @property
    def primary(self) -> Connection:
        return self.get(PRIMARY)

    @property
    def secondary(self) -> Connection:
        return self.get(SECONDARY)

    def dialect(self, name: str = PRIMARY) -> str:
        """Dialect of slot *name*, without opening the connection."""
        return self._configs[self._resolve(name)].dialect

    def is_open(self, name: str = PRIMARY) -> bool:
        return self._resolve(name) in self._connections

    def reconnect(self, name: str = PRIMARY) -> Connection:
        """Close slot *name* (if open) and open it again."""
        slot = self._resolve(name)
        conn = self._connections.pop(slot, None)
        if conn is not None:
            conn.close()
        return self.get(slot)

    def close(self) -> None:
        """Close every open connection.  The slots reopen on next access."""
        for slot, conn in list(self._connections.items()):
            conn.close()
            logger.debug("Closed %s connection", slot)
        self._connections.clear()

    def __enter__(self) -> ConnectionManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
