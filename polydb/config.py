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

"""Connection configuration.

Settings are owned by the host application's configuration layer; this
module only gives them a typed shape.  Two loaders are provided:

* :meth:`DatabaseConfig.from_mapping` reads the framework's flat keys
  (``db_type``, ``connect_ip``, ``connect_login``, ``connect_pass``,
  ``connect_dbname``, ``prefix``), optionally with a numeric suffix
  (``db_type2`` ...) for the secondary connection.
* :meth:`DatabaseConfig.from_env` reads ``POLYDB_*`` environment variables.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from polydb.dialects import MYSQL, POSTGRESQL, SQLITE, normalize_dialect

DEFAULT_PORTS = {MYSQL: 3306, POSTGRESQL: 5432}


@dataclass
class DatabaseConfig:
    """Everything needed to open one connection.

    Attributes:
        dialect: ``"mysql"``, ``"sqlite"`` or ``"postgresql"`` (aliases such
            as ``"mariadb"`` or ``"postgres"`` are accepted).
        database: Database name, or the file path for SQLite
            (``":memory:"`` for an in-memory database).
        host / port / user / password: Server credentials (ignored by SQLite).
        prefix: Table-name prefix substituted for the ``#__`` token.
        charset: Client character set (MySQL ``charset``, PostgreSQL
            ``client_encoding``).
        timezone: Session time zone, e.g. ``"+00:00"`` or ``"Europe/Rome"``.
        options: Extra keyword arguments passed to the driver's ``connect()``
            (``connect_timeout``, ``timeout``, ``sslmode`` ...).
    """

    dialect: str
    database: str = ""
    host: str = "localhost"
    port: int | None = None
    user: str = ""
    password: str = ""
    prefix: str = ""
    charset: str = "utf8mb4"
    timezone: str | None = None
    options: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.dialect = normalize_dialect(self.dialect)
        if self.port is None:
            self.port = DEFAULT_PORTS.get(self.dialect)
        elif not isinstance(self.port, int):
            self.port = int(self.port)
        if self.dialect == SQLITE and not self.database:
            raise ValueError("SQLite configuration requires a database path")

    @classmethod
    def from_mapping(cls, settings: Mapping[str, Any], suffix: str = "") -> DatabaseConfig:
        """Build a config from the framework's flat settings keys.

        Raises :class:`KeyError` if ``db_type<suffix>`` is missing.
        """
        def get(key: str, default: Any = None) -> Any:
            return settings.get(f"{key}{suffix}", default)

        dialect = get("db_type")
        if dialect is None:
            raise KeyError(f"db_type{suffix}")
        return cls(
            dialect=dialect,
            database=get("connect_dbname", "") or "",
            host=get("connect_ip", "localhost") or "localhost",
            port=get("connect_port"),
            user=get("connect_login", "") or "",
            password=get("connect_pass", "") or "",
            prefix=get("prefix", "") or "",
            charset=get("charset", "utf8mb4") or "utf8mb4",
            timezone=get("time_zone"),
        )

    @classmethod
    def from_env(cls, prefix: str = "POLYDB_") -> DatabaseConfig:
        """Build a config from environment variables.

        Reads ``<prefix>DIALECT`` (required), ``DATABASE``, ``HOST``,
        ``PORT``, ``USER``, ``PASSWORD``, ``TABLE_PREFIX``, ``CHARSET`` and
        ``TIMEZONE``.
        """
        env = os.environ
        dialect = env.get(f"{prefix}DIALECT")
        if not dialect:
            raise KeyError(f"{prefix}DIALECT")
        port = env.get(f"{prefix}PORT")
        return cls(
            dialect=dialect,
            database=env.get(f"{prefix}DATABASE", ""),
            host=env.get(f"{prefix}HOST", "localhost"),
            port=int(port) if port else None,
            user=env.get(f"{prefix}USER", ""),
            password=env.get(f"{prefix}PASSWORD", ""),
            prefix=env.get(f"{prefix}TABLE_PREFIX", ""),
            charset=env.get(f"{prefix}CHARSET", "utf8mb4"),
            timezone=env.get(f"{prefix}TIMEZONE") or None,
        )
