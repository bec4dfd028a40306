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

"""Tests for polydb.config — DatabaseConfig loaders."""

from __future__ import annotations

import pytest

from polydb import DatabaseConfig


class TestDatabaseConfig:
    def test_defaults(self):
        config = DatabaseConfig("MariaDB", database="app")
        assert config.dialect == "mysql"
        assert config.port == 3306
        assert config.host == "localhost"
        assert config.charset == "utf8mb4"

    def test_postgresql_port(self):
        assert DatabaseConfig("postgres", database="app").port == 5432

    def test_port_string_coerced(self):
        assert DatabaseConfig("mysql", port="3307").port == 3307

    def test_sqlite_requires_database(self):
        with pytest.raises(ValueError):
            DatabaseConfig("sqlite")

    def test_unknown_dialect(self):
        with pytest.raises(ValueError):
            DatabaseConfig("oracle", database="x")


class TestFromMapping:
    SETTINGS = {
        "db_type": "mysql",
        "connect_ip": "db.local",
        "connect_login": "app",
        "connect_pass": "secret",
        "connect_dbname": "site",
        "prefix": "jos",
        "db_type2": "sqlite",
        "connect_dbname2": "/tmp/archive.db",
    }

    def test_primary_keys(self):
        config = DatabaseConfig.from_mapping(self.SETTINGS)
        assert config.dialect == "mysql"
        assert config.host == "db.local"
        assert config.user == "app"
        assert config.password == "secret"
        assert config.database == "site"
        assert config.prefix == "jos"

    def test_suffix(self):
        config = DatabaseConfig.from_mapping(self.SETTINGS, suffix="2")
        assert config.dialect == "sqlite"
        assert config.database == "/tmp/archive.db"
        assert config.prefix == ""

    def test_missing_type(self):
        with pytest.raises(KeyError):
            DatabaseConfig.from_mapping({}, suffix="2")


class TestFromEnv:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("POLYDB_DIALECT", "pgsql")
        monkeypatch.setenv("POLYDB_DATABASE", "app")
        monkeypatch.setenv("POLYDB_PORT", "6543")
        monkeypatch.setenv("POLYDB_TABLE_PREFIX", "x")
        monkeypatch.setenv("POLYDB_TIMEZONE", "UTC")
        config = DatabaseConfig.from_env()
        assert config.dialect == "postgresql"
        assert config.port == 6543
        assert config.prefix == "x"
        assert config.timezone == "UTC"

    def test_missing_dialect(self, monkeypatch):
        monkeypatch.delenv("POLYDB_DIALECT", raising=False)
        with pytest.raises(KeyError):
            DatabaseConfig.from_env()
