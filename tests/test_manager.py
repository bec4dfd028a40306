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

"""Tests for polydb.manager — primary / secondary connection slots."""

from __future__ import annotations

import pytest

from polydb import ConnectionManager, DatabaseConfig


def _config(prefix=""):
    return DatabaseConfig("sqlite", database=":memory:", prefix=prefix)


class TestSlots:
    def test_lazy_open_and_cache(self):
        manager = ConnectionManager(_config())
        assert not manager.is_open()
        conn = manager.primary
        assert manager.is_open()
        assert manager.get("primary") is conn

    def test_secondary_falls_back_to_primary(self):
        manager = ConnectionManager(_config())
        assert manager.secondary is manager.primary

    def test_two_distinct_connections(self):
        manager = ConnectionManager(_config("a"), _config("b"))
        assert manager.primary is not manager.secondary
        assert manager.primary.prefix == "a"
        assert manager.secondary.prefix == "b"

    def test_unknown_slot(self):
        manager = ConnectionManager(_config())
        with pytest.raises(ValueError, match="Unknown connection slot"):
            manager.get("tertiary")

    def test_dialect_without_opening(self):
        manager = ConnectionManager(_config())
        assert manager.dialect("secondary") == "sqlite"
        assert not manager.is_open()


class TestLifecycle:
    def test_close_and_reopen(self):
        manager = ConnectionManager(_config())
        first = manager.primary
        manager.close()
        assert not manager.is_open()
        assert not first.check_connection()
        assert manager.primary is not first

    def test_reconnect(self):
        manager = ConnectionManager(_config())
        first = manager.primary
        second = manager.reconnect()
        assert second is not first
        assert second.check_connection()

    def test_context_manager(self):
        with ConnectionManager(_config()) as manager:
            conn = manager.primary
        assert not conn.check_connection()


class TestFromMapping:
    def test_primary_only(self):
        manager = ConnectionManager.from_mapping(
            {"db_type": "sqlite", "connect_dbname": ":memory:", "prefix": "app"}
        )
        assert manager.primary.prefix == "app"
        assert manager.secondary is manager.primary

    def test_with_secondary(self):
        manager = ConnectionManager.from_mapping({
            "db_type": "sqlite",
            "connect_dbname": ":memory:",
            "db_type2": "sqlite3",
            "connect_dbname2": ":memory:",
            "prefix2": "arc",
        })
        assert manager.secondary is not manager.primary
        assert manager.secondary.prefix == "arc"
