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

"""Tests for polydb.query — fluent SELECT builder."""

from __future__ import annotations

import pytest

from polydb import DatabaseConfig, Query, connect


def _mem():
    conn = connect(DatabaseConfig("sqlite", database=":memory:", prefix="app"))
    conn.execute_script(
        "CREATE TABLE `#__items` (`id` INTEGER PRIMARY KEY, `grp` TEXT, `val` INTEGER);"
    )
    rows = [("x", 1), ("x", 1), ("y", 2), ("y", 2), ("z", 3), ("z", 3)]
    for grp, val in rows:
        conn.insert("#__items", {"grp": grp, "val": val})
    return conn


class TestCompile:
    def test_example_scenario(self):
        sql, params = (
            Query("t")
            .select("id,name")
            .where("status = ?", [1])
            .where("age > ?", [18], "AND")
            .order("name", "asc")
            .limit(0, 10)
            .compile()
        )
        assert sql == (
            "SELECT id,name FROM `t` WHERE (status = ?) AND (age > ?) "
            "ORDER BY name ASC LIMIT 0,10"
        )
        assert sql.count("WHERE") == 1
        assert params == [1, 18]

    @pytest.mark.parametrize("n", [1, 2, 3, 5])
    def test_n_where_groups(self, n):
        query = Query("t")
        joiners = ["AND" if i % 2 else "OR" for i in range(n)]
        for i, joiner in enumerate(joiners):
            query.where(f"c{i} = ?", [i], joiner)
        sql, params = query.compile()

        expected = "(c0 = ?)" + "".join(
            f" {joiners[i]} (c{i} = ?)" for i in range(1, n)
        )
        assert sql == f"SELECT * FROM `t` WHERE {expected}"
        assert params == list(range(n))

    def test_default_select_star(self):
        assert Query("t").compile() == ("SELECT * FROM `t`", [])

    def test_select_appends(self):
        sql, _ = Query("t").select("a").select(["b", "c"]).compile()
        assert sql == "SELECT a, b, c FROM `t`"

    def test_scalar_param_and_unknown_joiner(self):
        sql, params = Query("t").where("a = ?", 1).where("b = ?", 2, "XOR").compile()
        assert sql == "SELECT * FROM `t` WHERE (a = ?) AND (b = ?)"
        assert params == [1, 2]

    def test_none_is_a_parameter(self):
        sql, params = (
            Query("t").where("a <=> ?", None).where("b = ?", 2)
            .having("c <=> ?", None).compile()
        )
        assert sql == "SELECT * FROM `t` WHERE (a <=> ?) AND (b = ?) HAVING (c <=> ?)"
        assert params == [None, 2, None]

    def test_no_params_by_default(self):
        _, params = Query("t").where("a IS NULL").having("COUNT(*) > 1").compile()
        assert params == []

    def test_semicolons_stripped(self):
        sql, _ = Query("t").where("a = 1; DROP TABLE t").compile()
        assert ";" not in sql

    def test_where_in(self):
        sql, params = Query("t").where_in("id", [1, 2, 3]).where_in("x", []).compile()
        assert sql == "SELECT * FROM `t` WHERE (`id` IN (?, ?, ?))"
        assert params == [1, 2, 3]

    def test_from_fragments(self):
        sql, _ = (
            Query("#__users u")
            .from_("LEFT JOIN `#__groups` g ON g.id = u.group_id")
            .from_("`#__extra` e")
            .compile()
        )
        assert sql == (
            "SELECT * FROM #__users u LEFT JOIN `#__groups` g ON g.id = u.group_id , `#__extra` e"
        )

    def test_group_and_having(self):
        sql, params = (
            Query("t").select("grp, COUNT(*) AS n").group("grp")
            .where("val > ?", [0]).having("COUNT(*) > ?", [1]).compile()
        )
        assert sql == (
            "SELECT grp, COUNT(*) AS n FROM `t` WHERE (val > ?) GROUP BY grp HAVING (COUNT(*) > ?)"
        )
        assert params == [0, 1]

    def test_sort_mapping(self):
        sql, _ = Query("t").set_sort_mapping("author", "u.name").order("author", "desc").compile()
        assert sql.endswith("ORDER BY u.name DESC")

    def test_order_lists(self):
        sql, _ = Query("t").order(["a", "b"], ["asc", "DESC"]).compile()
        assert sql.endswith("ORDER BY a ASC, b DESC")

    def test_order_mismatch_raises(self):
        with pytest.raises(ValueError):
            Query("t").order(["a", "b"], ["asc"])

    def test_order_bad_direction_raises(self):
        with pytest.raises(ValueError):
            Query("t").order("a", "sideways")

    def test_limit_is_absolute(self):
        sql, _ = Query("t").limit(-5, -10).compile()
        assert sql.endswith("LIMIT 5,10")

    def test_postgresql_target(self):
        sql, _ = Query("t", dialect="postgresql").where("`a` = ?", [1]).limit(20, 10).compile()
        assert sql == 'SELECT * FROM "t" WHERE ("a" = ?) LIMIT 10 OFFSET 20'

    def test_prefix_token_left_for_connection(self):
        assert str(Query("#__t", dialect="sqlite")) == 'SELECT * FROM "#__t"'


class TestCompileTotal:
    def test_no_order_or_limit(self):
        query = Query("t").where("a = ?", [1]).order("b").limit(0, 5)
        sql, params = query.compile_total()
        assert sql == "SELECT COUNT(*) FROM `t` WHERE (a = ?)"
        assert "ORDER BY" not in sql and "LIMIT" not in sql
        assert params == [1]

    def test_same_from_where_group(self):
        query = Query("t").where("a = ?", [1]).group("b").order("b").limit(0, 5)
        sql, _ = query.compile()
        total, _ = query.compile_total()
        shared = "FROM `t` WHERE (a = ?) GROUP BY b"
        assert shared in sql
        assert shared in total
        assert "ORDER BY" not in total and "LIMIT" not in total

    def test_grouped_total_counts_groups(self):
        conn = _mem()
        query = Query("#__items", conn).select("grp").group("grp")
        assert len(query.get_results()) == 3
        assert query.total() == 3
        assert Query("#__items", conn).total() == 6


class TestClean:
    def test_clean_one_part(self):
        query = Query("t").where("a = 1").order("a").limit(0, 1)
        query.clean("where")
        assert not query.has_where()
        assert query.has_order()
        assert query.has_limit()

    def test_clean_all(self):
        query = Query("t").select("a").where("a = 1").group("a").having("1").order("a").limit(0, 1)
        query.clean()
        assert query.compile() == ("SELECT * FROM `t`", [])

    def test_clean_unknown_part(self):
        with pytest.raises(ValueError):
            Query("t").clean("everything")


class TestBoundHelpers:
    def test_get_results(self):
        conn = _mem()
        rows = Query("#__items", conn).where("`grp` = ?", "y").order("id").get_results()
        assert [r["id"] for r in rows] == [3, 4]

    def test_get_row_and_var(self):
        conn = _mem()
        row = Query("#__items", conn).order("id", "desc").get_row()
        assert row["id"] == 6
        assert Query("#__items", conn).select("MAX(`val`)").get_var() == 3

    def test_total_with_where(self):
        conn = _mem()
        assert Query("#__items", conn).where("`val` > ?", [1]).total() == 4

    def test_unbound_raises(self):
        with pytest.raises(ValueError):
            Query("t").get_results()
