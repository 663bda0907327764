"""
Tests for the heuristic SQL structure extractor
"""

import time

import pytest

from query_advisor.core.sql.structure_extractor import SqlStructure, extract


class TestTotality:
    """extract() must return a structure for any input"""

    @pytest.mark.parametrize("value", [None, "", "   \n\t", 42, ["SELECT 1"], b"\xff\xfe\x00garbage"])
    def test_degenerate_inputs_yield_empty_structure(self, value):
        structure = extract(value)
        assert isinstance(structure, SqlStructure)
        assert structure.tables == []
        assert structure.joins == []
        assert structure.has_where is False

    def test_bytes_are_decoded(self):
        structure = extract(b"SELECT id FROM users WHERE id = 1")
        assert structure.tables == ["users"]

    @pytest.mark.parametrize("value", [
        "SELECT ((( FROM",
        "))) WHERE OR JOIN ON (",
        "SELECT * FROM a JOIN JOIN JOIN",
        "'unterminated literal FROM t WHERE x = 'y",
        "SELECT 1; DROP TABLE x; --",
    ])
    def test_malformed_sql_does_not_raise(self, value):
        assert isinstance(extract(value), SqlStructure)

    def test_same_input_same_structure(self):
        sql = "SELECT a.id FROM a JOIN b ON a.id = b.a_id WHERE a.x = 1 ORDER BY a.id"
        assert extract(sql) == extract(sql)


class TestTablesAndJoins:

    def test_single_table(self):
        structure = extract("SELECT * FROM orders WHERE customer_id = 42 ORDER BY created_at;")
        assert structure.tables == ["orders"]
        assert structure.selects_all_columns is True
        assert structure.joins == []

    def test_aliases_and_join_conditions(self):
        structure = extract(
            "SELECT o.id, c.name FROM orders o "
            "INNER JOIN customers AS c ON c.id = o.customer_id "
            "LEFT JOIN regions r USING (region_id)"
        )
        assert structure.tables == ["orders", "customers", "regions"]
        assert structure.aliases == {"o": "orders", "c": "customers", "r": "regions"}
        assert [j.join_type for j in structure.joins] == ["INNER JOIN", "LEFT JOIN"]
        assert structure.joins[0].left_table == "orders"
        assert structure.joins[0].right_table == "customers"
        assert structure.joins[0].has_on_clause is True
        assert structure.joins[1].has_using_clause is True
        assert structure.joins[1].has_on_clause is False

    def test_join_without_condition(self):
        structure = extract("SELECT * FROM a JOIN b WHERE a.x = 1")
        assert len(structure.joins) == 1
        assert structure.joins[0].has_on_clause is False
        assert structure.joins[0].has_using_clause is False

    def test_comma_separated_tables_are_not_joins(self):
        structure = extract("SELECT * FROM a, b WHERE a.id = b.id")
        assert structure.tables == ["a", "b"]
        assert structure.joins == []

    def test_schema_qualified_table_keeps_case(self):
        structure = extract("select id from Sales.OrderLines")
        assert structure.tables == ["Sales.OrderLines"]

    def test_tables_inside_subqueries_are_collected(self):
        structure = extract("SELECT id FROM users WHERE id IN (SELECT user_id FROM orders WHERE total > 100)")
        assert structure.tables == ["users", "orders"]
        assert structure.subquery_count == 1

    def test_derived_table_alias(self):
        structure = extract("SELECT t.n FROM (SELECT COUNT(*) AS n FROM logs) t JOIN users u ON u.id = t.n")
        assert structure.aliases["t"] == "(subquery)"
        assert "logs" in structure.tables
        assert structure.joins[0].left_table == "t"

    def test_every_nesting_level_is_scanned(self):
        structure = extract(
            "SELECT a FROM x WHERE a IN (SELECT b FROM y WHERE b IN (SELECT c FROM z WHERE c > 0))"
        )
        assert structure.tables == ["x", "y", "z"]
        assert structure.subquery_count == 2

    def test_select_inside_literal_is_not_a_subquery(self):
        structure = extract("SELECT id FROM t WHERE note = '(select x)'")
        assert structure.subquery_count == 0

    def test_deep_nesting_extracts_quickly(self):
        depth = 2000
        sql = "SELECT * FROM t WHERE id IN " + "(SELECT id FROM t WHERE id IN " * depth + "(1)" + ")" * depth

        started = time.perf_counter()
        structure = extract(sql)
        elapsed = time.perf_counter() - started

        assert structure.subquery_count == depth
        assert structure.tables == ["t"]
        assert [c.name for c in structure.where_columns] == ["id"]
        assert elapsed < 5.0


class TestWhereClause:

    def test_where_columns_in_order_without_duplicates(self):
        structure = extract("SELECT id FROM users WHERE status = 'active' AND age > 18 AND STATUS <> 'x'")
        assert [c.name for c in structure.where_columns] == ["status", "age"]

    def test_or_in_where(self):
        assert extract("SELECT id FROM t WHERE a = 1 OR b = 2").has_or_in_where is True
        assert extract("SELECT id FROM t WHERE a = 1 AND b = 2").has_or_in_where is False

    def test_or_inside_literal_is_ignored(self):
        structure = extract("SELECT id FROM t WHERE name = 'this or that'")
        assert structure.has_or_in_where is False

    def test_or_in_select_list_is_not_where_or(self):
        structure = extract("SELECT color FROM t WHERE a = 1")
        assert structure.has_or_in_where is False

    def test_function_wrapped_column(self):
        structure = extract("SELECT id FROM users WHERE LOWER(email) = 'a@b.com' AND id > 3")
        by_name = {c.name: c for c in structure.where_columns}
        assert by_name["email"].wrapped_in_function is True
        assert by_name["id"].wrapped_in_function is False

    def test_leading_wildcard_like(self):
        structure = extract("SELECT id FROM products WHERE name LIKE '%phone' AND sku LIKE 'AB%'")
        by_name = {c.name: c for c in structure.where_columns}
        assert by_name["name"].leading_wildcard_like is True
        assert by_name["sku"].leading_wildcard_like is False

    def test_qualified_where_column(self):
        structure = extract("SELECT o.id FROM orders o WHERE o.status = 'paid'")
        assert structure.where_columns[0].name == "o.status"
        assert structure.where_columns[0].column == "status"

    def test_subquery_where_does_not_end_outer_where(self):
        structure = extract(
            "SELECT id FROM users WHERE id IN (SELECT user_id FROM orders WHERE total > 5) ORDER BY id"
        )
        assert structure.has_where is True
        assert structure.order_by_columns == ["id"]
        assert [c.name for c in structure.where_columns] == ["id"]


class TestOtherClauses:

    def test_group_and_order_by(self):
        structure = extract(
            "SELECT customer_id, SUM(total) FROM orders GROUP BY customer_id "
            "ORDER BY SUM(total) DESC, customer_id ASC NULLS LAST"
        )
        assert structure.group_by_columns == ["customer_id"]
        assert structure.order_by_columns == ["SUM(total)", "customer_id"]
        assert structure.select_columns == ["customer_id"]
        assert structure.select_has_aggregate is True

    @pytest.mark.parametrize("sql", [
        "SELECT id FROM t ORDER BY id LIMIT 10",
        "SELECT id FROM t ORDER BY id FETCH FIRST 10 ROWS ONLY",
        "SELECT TOP 10 id FROM t ORDER BY id",
    ])
    def test_limit_variants(self, sql):
        assert extract(sql).has_limit is True

    def test_limit_inside_subquery_does_not_count(self):
        structure = extract("SELECT id FROM t WHERE id IN (SELECT id FROM u LIMIT 5) ORDER BY id")
        assert structure.has_limit is False

    def test_aggregates_with_distinct(self):
        structure = extract("SELECT COUNT(DISTINCT o.id), count(*), SUM(i.qty) FROM o JOIN i ON i.o = o.id")
        assert [(a.function, a.distinct) for a in structure.aggregates] == [
            ("COUNT", True), ("COUNT", False), ("SUM", False),
        ]

    def test_window_function_is_not_a_select_aggregate(self):
        structure = extract("SELECT id, SUM(total) OVER (PARTITION BY customer_id) FROM orders")
        assert structure.select_has_aggregate is False
        assert structure.select_columns == ["id"]

    def test_star_with_alias(self):
        assert extract("SELECT o.* FROM orders o").selects_all_columns is True
        assert extract("SELECT COUNT(*) FROM orders").selects_all_columns is False

    @pytest.mark.parametrize("sql", [
        "SELECT id FROM t USE INDEX (idx_a) WHERE a = 1",
        "SELECT id FROM t WITH (INDEX(idx_a)) WHERE a = 1",
        "SELECT /*+ INDEX(t idx_a) */ id FROM t WHERE a = 1",
    ])
    def test_index_hints(self, sql):
        assert extract(sql).has_index_hint is True

    def test_keywords_in_comments_are_ignored(self):
        structure = extract("SELECT id FROM t -- WHERE a = 1 OR b = 2\n")
        assert structure.has_where is False
        assert structure.has_or_in_where is False

    def test_to_dict_is_json_ready(self):
        data = extract("SELECT a FROM t JOIN u ON t.id = u.id").to_dict()
        assert data["tables"] == ["t", "u"]
        assert data["joins"][0]["has_on_clause"] is True
