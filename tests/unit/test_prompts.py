"""
Tests for advisor prompt assembly
"""

import json
import logging

import pytest

from query_advisor.core.agent.prompts import REQUIRED_RESPONSE_KEYS, build_prompt
from query_advisor.core.sql.pattern_detector import detect
from query_advisor.core.sql.structure_extractor import extract

QUERY = "SELECT * FROM wp_posts p JOIN wp_postmeta pm ON pm.post_id = p.ID WHERE pm.meta_key = 'price'"


@pytest.fixture
def structure():
    return extract(QUERY)


@pytest.fixture
def patterns(structure):
    return detect(structure)


class TestBuildPrompt:

    def test_contains_all_inputs(self, structure, patterns):
        prompt = build_prompt(QUERY, "mysql", structure, patterns)

        assert "Database engine: mysql" in prompt
        assert QUERY in prompt
        assert json.dumps(structure.to_dict(), indent=2) in prompt
        assert json.dumps([p.to_dict() for p in patterns], indent=2) in prompt
        assert "select_star" in prompt

    def test_lists_every_required_key(self, structure, patterns):
        prompt = build_prompt(QUERY, "mysql", structure, patterns)
        for key in REQUIRED_RESPONSE_KEYS:
            assert f'"{key}"' in prompt
        assert "Return VALID JSON with this structure" in prompt

    def test_focus_areas(self, structure, patterns):
        prompt = build_prompt(QUERY, "mysql", structure, patterns)
        for phrase in ("JOIN explosion", "COUNT(*) overcounting", "Missing DISTINCT", "GROUP BY",
                       "Non-sargable filters", "wp_postmeta", "aggregation placement", "CTEs",
                       "Index recommendations"):
            assert phrase in prompt

    def test_optional_sections_omitted_when_blank(self, structure, patterns):
        for schema, plan in ((None, None), ("", "   "), ("  \n", "")):
            prompt = build_prompt(QUERY, "postgresql", structure, patterns, schema=schema, execution_plan=plan)
            assert "Table Schema (provided by user):" not in prompt
            assert "Execution Plan (EXPLAIN output):" not in prompt

    def test_optional_sections_included(self, structure, patterns):
        schema = "CREATE TABLE wp_postmeta (meta_id bigint, post_id bigint, meta_key varchar(255));"
        plan = "Seq Scan on wp_postmeta  (cost=0.00..431.00 rows=1 width=8)"
        prompt = build_prompt(QUERY, "postgresql", structure, patterns, schema=schema, execution_plan=plan)

        assert "Table Schema (provided by user):\n" + schema in prompt
        assert "Execution Plan (EXPLAIN output):\n" + plan in prompt
        assert prompt.index("Table Schema") < prompt.index("Execution Plan") < prompt.index("Return VALID JSON")

    def test_braces_in_inputs_are_kept_verbatim(self, patterns):
        query = "SELECT '{not a placeholder}' FROM t"
        prompt = build_prompt(query, "sqlite", extract(query), [], schema="{schema}")
        assert "{not a placeholder}" in prompt
        assert "{schema}" in prompt
        assert "[]" in prompt

    def test_pure(self, structure, patterns):
        assert build_prompt(QUERY, "mysql", structure, patterns) == build_prompt(QUERY, "mysql", structure, patterns)

    def test_logs_prompt_summary(self, structure, patterns, caplog):
        with caplog.at_level(logging.DEBUG, logger="query_advisor.core.agent.prompts"):
            build_prompt(QUERY, "mysql", structure, patterns, schema="CREATE TABLE wp_posts (ID int)")

        assert f"Built advisor prompt for mysql: {len(patterns)} patterns, schema=yes, plan=no" in caplog.text
