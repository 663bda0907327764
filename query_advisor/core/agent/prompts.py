# query_advisor/core/agent/prompts.py

import json
import logging
from typing import List, Optional

from query_advisor.core.sql.pattern_detector import DetectedPattern
from query_advisor.core.sql.structure_extractor import SqlStructure

logger = logging.getLogger(__name__)

REQUIRED_RESPONSE_KEYS = ("analysis", "warnings", "rewrittenQuery", "recommendedIndexes", "notes")


ADVISOR_PROMPT = """You are an AI SQL Query Advisor.
You analyze query structure, detect logical performance issues,
and propose safer rewrites (CTE decomposition, DISTINCT fixes,
index recommendations, avoiding join explosion).

Database engine: {db}

Here is the SQL query:
{query}

Here is the extracted structure:
{structure}

Here are the detected patterns:
{patterns}"""


SCHEMA_SECTION = """

Table Schema (provided by user):
{schema}

Use this schema information to provide more accurate index recommendations and query optimizations."""


EXECUTION_PLAN_SECTION = """

Execution Plan (EXPLAIN output):
{execution_plan}

Analyze this execution plan to identify performance bottlenecks, missing indexes, and inefficient operations."""


RESPONSE_CONTRACT = """

Return VALID JSON with this structure:
{{
  "analysis": "... detailed explanation of the query structure and issues ...",
  "warnings": ["...", "...", "..."],
  "rewrittenQuery": "... safer rewritten SQL query ...",
  "recommendedIndexes": "... CREATE INDEX statements or index recommendations ...",
  "notes": "... additional notes, best practices, or recommendations ..."
}}
Return exactly these five keys and nothing else.

Focus on:
- JOIN explosion and row multiplication
- COUNT(*) overcounting due to JOINs
- Missing DISTINCT in aggregations with multiple JOINs
- Incorrect or missing GROUP BY clauses
- Non-sargable filters (LIKE %, OR conditions, LOWER()/UPPER())
- Key/value metadata table JOINs (e.g. WordPress wp_postmeta)
- Proper aggregation placement
- Safer query rewrites using CTEs, correlated subqueries, or derived tables
- Index recommendations based on WHERE, JOIN, and ORDER BY clauses

If the query is already well-optimized, explain why and provide minimal suggestions.
Keep the rewritten query executable and maintain the original semantics."""


def build_prompt(query: str, db: str, structure: SqlStructure, patterns: List[DetectedPattern],
                 schema: Optional[str] = None, execution_plan: Optional[str] = None) -> str:
    """
    Assemble the advisor prompt.

    The schema and execution plan sections are included only when the
    corresponding text is non-blank.
    """
    prompt = ADVISOR_PROMPT.format(
        db=db,
        query=query,
        structure=json.dumps(structure.to_dict(), indent=2),
        patterns=json.dumps([p.to_dict() for p in patterns], indent=2),
    )

    if schema and schema.strip():
        prompt += SCHEMA_SECTION.format(schema=schema)

    if execution_plan and execution_plan.strip():
        prompt += EXECUTION_PLAN_SECTION.format(execution_plan=execution_plan)

    prompt += RESPONSE_CONTRACT.format()
    logger.debug(
        f"Built advisor prompt for {db}: {len(patterns)} patterns, "
        f"schema={'yes' if schema and schema.strip() else 'no'}, "
        f"plan={'yes' if execution_plan and execution_plan.strip() else 'no'}, {len(prompt)} chars"
    )
    return prompt
