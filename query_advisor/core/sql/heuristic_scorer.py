# query_advisor/core/sql/heuristic_scorer.py

"""
Free-path scorer. Inspects the raw query text with regexes instead of the
extracted structure; the rule messages and weights are shared with the
structural detector through the rule catalog.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .rule_catalog import HEURISTIC_BASE_SCORE, PatternCode, RULE_SPECS, assess

logger = logging.getLogger(__name__)

NO_ISSUES_MESSAGE = "No major issues found"
DEFAULT_TABLE = "your_table"
DEFAULT_COLUMN = "status"
REPLACEMENT_COLUMNS = "SELECT id, status, created_at"
ROW_LIMIT = 100

SELECT_STAR_RE = re.compile(r"select\s+\*", re.IGNORECASE)
WHERE_RE = re.compile(r"\bwhere\b", re.IGNORECASE)
INDEX_RE = re.compile(r"\bindex\b", re.IGNORECASE)
ORDER_BY_RE = re.compile(r"\border\s+by\b", re.IGNORECASE)
LIMIT_RE = re.compile(r"\blimit\b|\bfetch\s+(?:first|next)\b|\bselect\s+(?:distinct\s+)?top\b", re.IGNORECASE)
LEADING_WILDCARD_RE = re.compile(r"like\s+n?'%", re.IGNORECASE)
OR_RE = re.compile(r"\bor\b", re.IGNORECASE)
JOIN_RE = re.compile(r"\bjoin\b", re.IGNORECASE)
JOIN_CONDITION_RE = re.compile(r"\bon\b|\busing\b", re.IGNORECASE)
SUBQUERY_RE = re.compile(r"\(\s*select\b", re.IGNORECASE)
FROM_TABLE_RE = re.compile(r"from\s+(\w+)", re.IGNORECASE)
WHERE_COLUMN_RE = re.compile(r"where\s+(\w+)", re.IGNORECASE)


@dataclass(frozen=True)
class AnalysisResult:
    """Free-path analysis, identical in shape to what the API returns."""
    score: int
    severity: str
    issues: List[str] = field(default_factory=list)
    suggested_index: str = ""
    rewritten_query: str = ""
    speedup_estimate: float = 0.1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "severity": self.severity,
            "issues": list(self.issues),
            "suggestedIndex": self.suggested_index,
            "rewrittenQuery": self.rewritten_query,
            "speedupEstimate": self.speedup_estimate,
        }


def _lacks_limit(text: str) -> bool:
    return bool(ORDER_BY_RE.search(text)) and not LIMIT_RE.search(text)


def _has_or_after_where(text: str) -> bool:
    match = WHERE_RE.search(text)
    return bool(match) and bool(OR_RE.search(text, match.end()))


def _has_unconditioned_join(text: str) -> bool:
    return len(JOIN_RE.findall(text)) > len(JOIN_CONDITION_RE.findall(text))


def _fired_codes(text: str) -> List[PatternCode]:
    checks = (
        (PatternCode.SELECT_STAR, bool(SELECT_STAR_RE.search(text))),
        (PatternCode.MISSING_INDEX, bool(WHERE_RE.search(text)) and not INDEX_RE.search(text)),
        (PatternCode.ORDER_BY_WITHOUT_LIMIT, _lacks_limit(text)),
        (PatternCode.LEADING_WILDCARD_LIKE, bool(LEADING_WILDCARD_RE.search(text))),
        (PatternCode.OR_IN_WHERE, _has_or_after_where(text)),
        (PatternCode.JOIN_WITHOUT_CONDITION, _has_unconditioned_join(text)),
        (PatternCode.SUBQUERY, bool(SUBQUERY_RE.search(text))),
    )
    return [code for code, fired in checks if fired]


def suggest_index(query: str) -> str:
    table_match = FROM_TABLE_RE.search(query)
    column_match = WHERE_COLUMN_RE.search(query)
    table = table_match.group(1) if table_match else DEFAULT_TABLE
    column = column_match.group(1) if column_match else DEFAULT_COLUMN
    return f"CREATE INDEX idx_{table}_{column}\nON {table}({column});"


def rewrite_query(query: str, codes: List[PatternCode]) -> str:
    rewritten = query.strip()
    if PatternCode.SELECT_STAR in codes:
        rewritten = SELECT_STAR_RE.sub(REPLACEMENT_COLUMNS, rewritten)
    if PatternCode.ORDER_BY_WITHOUT_LIMIT in codes:
        if rewritten.endswith(";"):
            rewritten = rewritten[:-1] + f"\nLIMIT {ROW_LIMIT};"
        else:
            rewritten += f"\nLIMIT {ROW_LIMIT};"
    return rewritten


def estimate_speedup(issue_count: int) -> float:
    if issue_count == 0:
        return 0.1
    return round(min(0.9, 0.2 + 0.15 * issue_count), 2)


def score(query: str) -> AnalysisResult:
    """
    Score a query for the free path.

    Args:
        query: raw SQL text, assumed non-empty (callers validate)

    Returns:
        AnalysisResult with score, severity, issues and the local rewrite
    """
    text = (query or "").lower()
    codes = _fired_codes(text)
    specs = [RULE_SPECS[code] for code in codes]
    assessment = assess(specs, base_score=HEURISTIC_BASE_SCORE)

    issues = [spec.message for spec in specs] or [NO_ISSUES_MESSAGE]
    suggested_index = suggest_index(query) if PatternCode.MISSING_INDEX in codes else ""

    result = AnalysisResult(
        score=assessment.score,
        severity=assessment.severity.value,
        issues=issues,
        suggested_index=suggested_index,
        rewritten_query=rewrite_query(query or "", codes),
        speedup_estimate=estimate_speedup(len(codes)),
    )
    logger.debug(f"Heuristic score {result.score} ({result.severity}) with {len(codes)} issue(s)")
    return result
