# query_advisor/core/sql/rule_catalog.py

"""
Anti-pattern catalog and scoring policy shared by the structural detector and
the heuristic scorer.

Weights are point deductions from a base score. Tier floors can only raise the
severity of a query. The numeric values are policy constants, not laws of SQL
performance.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple


class SeverityTier(Enum):
    """Coarse risk classification of a query."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)


_TIER_ORDER = (SeverityTier.LOW, SeverityTier.MEDIUM, SeverityTier.HIGH, SeverityTier.CRITICAL)


class PatternCode(Enum):
    """One entry per detection rule."""
    SELECT_STAR = "select_star"
    MISSING_INDEX = "missing_index"
    ORDER_BY_WITHOUT_LIMIT = "order_by_without_limit"
    LEADING_WILDCARD_LIKE = "leading_wildcard_like"
    OR_IN_WHERE = "or_in_where"
    JOIN_WITHOUT_CONDITION = "join_without_condition"
    SUBQUERY = "subquery"
    JOIN_FANOUT_AGGREGATE = "join_fanout_aggregate"
    MISSING_GROUP_BY_COLUMNS = "missing_group_by_columns"
    FUNCTION_WRAPPED_PREDICATE = "function_wrapped_predicate"
    METADATA_TABLE_JOIN = "metadata_table_join"


@dataclass(frozen=True)
class RuleSpec:
    """Policy attached to a pattern code."""
    code: PatternCode
    weight: int
    message: str
    tier_floor: Optional[SeverityTier] = None


RULE_SPECS = {
    PatternCode.SELECT_STAR: RuleSpec(
        PatternCode.SELECT_STAR, 15,
        "Using SELECT * retrieves unnecessary columns",
        SeverityTier.LOW,
    ),
    PatternCode.MISSING_INDEX: RuleSpec(
        PatternCode.MISSING_INDEX, 20,
        "Missing index on WHERE clause columns",
        SeverityTier.HIGH,
    ),
    PatternCode.ORDER_BY_WITHOUT_LIMIT: RuleSpec(
        PatternCode.ORDER_BY_WITHOUT_LIMIT, 10,
        "ORDER BY without LIMIT can cause performance issues",
    ),
    PatternCode.LEADING_WILDCARD_LIKE: RuleSpec(
        PatternCode.LEADING_WILDCARD_LIKE, 15,
        "Leading wildcard in LIKE prevents index usage",
        SeverityTier.HIGH,
    ),
    PatternCode.OR_IN_WHERE: RuleSpec(
        PatternCode.OR_IN_WHERE, 10,
        "OR conditions may prevent index optimization",
    ),
    PatternCode.JOIN_WITHOUT_CONDITION: RuleSpec(
        PatternCode.JOIN_WITHOUT_CONDITION, 25,
        "JOIN without proper ON clause",
        SeverityTier.CRITICAL,
    ),
    PatternCode.SUBQUERY: RuleSpec(
        PatternCode.SUBQUERY, 12,
        "Subquery detected - consider using JOIN instead",
    ),
    PatternCode.JOIN_FANOUT_AGGREGATE: RuleSpec(
        PatternCode.JOIN_FANOUT_AGGREGATE, 15,
        "Aggregate without DISTINCT over a JOIN may overcount rows (join fan-out)",
        SeverityTier.MEDIUM,
    ),
    PatternCode.MISSING_GROUP_BY_COLUMNS: RuleSpec(
        PatternCode.MISSING_GROUP_BY_COLUMNS, 20,
        "Non-aggregated SELECT columns are missing from GROUP BY",
        SeverityTier.HIGH,
    ),
    PatternCode.FUNCTION_WRAPPED_PREDICATE: RuleSpec(
        PatternCode.FUNCTION_WRAPPED_PREDICATE, 15,
        "Function applied to a WHERE column prevents index usage",
        SeverityTier.HIGH,
    ),
    PatternCode.METADATA_TABLE_JOIN: RuleSpec(
        PatternCode.METADATA_TABLE_JOIN, 10,
        "JOIN on a key/value metadata table - consider a composite index or pivoting with a CTE",
    ),
}

# (upper bound exclusive, tier), most severe first
SCORE_THRESHOLDS: Tuple[Tuple[int, SeverityTier], ...] = (
    (40, SeverityTier.CRITICAL),
    (60, SeverityTier.HIGH),
    (75, SeverityTier.MEDIUM),
)

STRUCTURED_BASE_SCORE = 100
HEURISTIC_BASE_SCORE = 85


@dataclass(frozen=True)
class Assessment:
    score: int
    severity: SeverityTier


def most_severe(*tiers: Optional[SeverityTier]) -> SeverityTier:
    """Return the most severe of the given tiers; ``None`` entries are ignored."""
    result = SeverityTier.LOW
    for tier in tiers:
        if tier is not None and tier.rank > result.rank:
            result = tier
    return result


def tier_for_score(score: int) -> SeverityTier:
    for upper_bound, tier in SCORE_THRESHOLDS:
        if score < upper_bound:
            return tier
    return SeverityTier.LOW


def clamp_score(score: int) -> int:
    return max(0, min(100, score))


def assess(specs: Iterable[RuleSpec], base_score: int = STRUCTURED_BASE_SCORE) -> Assessment:
    """
    Combine fired rules into a score and a severity tier.

    The tier is the more severe of the highest rule floor and the tier implied
    by the clamped score, so adding a finding never lowers the tier.
    """
    specs = list(specs)
    score = clamp_score(base_score - sum(spec.weight for spec in specs))
    floor = most_severe(*(spec.tier_floor for spec in specs))
    return Assessment(score=score, severity=most_severe(floor, tier_for_score(score)))
