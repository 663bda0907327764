# query_advisor/core/sql/pattern_detector.py

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Any, Tuple

from .rule_catalog import (
    Assessment, PatternCode, RuleSpec, RULE_SPECS, SeverityTier,
    STRUCTURED_BASE_SCORE, assess,
)
from .structure_extractor import SqlStructure

logger = logging.getLogger(__name__)

# Aggregates whose result changes when a JOIN duplicates rows; MIN/MAX do not
FANOUT_SENSITIVE_AGGREGATES = {
    "COUNT", "SUM", "AVG", "GROUP_CONCAT", "STRING_AGG", "ARRAY_AGG", "LISTAGG",
}

# Key/value side tables: wp_postmeta, user_meta, product_attributes, eav_values, ...
METADATA_TABLE_RE = re.compile(
    r"(?:meta$|_meta_|metadata$|_attributes?$|_properties$|_props$|_kv$|^eav_|_eav$)",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class DetectedPattern:
    """A single rule finding."""
    code: PatternCode
    message: str
    severity_weight: int
    tier_floor: Optional[SeverityTier] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "severityWeight": self.severity_weight,
        }


@dataclass(frozen=True)
class PatternRule:
    """A catalog entry bound to the structural test that fires it."""
    spec: RuleSpec
    applies: Callable[[SqlStructure], bool]
    detail: Optional[Callable[[SqlStructure], str]] = None

    def evaluate(self, structure: SqlStructure) -> Optional[DetectedPattern]:
        if not self.applies(structure):
            return None
        message = self.spec.message
        if self.detail:
            message = f"{message}: {self.detail(structure)}"
        return DetectedPattern(
            code=self.spec.code,
            message=message,
            severity_weight=self.spec.weight,
            tier_floor=self.spec.tier_floor,
        )


def _bare(name: str) -> str:
    return name.split(".")[-1].strip('"`[]').lower()


def _has_unconditioned_join(s: SqlStructure) -> bool:
    return any(not (j.has_on_clause or j.has_using_clause) for j in s.joins)


def _fanout_aggregates(s: SqlStructure) -> List[str]:
    return [a.function for a in s.aggregates if a.function in FANOUT_SENSITIVE_AGGREGATES and not a.distinct]


def _ungrouped_columns(s: SqlStructure) -> List[str]:
    if not (s.select_has_aggregate and s.select_columns):
        return []
    # GROUP BY 1, 2 refers to select-list positions, which are not tracked
    if any(item.strip().isdigit() for item in s.group_by_columns):
        return []
    grouped = {item.lower() for item in s.group_by_columns} | {_bare(item) for item in s.group_by_columns}
    return [col for col in s.select_columns if col.lower() not in grouped and _bare(col) not in grouped]


def _wrapped_columns(s: SqlStructure) -> List[str]:
    return [c.name for c in s.where_columns if c.wrapped_in_function]


def _metadata_tables(s: SqlStructure) -> List[str]:
    if not s.joins:
        return []
    return [t for t in s.tables if METADATA_TABLE_RE.search(_bare(t))]


CORE_RULES: Tuple[PatternRule, ...] = (
    PatternRule(RULE_SPECS[PatternCode.SELECT_STAR], lambda s: s.selects_all_columns),
    PatternRule(RULE_SPECS[PatternCode.MISSING_INDEX], lambda s: s.has_where and not s.has_index_hint),
    PatternRule(RULE_SPECS[PatternCode.ORDER_BY_WITHOUT_LIMIT], lambda s: bool(s.order_by_columns) and not s.has_limit),
    PatternRule(RULE_SPECS[PatternCode.LEADING_WILDCARD_LIKE],
                lambda s: any(c.leading_wildcard_like for c in s.where_columns)),
    PatternRule(RULE_SPECS[PatternCode.OR_IN_WHERE], lambda s: s.has_or_in_where),
    PatternRule(RULE_SPECS[PatternCode.JOIN_WITHOUT_CONDITION], _has_unconditioned_join),
    PatternRule(RULE_SPECS[PatternCode.SUBQUERY], lambda s: s.subquery_count > 0),
)

EXTENDED_RULES: Tuple[PatternRule, ...] = (
    PatternRule(RULE_SPECS[PatternCode.JOIN_FANOUT_AGGREGATE],
                lambda s: bool(s.joins) and bool(_fanout_aggregates(s)),
                lambda s: ", ".join(_fanout_aggregates(s))),
    PatternRule(RULE_SPECS[PatternCode.MISSING_GROUP_BY_COLUMNS],
                lambda s: bool(_ungrouped_columns(s)),
                lambda s: ", ".join(_ungrouped_columns(s))),
    PatternRule(RULE_SPECS[PatternCode.FUNCTION_WRAPPED_PREDICATE],
                lambda s: bool(_wrapped_columns(s)),
                lambda s: ", ".join(_wrapped_columns(s))),
    PatternRule(RULE_SPECS[PatternCode.METADATA_TABLE_JOIN],
                lambda s: bool(_metadata_tables(s)),
                lambda s: ", ".join(_metadata_tables(s))),
)

ALL_RULES: Tuple[PatternRule, ...] = CORE_RULES + EXTENDED_RULES


def detect(structure: SqlStructure, rules: Iterable[PatternRule] = ALL_RULES) -> List[DetectedPattern]:
    """
    Apply the rule catalog to an extracted structure.

    The result follows catalog order, not input order, so identical structures
    always yield identical findings.
    """
    if structure is None:
        return []

    patterns = []
    for rule in rules:
        pattern = rule.evaluate(structure)
        if pattern is not None:
            patterns.append(pattern)

    logger.debug(f"Detected patterns: {[p.code.value for p in patterns]}")
    return patterns


def assess_patterns(patterns: Iterable[DetectedPattern], base_score: int = STRUCTURED_BASE_SCORE) -> Assessment:
    """Score and severity tier for a set of findings."""
    return assess((RULE_SPECS[p.code] for p in patterns), base_score=base_score)


def summarize(patterns: List[DetectedPattern]) -> str:
    return "; ".join(p.message for p in patterns) or "No major issues detected"
