# query_advisor/core/agent/advisor.py

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from query_advisor.core.agent.prompts import build_prompt
from query_advisor.core.errors import EngineReplyMalformed, InvalidInput
from query_advisor.core.sql import pattern_detector, structure_extractor
from query_advisor.core.sql.pattern_detector import DetectedPattern

logger = logging.getLogger(__name__)


class AdvisorReply(BaseModel):
    """Exact shape the reasoning engine must answer with."""
    model_config = ConfigDict(extra="forbid", strict=True)

    analysis: str
    warnings: List[str]
    rewrittenQuery: str
    recommendedIndexes: str
    notes: str


@dataclass(frozen=True)
class AdvisorResult:
    analysis: str
    warnings: List[str]
    rewritten_query: str
    recommended_indexes: str
    notes: str


@dataclass(frozen=True)
class AdvisorReport:
    """Paid-path response: the engine's advice plus the deterministic findings."""
    id: str
    result: AdvisorResult
    detected_patterns: List[DetectedPattern] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "analysis": self.result.analysis,
            "warnings": list(self.result.warnings),
            "rewrittenQuery": self.result.rewritten_query,
            "recommendedIndexes": self.result.recommended_indexes,
            "notes": self.result.notes,
            "detectedPatterns": [p.to_dict() for p in self.detected_patterns],
        }


def parse_advisor_reply(text: str) -> AdvisorResult:
    """
    Parse the engine's reply into an AdvisorResult.

    Anything other than a JSON object with exactly the five required keys of
    the required types raises EngineReplyMalformed.
    """
    try:
        reply = AdvisorReply.model_validate_json(text)
    except ValidationError as e:
        logger.error(f"Failed to parse engine reply: {e.error_count()} error(s)")
        raise EngineReplyMalformed(
            "Invalid AI response format",
            {"errors": [err["type"] for err in e.errors()]},
        ) from e

    return AdvisorResult(
        analysis=reply.analysis,
        warnings=list(reply.warnings),
        rewritten_query=reply.rewrittenQuery,
        recommended_indexes=reply.recommendedIndexes,
        notes=reply.notes,
    )


class AdvisorOrchestrator:
    """
    Paid analysis path: extract, detect, prompt, one engine call, strict parse.

    No retries and no heuristic fallback; any failure surfaces to the caller.
    """

    def __init__(self, engine):
        self.engine = engine

    def analyze(self, query: str, db: str, schema: Optional[str] = None,
                execution_plan: Optional[str] = None) -> AdvisorReport:
        if not query or not query.strip():
            raise InvalidInput("Query is required")
        if not db or not db.strip():
            raise InvalidInput("Database type is required")

        logger.debug(f"Advisor query for {db}: {query}")

        structure = structure_extractor.extract(query)
        patterns = pattern_detector.detect(structure)
        assessment = pattern_detector.assess_patterns(patterns)
        logger.info(
            f"Structure: {len(structure.tables)} table(s), {len(structure.joins)} join(s); "
            f"{len(patterns)} pattern(s), score {assessment.score} ({assessment.severity.value})"
        )

        prompt = build_prompt(query, db, structure, patterns, schema=schema, execution_plan=execution_plan)
        logger.info(f"Prompt built ({len(prompt)} chars), calling reasoning engine")

        reply_text = self.engine.complete_json(prompt)
        result = parse_advisor_reply(reply_text)

        report = AdvisorReport(id=uuid.uuid4().hex, result=result, detected_patterns=patterns)
        logger.info(f"Advisor analysis {report.id} complete: {len(result.warnings)} warning(s)")
        return report
