# query_advisor/core/agent/analysis_service.py

"""
Entry point shared by the HTTP API and the CLI.

Two implementations of one capability: the heuristic scorer for anonymous
callers and the advisor orchestrator for authenticated ones. Caller identity
is always passed in explicitly as a CallerContext.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

from query_advisor.core.agent.advisor import AdvisorOrchestrator, AdvisorReport
from query_advisor.core.agent.llm_client import ReasoningEngineClient
from query_advisor.core.caching.free_token_store import create_free_token_store
from query_advisor.core.errors import AdmissionDenied, ConfigurationError, InvalidInput, Unauthenticated
from query_advisor.core.sql import heuristic_scorer
from query_advisor.core.sql.heuristic_scorer import AnalysisResult

logger = logging.getLogger(__name__)

NO_FREE_TOKEN_MESSAGE = "Create a free account to continue analyzing queries."
FREE_LIMIT_REACHED_MESSAGE = "Your free analysis has been used. Please sign up for unlimited access."


class AnalysisPath(Enum):
    HEURISTIC = "heuristic"
    ADVISOR = "advisor"


@dataclass(frozen=True)
class CallerContext:
    """Who is asking. Built by the transport layer."""
    authenticated: bool = False
    user_id: Optional[str] = None
    free_token: Optional[str] = None
    client_address: str = "unknown"


@dataclass(frozen=True)
class AnalysisRequest:
    query: str
    db: Optional[str] = None
    schema: Optional[str] = None
    execution_plan: Optional[str] = None


def select_path(caller: CallerContext) -> AnalysisPath:
    return AnalysisPath.ADVISOR if caller.authenticated else AnalysisPath.HEURISTIC


def _is_blank(value) -> bool:
    return not isinstance(value, str) or not value.strip()


class AnalysisService:
    """Validates, applies the free-tier gate and dispatches to one path."""

    def __init__(self, admission_store, orchestrator: Optional[AdvisorOrchestrator] = None):
        self.admission_store = admission_store
        self.orchestrator = orchestrator

    @property
    def engine_configured(self) -> bool:
        return self.orchestrator is not None

    def free_analysis(self, request: AnalysisRequest, caller: CallerContext) -> AnalysisResult:
        if _is_blank(request.query):
            raise InvalidInput("Invalid request: query is required")

        if not caller.authenticated:
            self._admit(caller)

        result = heuristic_scorer.score(request.query)
        logger.info(f"Heuristic analysis for {caller.user_id or caller.client_address}: "
                    f"score {result.score} ({result.severity})")
        return result

    def advisor_analysis(self, request: AnalysisRequest, caller: CallerContext) -> AdvisorReport:
        if not caller.authenticated:
            raise Unauthenticated("Unauthorized")
        if _is_blank(request.query):
            raise InvalidInput("Query is required")
        if _is_blank(request.db):
            raise InvalidInput("Database type is required")
        if self.orchestrator is None:
            raise ConfigurationError("OpenAI API key not configured")

        logger.info(f"Advisor analysis for user {caller.user_id}, database: {request.db}")
        return self.orchestrator.analyze(
            request.query, request.db,
            schema=request.schema, execution_plan=request.execution_plan,
        )

    def analyze(self, request: AnalysisRequest,
                caller: CallerContext) -> Tuple[AnalysisPath, Union[AnalysisResult, AdvisorReport]]:
        path = select_path(caller)
        if path is AnalysisPath.ADVISOR:
            return path, self.advisor_analysis(request, caller)
        return path, self.free_analysis(request, caller)

    def _admit(self, caller: CallerContext):
        if not caller.free_token:
            logger.warning(f"Free analysis refused for {caller.client_address}: no token")
            raise AdmissionDenied(AdmissionDenied.NO_FREE_TOKEN, NO_FREE_TOKEN_MESSAGE)

        if not self.admission_store.try_admit(caller.free_token, caller.client_address):
            logger.warning(f"Free analysis refused for {caller.client_address}: limit reached")
            raise AdmissionDenied(AdmissionDenied.FREE_LIMIT_REACHED, FREE_LIMIT_REACHED_MESSAGE)


def build_analysis_service(config) -> AnalysisService:
    """Wire the service from a StartupConfig."""
    orchestrator = None
    if config.engine_configured:
        engine = ReasoningEngineClient(
            api_key=config.openai_api_key,
            model=config.llm_model,
            temperature=config.llm_temperature,
            timeout=config.llm_timeout_seconds,
            base_url=config.llm_base_url,
        )
        orchestrator = AdvisorOrchestrator(engine)
    else:
        logger.warning("OPENAI_API_KEY not set; advisor analysis disabled")

    return AnalysisService(create_free_token_store(config), orchestrator)
