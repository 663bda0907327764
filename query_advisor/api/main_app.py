from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from query_advisor.api.auth import build_caller_context
from query_advisor.config.startup_config import get_startup_config
from query_advisor.core.agent.analysis_service import AnalysisRequest, build_analysis_service
from query_advisor.core.errors import (
    AdmissionDenied, AdvisorError, ConfigurationError, EngineReplyMalformed,
    EngineUnavailable, InvalidInput, Unauthenticated,
)

VERSION = "1.0.0"
SERVER_ERROR_MESSAGE = "Unable to process request. Please try again."

STARTUP_CONFIG = get_startup_config()
STARTUP_CONFIG.configure_logging()
logger = logging.getLogger(__name__)

# Errors whose message is safe to return to the caller as is
PUBLIC_ADVISOR_ERRORS = (InvalidInput, Unauthenticated, ConfigurationError, EngineUnavailable, EngineReplyMalformed)


def _ensure_state(app: FastAPI):
    if getattr(app.state, "analysis_service", None) is None:
        app.state.analysis_service = build_analysis_service(STARTUP_CONFIG)
    if getattr(app.state, "api_tokens", None) is None:
        app.state.api_tokens = STARTUP_CONFIG.api_tokens


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting SQL Query Advisor")
    _ensure_state(app)
    logger.info(STARTUP_CONFIG.get_startup_summary())
    store = app.state.analysis_service.admission_store
    logger.info(f"Admission store ({store.backend}) healthy: {store.health_check()}")
    yield
    logger.info("SQL Query Advisor shutting down")


app = FastAPI(
    title=STARTUP_CONFIG.api_title,
    description="SQL anti-pattern detection with heuristic scoring and AI-assisted rewrites",
    version=VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=STARTUP_CONFIG.cors_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Client-Info", "Apikey", "X-Free-Analysis-Token"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    logger.error(f"Validation error on {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Invalid request",
            "details": jsonable_encoder(exc.errors()),
        }
    )


class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: Optional[str] = None
    table_schema: Optional[str] = Field(default=None, alias="schema")
    executionPlan: Optional[str] = None
    explain: Optional[str] = None


class OptimizeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: Optional[str] = None
    db: Optional[str] = None
    table_schema: Optional[str] = Field(default=None, alias="schema")
    executionPlan: Optional[str] = None


def _service(request: Request):
    _ensure_state(request.app)
    return request.app.state.analysis_service


def _failure(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


@app.post("/analyze")
def analyze_query(payload: AnalyzeRequest, request: Request):
    """Free heuristic analysis; anonymous callers get one analysis per token and address."""
    service = _service(request)
    caller = build_caller_context(request, request.app.state.api_tokens)
    analysis_request = AnalysisRequest(
        query=payload.query,
        schema=payload.table_schema,
        execution_plan=payload.executionPlan or payload.explain,
    )

    try:
        result = service.free_analysis(analysis_request, caller)
    except InvalidInput as e:
        return JSONResponse(status_code=400, content={"error": e.message})
    except AdmissionDenied as e:
        return JSONResponse(status_code=403, content={"error": e.kind, "message": e.message})
    except AdvisorError as e:
        logger.error(f"Free analysis failed: {e}")
        return JSONResponse(status_code=500, content={"error": "server_error", "message": SERVER_ERROR_MESSAGE})
    except Exception as e:
        logger.exception(f"Unexpected error in free analysis: {e}")
        return JSONResponse(status_code=500, content={"error": "server_error", "message": SERVER_ERROR_MESSAGE})

    return result.to_dict()


@app.post("/optimize")
def optimize_query(payload: OptimizeRequest, request: Request):
    """AI-assisted analysis for authenticated callers."""
    if not request.headers.get("authorization"):
        return _failure(401, "Missing authorization header")

    service = _service(request)
    caller = build_caller_context(request, request.app.state.api_tokens)
    analysis_request = AnalysisRequest(
        query=payload.query,
        db=payload.db,
        schema=payload.table_schema,
        execution_plan=payload.executionPlan,
    )

    try:
        report = service.advisor_analysis(analysis_request, caller)
    except PUBLIC_ADVISOR_ERRORS as e:
        log = logger.warning if e.http_status < 500 else logger.error
        log(f"Advisor analysis failed ({e.kind}): {e}")
        return _failure(e.http_status, e.message)
    except AdvisorError as e:
        logger.error(f"Advisor analysis failed ({e.kind}): {e}")
        return _failure(e.http_status, "Internal server error")
    except Exception as e:
        logger.exception(f"Unexpected error in advisor analysis: {e}")
        return _failure(500, "Internal server error")

    return {"success": True, "data": report.to_dict()}


@app.get("/health")
def health_check(request: Request):
    service = _service(request)
    admission_healthy = service.admission_store.health_check()
    return {
        "status": "healthy" if admission_healthy else "degraded",
        "version": VERSION,
        "engine_configured": service.engine_configured,
        "admission_backend": getattr(service.admission_store, "backend", "unknown"),
        "admission_healthy": admission_healthy,
        "timestamp": datetime.now().isoformat(),
    }


def main():
    host = STARTUP_CONFIG.api_host
    port = STARTUP_CONFIG.api_port
    logger.info(f"Serving SQL Query Advisor on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level=STARTUP_CONFIG.logging_level.lower())


if __name__ == "__main__":
    main()
