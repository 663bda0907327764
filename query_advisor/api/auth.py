"""Caller identity for the advisor API."""

import logging
import secrets
from typing import Dict, Optional

from fastapi import Request

from query_advisor.core.agent.analysis_service import CallerContext

logger = logging.getLogger(__name__)

FREE_TOKEN_HEADER = "X-Free-Analysis-Token"
UNKNOWN_ADDRESS = "unknown"


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def verify_bearer_token(token: Optional[str], api_tokens: Dict[str, str]) -> Optional[str]:
    """Return the user id owning ``token``, or None."""
    if not token:
        return None

    user_id = None
    for candidate_user, expected in api_tokens.items():
        if secrets.compare_digest(token.encode(), str(expected).encode()):
            user_id = candidate_user
    return user_id


def resolve_client_address(request: Request) -> str:
    """
    Client address behind proxies: cf-connecting-ip, then the first
    x-forwarded-for entry, then x-real-ip, then the socket peer.
    """
    headers = request.headers

    cf_ip = headers.get("cf-connecting-ip", "").strip()
    if cf_ip:
        return cf_ip

    forwarded_for = headers.get("x-forwarded-for", "").split(",")[0].strip()
    if forwarded_for:
        return forwarded_for

    real_ip = headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip

    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_ADDRESS


def build_caller_context(request: Request, api_tokens: Dict[str, str]) -> CallerContext:
    user_id = verify_bearer_token(parse_bearer_token(request.headers.get("authorization")), api_tokens)
    if request.headers.get("authorization") and user_id is None:
        logger.warning("Rejected bearer token")

    return CallerContext(
        authenticated=user_id is not None,
        user_id=user_id,
        free_token=request.headers.get(FREE_TOKEN_HEADER) or None,
        client_address=resolve_client_address(request),
    )
