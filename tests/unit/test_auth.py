"""
Tests for bearer-token identity and client address resolution
"""

import pytest
from starlette.requests import Request

from query_advisor.api.auth import (
    build_caller_context, parse_bearer_token, resolve_client_address, verify_bearer_token,
)

API_TOKENS = {"alice": "token-alice", "bob": "token-bob"}


def make_request(headers=None, client=("203.0.113.7", 51234)):
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/analyze",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestBearerToken:

    @pytest.mark.parametrize("header,expected", [
        ("Bearer abc", "abc"),
        ("bearer   abc  ", "abc"),
        ("Basic abc", None),
        ("Bearer", None),
        ("Bearer    ", None),
        ("", None),
        (None, None),
    ])
    def test_parse(self, header, expected):
        assert parse_bearer_token(header) == expected

    def test_verify(self):
        assert verify_bearer_token("token-bob", API_TOKENS) == "bob"
        assert verify_bearer_token("token-eve", API_TOKENS) is None
        assert verify_bearer_token(None, API_TOKENS) is None
        assert verify_bearer_token("token-bob", {}) is None


class TestClientAddress:

    def test_cloudflare_header_wins(self):
        request = make_request({"cf-connecting-ip": "1.1.1.1", "x-forwarded-for": "2.2.2.2", "x-real-ip": "3.3.3.3"})
        assert resolve_client_address(request) == "1.1.1.1"

    def test_first_forwarded_entry(self):
        request = make_request({"x-forwarded-for": " 2.2.2.2 , 10.0.0.1", "x-real-ip": "3.3.3.3"})
        assert resolve_client_address(request) == "2.2.2.2"

    def test_real_ip(self):
        assert resolve_client_address(make_request({"x-real-ip": "3.3.3.3"})) == "3.3.3.3"

    def test_socket_peer(self):
        assert resolve_client_address(make_request()) == "203.0.113.7"

    def test_unknown(self):
        assert resolve_client_address(make_request(client=None)) == "unknown"


class TestCallerContext:

    def test_authenticated(self):
        caller = build_caller_context(make_request({"Authorization": "Bearer token-alice"}), API_TOKENS)
        assert caller.authenticated is True
        assert caller.user_id == "alice"

    def test_bad_token_is_anonymous(self):
        caller = build_caller_context(
            make_request({"Authorization": "Bearer nope", "X-Free-Analysis-Token": "free-1"}), API_TOKENS
        )
        assert caller.authenticated is False
        assert caller.user_id is None
        assert caller.free_token == "free-1"
        assert caller.client_address == "203.0.113.7"

    def test_no_headers(self):
        caller = build_caller_context(make_request(), API_TOKENS)
        assert caller.authenticated is False
        assert caller.free_token is None
