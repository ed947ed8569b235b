"""Unit tests for the rate limit key."""
from starlette.requests import Request

from common.auth import create_access_token
from common.config import get_settings
from common.rate_limit import caller_key


def _request(headers: dict) -> Request:
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/reviews/me",
            "headers": [(name.lower().encode(), value.encode()) for name, value in headers.items()],
            "client": ("203.0.113.9", 52000),
        }
    )


def test_signed_in_caller_keyed_by_account():
    token = create_access_token({"sub": "jane", "role": "client"})

    assert caller_key(_request({"Authorization": f"Bearer {token}"})) == "user:jane"


def test_anonymous_caller_keyed_by_address():
    assert caller_key(_request({})) == "203.0.113.9"


def test_forged_token_falls_back_to_address():
    assert caller_key(_request({"Authorization": "Bearer not.a.token"})) == "203.0.113.9"


def test_service_key_shares_one_bucket():
    headers = {"X-Service-Key": get_settings().service_api_key}

    assert caller_key(_request(headers)) == "service"
