from dataclasses import dataclass
from datetime import date

import httpx
import pytest

import lambda_function


FIXED_TODAY = date(2026, 10, 16)


@dataclass
class FakeLambdaContext:
    function_name: str = "polygon-options-lookup"
    memory_limit_in_mb: int = 128
    invoked_function_arn: str = "arn:aws:lambda:us-east-1:123456789012:function:polygon-options-lookup"
    aws_request_id: str = "ctx-request-id"


@pytest.fixture
def lambda_context():
    return FakeLambdaContext()


@pytest.fixture
def fixed_today(monkeypatch):
    monkeypatch.setattr(lambda_function, "today_market", lambda: FIXED_TODAY)
    return FIXED_TODAY


def make_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=lambda_function.POLYGON_BASE_URL,
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def polygon(monkeypatch):
    """Route every client the module builds through ``handler``."""

    def install(handler):
        monkeypatch.setattr(lambda_function, "build_client", lambda: make_client(handler))

    return install
