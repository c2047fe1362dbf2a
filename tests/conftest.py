"""Shared test fixtures for bulkops."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from bulkops.core.transformers import build_sample_records
from bulkops.models.connection import AuthType, ConnectionDescriptor
from bulkops.models.record import Record
from bulkops.services.in_memory_service import InMemoryDataService

TABLE = "sample_example"
ORG_URL = "https://contoso.crm.dynamics.com"
API_ROOT = f"{ORG_URL}/api/data/v9.2/"


def _make_response(
    status_code: int = 200,
    json_body: Any = None,
    headers: dict[str, str] | None = None,
) -> MagicMock:
    """Build a requests.Response stand-in."""
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 400
    response.headers = headers or {}
    if json_body is None:
        response.json.side_effect = ValueError("no json body")
    else:
        response.json.return_value = json_body
    return response


@pytest.fixture
def service() -> InMemoryDataService:
    """Provide an in-memory service with no latency."""
    return InMemoryDataService(recommended_parallelism=4)


@pytest.fixture
def sample_records() -> list[Record]:
    """Ten unpersisted records in the example table."""
    return build_sample_records(TABLE, 10)


@pytest.fixture
def descriptor() -> ConnectionDescriptor:
    """Connection descriptor carrying a ready-made access token."""
    return ConnectionDescriptor(
        url=ORG_URL,
        auth_type=AuthType.ACCESS_TOKEN,
        access_token="test-token",
    )


@pytest.fixture
def session() -> MagicMock:
    """requests.Session stand-in with a real headers dict."""
    mock_session = MagicMock()
    mock_session.headers = {}
    return mock_session


@pytest.fixture
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make tenacity waits instantaneous."""
    monkeypatch.setattr("time.sleep", lambda _seconds: None)


@pytest.fixture
def make_response() -> Any:
    """Factory for requests.Response stand-ins."""
    return _make_response
