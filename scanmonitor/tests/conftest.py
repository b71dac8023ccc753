"""
Pytest configuration and shared fixtures.
"""
from __future__ import annotations

from typing import Any

import httpx
import pytest
import pytest_asyncio

from scanmonitor.client import ScanApiClient
from scanmonitor.tests.fakes import BASE_URL, FakeScanServer, GatedHistory, build_app


@pytest.fixture
def fake_server() -> FakeScanServer:
    return FakeScanServer()


@pytest.fixture
def make_api_client(fake_server):
    """Factory for clients talking to ``fake_server``; also stands in for ``main.make_client``."""

    def _factory(*_args: Any, **_kwargs: Any) -> ScanApiClient:
        transport = httpx.ASGITransport(app=build_app(fake_server))
        return ScanApiClient(base_url=BASE_URL, transport=transport)

    return _factory


@pytest_asyncio.fixture
async def api_client(make_api_client):
    client = make_api_client()
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def gated():
    handler = GatedHistory()
    handler.client = ScanApiClient(base_url=BASE_URL, transport=httpx.MockTransport(handler.handler))
    yield handler
    await handler.client.aclose()
