"""
Pytest configuration and shared fixtures for social dashboard tests.

This module provides common fixtures used across all test files:
- Settings with fake app credentials and in-memory storage
- A routable httpx.MockTransport standing in for the provider APIs
- Wired services and a FastAPI test client
"""

import os
import sys

import pytest

# Environment setup before any imports
os.environ["DEV_MODE"] = "true"
os.environ["ENVIRONMENT"] = "development"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ.pop("DATABASE_URL", None)
os.environ.pop("REDIS_URL", None)
os.environ.pop("SENTRY_DSN", None)

# Ensure project root is in path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from socialdash.social import build_services  # noqa: E402

from .stubs import ProviderStub, make_settings  # noqa: E402


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def provider():
    return ProviderStub()


@pytest.fixture
def services(settings, provider):
    return build_services(settings, transport=provider.transport)


@pytest.fixture
def client(settings, services):
    """FastAPI test client over the stubbed providers."""
    from fastapi.testclient import TestClient

    from server import create_app

    app = create_app(settings=settings, services=services)
    with TestClient(app) as test_client:
        yield test_client
