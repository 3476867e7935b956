"""Shared pytest configuration and fixtures."""

import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

pytest_plugins = [
    "bookings.tests.fixtures",
]


@pytest.fixture
def api_client():
    """DRF API client for request/response helpers."""
    return APIClient()


@pytest.fixture(autouse=True)
def _clear_cache():
    """Rate-limit and throttle counters live in the locmem cache."""
    cache.clear()
    yield
    cache.clear()
