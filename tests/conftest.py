"""Shared test configuration."""

import os

import pytest


# Test defaults for every RECORD_SEARCH_* setting a developer might have exported
TEST_ENV = {
    "RECORD_SEARCH_ENVIRONMENT": "test",
    "RECORD_SEARCH_DECLARATIONS": "",
    "RECORD_SEARCH_LOG_LEVEL": "warning",
    "RECORD_SEARCH_LOG_JSON": "false",
}

for key, value in TEST_ENV.items():
    os.environ[key] = value


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Reset settings environment variables before each test."""
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)
    for name in ("INDEX_PATH", "BASE_INDEX_DIR", "DATABASE_PATH", "REBUILD_BATCH_SIZE", "QUERY_LOOKAHEAD"):
        monkeypatch.delenv(f"RECORD_SEARCH_{name}", raising=False)
