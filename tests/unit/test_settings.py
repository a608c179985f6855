"""Unit tests for environment-driven settings."""

from pathlib import Path

from pydantic import ValidationError
import pytest

from record_search.config import Settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("ENVIRONMENT", "INDEX_PATH", "BASE_INDEX_DIR", "LOG_LEVEL", "REBUILD_BATCH_SIZE"):
        monkeypatch.delenv(f"RECORD_SEARCH_{name}", raising=False)


def test_defaults():
    settings = Settings()

    assert settings.environment == "development"
    assert settings.resolved_index_path() == Path("var/search-index/development")
    assert settings.rebuild_batch_size == 1000
    assert settings.query_lookahead == 100
    assert settings.flush_each_job is False


def test_environment_variables_use_prefix(monkeypatch):
    monkeypatch.setenv("RECORD_SEARCH_ENVIRONMENT", "production")
    monkeypatch.setenv("RECORD_SEARCH_BASE_INDEX_DIR", "/srv/index")
    monkeypatch.setenv("RECORD_SEARCH_REBUILD_BATCH_SIZE", "50")

    settings = Settings()

    assert settings.resolved_index_path() == Path("/srv/index/production")
    assert settings.rebuild_batch_size == 50


def test_explicit_index_path_wins(monkeypatch):
    monkeypatch.setenv("RECORD_SEARCH_INDEX_PATH", "/tmp/custom-index")

    assert Settings().resolved_index_path() == Path("/tmp/custom-index")


def test_log_level_is_normalised():
    assert Settings(log_level=" WARNING ").log_level == "warning"


@pytest.mark.parametrize("field", [{"log_level": "loud"}, {"rebuild_batch_size": 0}, {"environment": ""}])
def test_invalid_values_are_rejected(field):
    with pytest.raises(ValidationError):
        Settings(**field)
