import pytest

from magnetlab_signals.core.config import get_settings


def _set_minimum_production_env(monkeypatch) -> None:
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg2://app:password@db:5432/magnetlab_signals")
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/0")
    monkeypatch.setenv("INTERNAL_API_KEY", "internal-key-prod")
    monkeypatch.setenv("HARVEST_API_KEY", "harvest-key-prod")
    monkeypatch.setenv("HEYREACH_API_KEY", "heyreach-key-prod")


def test_loads_environment_values(monkeypatch) -> None:
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///./data/test_signals.sqlite")
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/9")
    monkeypatch.setenv("SCAN_KEYWORD_MAX_POSTS", "7")
    monkeypatch.setenv("HARVEST_PROFILE_POSTED_LIMIT", "month")
    get_settings.cache_clear()

    settings = get_settings()
    assert settings.env == "development"
    assert settings.database_url.endswith("test_signals.sqlite")
    assert settings.redis_url.endswith("/9")
    assert settings.scan_keyword_max_posts == 7
    assert settings.harvest_profile_posted_limit == "month"

    get_settings.cache_clear()


def test_production_accepts_complete_configuration(monkeypatch) -> None:
    _set_minimum_production_env(monkeypatch)
    get_settings.cache_clear()

    assert get_settings().env == "production"

    get_settings.cache_clear()


def test_requires_all_mandatory_production_secrets(monkeypatch) -> None:
    _set_minimum_production_env(monkeypatch)
    monkeypatch.setenv("HEYREACH_API_KEY", "")
    get_settings.cache_clear()

    with pytest.raises(ValueError, match="HEYREACH_API_KEY"):
        get_settings()

    get_settings.cache_clear()


def test_rejects_invalid_observability_limits(monkeypatch) -> None:
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv("SENTRY_TRACES_SAMPLE_RATE", "1.2")
    get_settings.cache_clear()

    with pytest.raises(ValueError):
        get_settings()

    get_settings.cache_clear()


@pytest.mark.parametrize(
    "variable",
    [
        "SCAN_KEYWORD_MAX_POSTS",
        "SCAN_MAX_MONITORS_PER_RUN",
        "SCAN_MAX_RUN_SECONDS",
        "SCAN_MONITOR_LOCK_TTL_SECONDS",
        "PUSH_BATCH_SIZE",
        "HEYREACH_CHUNK_SIZE",
    ],
)
def test_rejects_non_positive_job_limits(monkeypatch, variable: str) -> None:
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv(variable, "0")
    get_settings.cache_clear()

    with pytest.raises(ValueError, match=variable):
        get_settings()

    get_settings.cache_clear()


def test_rejects_negative_retry_settings(monkeypatch) -> None:
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv("HEYREACH_MAX_RETRIES", "-1")
    get_settings.cache_clear()

    with pytest.raises(ValueError, match="HEYREACH_MAX_RETRIES"):
        get_settings()

    get_settings.cache_clear()
