import pytest

from readrise.config import environment


def test_resolve_environment_defaults_to_dev(monkeypatch):
    monkeypatch.delenv("ENV", raising=False)
    assert environment.resolve_environment() == "dev"


def test_invalid_environment_fails_fast(monkeypatch):
    monkeypatch.setenv("ENV", "qa")
    with pytest.raises(RuntimeError, match="Invalid ENV"):
        environment.resolve_environment()


def test_validate_environment_requires_service_role_key(monkeypatch):
    monkeypatch.setenv("ENV", "dev")
    monkeypatch.setenv("SUPABASE_URL", "http://example.com")
    monkeypatch.setenv("SUPABASE_KEY", "anon")
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)

    with pytest.raises(RuntimeError, match="SUPABASE_SERVICE_ROLE_KEY"):
        environment.validate_environment()


def test_validate_environment_requires_prod_cors_origins(monkeypatch):
    monkeypatch.setenv("ENV", "prod")
    monkeypatch.setenv("SUPABASE_URL", "http://example.com")
    monkeypatch.setenv("SUPABASE_KEY", "anon")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service")
    monkeypatch.setenv("CORS_ORIGINS", "  ")

    with pytest.raises(RuntimeError, match="CORS_ORIGINS"):
        environment.validate_environment()


def test_engine_settings_defaults(monkeypatch):
    for name in ("ACHIEVEMENT_SESSION_WINDOW", "STATS_SESSION_WINDOW", "ACHIEVEMENT_FETCH_TIMEOUT_SECONDS"):
        monkeypatch.delenv(name, raising=False)

    settings = environment.load_engine_settings()

    assert settings == environment.EngineSettings(session_window=270, stats_session_window=90, fetch_timeout_s=10.0)


def test_engine_settings_overrides(monkeypatch):
    monkeypatch.setenv("ACHIEVEMENT_SESSION_WINDOW", "500")
    monkeypatch.setenv("STATS_SESSION_WINDOW", "30")
    monkeypatch.setenv("ACHIEVEMENT_FETCH_TIMEOUT_SECONDS", "2.5")

    settings = environment.load_engine_settings()

    assert (settings.session_window, settings.stats_session_window, settings.fetch_timeout_s) == (500, 30, 2.5)


@pytest.mark.parametrize("value", ["0", "-3", "many"])
def test_engine_settings_reject_bad_window(monkeypatch, value):
    monkeypatch.setenv("ACHIEVEMENT_SESSION_WINDOW", value)
    with pytest.raises(RuntimeError, match="ACHIEVEMENT_SESSION_WINDOW"):
        environment.load_engine_settings()
