import os
from dataclasses import dataclass

ALLOWED_ENVS = {"dev", "staging", "prod"}


@dataclass(frozen=True)
class EnvironmentRequirements:
    required_vars: tuple[str, ...]


ENV_REQUIREMENTS: dict[str, EnvironmentRequirements] = {
    "dev": EnvironmentRequirements(
        required_vars=(
            "SUPABASE_URL",
            "SUPABASE_KEY",
            "SUPABASE_SERVICE_ROLE_KEY",
        )
    ),
    "staging": EnvironmentRequirements(
        required_vars=(
            "SUPABASE_URL",
            "SUPABASE_KEY",
            "SUPABASE_SERVICE_ROLE_KEY",
            "CORS_ORIGINS",
        )
    ),
    "prod": EnvironmentRequirements(
        required_vars=(
            "SUPABASE_URL",
            "SUPABASE_KEY",
            "SUPABASE_SERVICE_ROLE_KEY",
            "CORS_ORIGINS",
        )
    ),
}


@dataclass(frozen=True)
class EngineSettings:
    # 90 days of up to three sessions a day.
    session_window: int = 270
    stats_session_window: int = 90
    fetch_timeout_s: float = 10.0


def resolve_environment() -> str:
    env = (os.getenv("ENV") or "dev").strip().lower()
    if env not in ALLOWED_ENVS:
        allowed_values = ", ".join(sorted(ALLOWED_ENVS))
        raise RuntimeError(
            f"Invalid ENV '{env}'. Expected one of: {allowed_values}."
        )
    return env


def validate_environment() -> str:
    env = resolve_environment()
    required = ENV_REQUIREMENTS[env].required_vars
    missing = [name for name in required if not (os.getenv(name) or "").strip()]
    if missing:
        missing_list = ", ".join(missing)
        raise RuntimeError(
            f"Missing required environment variables for ENV='{env}': {missing_list}"
        )
    return env


def _positive_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got '{raw}'.") from exc
    if value <= 0:
        raise RuntimeError(f"{name} must be positive, got {value}.")
    return value


def _positive_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got '{raw}'.") from exc
    if value <= 0:
        raise RuntimeError(f"{name} must be positive, got {value}.")
    return value


def load_engine_settings() -> EngineSettings:
    defaults = EngineSettings()
    return EngineSettings(
        session_window=_positive_int("ACHIEVEMENT_SESSION_WINDOW", defaults.session_window),
        stats_session_window=_positive_int("STATS_SESSION_WINDOW", defaults.stats_session_window),
        fetch_timeout_s=_positive_float(
            "ACHIEVEMENT_FETCH_TIMEOUT_SECONDS", defaults.fetch_timeout_s
        ),
    )
