"""Runtime settings for the federation gateway."""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 4000
    LOG_LEVEL: str = "INFO"

    # Web settings
    CORS_ORIGINS: list[str] = ["*"]

    # Static backend registry: JSON array of {"endpoint", "prefix"}
    WATCHERS_CONFIG: str = "config/watchers.json"

    REACHABILITY_TIMEOUT_SECONDS: float = 5.0
    INTROSPECTION_TIMEOUT_SECONDS: float = 30.0
    BACKEND_REQUEST_TIMEOUT_SECONDS: float = 60.0
    SUBSCRIPTION_HEARTBEAT_SECONDS: float = 20.0

    GRAPHIQL_TITLE: str = "Azimuth Watchers"
    METRICS_ENABLED: bool = True

    # Fail instrumented operations when the sync status side fetch fails
    STRICT_SYNC_STATUS: bool = False

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
    }


_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings()
    return _settings_cache


def reset_settings() -> None:
    global _settings_cache
    _settings_cache = None
