from pathlib import Path

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables and .env file.

    Cache sizes and TTLs default to the values the API has always used:
    60s for HTTP responses, 30 minutes for usage analysis, one hour for AI
    recommendations and a day for slowly-changing reference data.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Cache engines
    cache_max_size: int = Field(default=1000, ge=1)
    cache_sweep_interval_seconds: float = Field(default=60, ge=0)
    response_cache_ttl_seconds: float = Field(default=60, ge=0)
    recommendation_cache_ttl_seconds: float = Field(default=3600, ge=0)
    usage_pattern_cache_ttl_seconds: float = Field(default=1800, ge=0)
    cost_optimization_cache_ttl_seconds: float = Field(default=3600, ge=0)
    reference_cache_ttl_seconds: float = Field(default=86400, ge=0)
    # Opt-in sharing of concurrent misses in the compute memoizer
    memo_single_flight: bool = False

    # Rate limiting
    rate_limit_window_seconds: float = Field(default=60, gt=0)
    rate_limit_max_requests: int = Field(default=100, ge=1)

    # Optional: AI-assisted recommendations
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-pro"
    gemini_temperature: float = 0.7
    gemini_max_tokens: int = 2048

    # Remote hosting: transport, bind address, and auth
    mcp_transport: str = "stdio"
    mcp_host: str = "0.0.0.0"
    mcp_port: int = 8000
    mcp_auth_token: str | None = None

    # Paths & logging: default is <project_root>/data so it works
    # regardless of the process working directory.
    data_dir: Path = Path(__file__).resolve().parent.parent / "data"
    log_level: str = "INFO"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def log_path(self) -> Path:
        return self.data_dir / "logs" / "server.log"

    @property
    def ai_enabled(self) -> bool:
        """Return True when a Gemini API key is configured."""
        return bool(self.gemini_api_key)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the cached Settings singleton. Created on first call."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached settings. Used in tests."""
    global _settings  # noqa: PLW0603
    _settings = None
