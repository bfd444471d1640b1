from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(default="development", validation_alias="APP_ENV")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    lms_base_url: str = Field(default="http://localhost:8000", validation_alias="LMS_BASE_URL")
    lms_api_prefix: str = Field(default="novel_lms.novel_lms.api", validation_alias="LMS_API_PREFIX")
    lms_api_key: str | None = Field(default=None, validation_alias="LMS_API_KEY")
    lms_api_secret: str | None = Field(default=None, validation_alias="LMS_API_SECRET")

    lms_timeout_connect: float = Field(default=3.0, validation_alias="LMS_TIMEOUT_CONNECT")
    lms_timeout_read: float = Field(default=15.0, validation_alias="LMS_TIMEOUT_READ")

    progress_dedup_ttl_seconds: float = Field(default=15.0, validation_alias="PROGRESS_DEDUP_TTL_SECONDS")
    module_dedup_ttl_seconds: float = Field(default=30.0, validation_alias="MODULE_DEDUP_TTL_SECONDS")

    refresh_retry_delay_seconds: float = Field(default=2.0, validation_alias="REFRESH_RETRY_DELAY_SECONDS")
    refresh_max_attempts: int = Field(default=3, validation_alias="REFRESH_MAX_ATTEMPTS")

    cors_allow_origins: str = Field(default="http://localhost:3000", validation_alias="CORS_ALLOW_ORIGINS")


settings = Settings()


def _is_prod() -> bool:
    return (settings.app_env or "").strip().lower() in {"prod", "production"}


if _is_prod():
    if settings.lms_base_url.strip().rstrip("/") == "http://localhost:8000":
        raise RuntimeError("LMS_BASE_URL must be set in production")
    if bool(settings.lms_api_key) != bool(settings.lms_api_secret):
        raise RuntimeError("LMS_API_KEY and LMS_API_SECRET must be set together")
