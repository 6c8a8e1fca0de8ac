from __future__ import annotations

from functools import lru_cache

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from httpbase.errors import ConfigError


DEFAULT_PORT = 8080
DEFAULT_SHUTDOWN_GRACE_SECONDS = 10.0


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", frozen=True)

    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535, alias="PORT")
    shutdown_grace_seconds: float = Field(default=DEFAULT_SHUTDOWN_GRACE_SECONDS, gt=0, alias="SHUTDOWN_GRACE_SECONDS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Build metadata, normally injected by the image build.
    app_version: str = Field(default="", alias="APP_VERSION")
    vcs_revision: str = Field(default="", alias="VCS_REVISION")
    vcs_time: str = Field(default="", alias="VCS_TIME")
    vcs_modified: str = Field(default="", alias="VCS_MODIFIED")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as exc:
        raise ConfigError(f"invalid settings: {exc}") from exc
