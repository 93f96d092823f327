from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client configuration loaded from environment variables or .env."""

    server_url: str = Field("http://localhost:5280", alias="GAMERAG_SERVER_URL")
    api_key: Optional[str] = Field(None, alias="GAMERAG_API_KEY")
    protocol_version: str = Field("1", alias="GAMERAG_PROTOCOL_VERSION")

    request_timeout: float = Field(30.0, alias="GAMERAG_REQUEST_TIMEOUT")
    default_importance: float = Field(0.3, alias="GAMERAG_DEFAULT_IMPORTANCE")
    log_responses: bool = Field(True, alias="GAMERAG_LOG_RESPONSES")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("server_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("api_key")
    @classmethod
    def _blank_key_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]
