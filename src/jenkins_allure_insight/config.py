"""Configuration settings from environment variables."""

import os
from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict
from simple_logger.logger import get_logger

from jenkins_allure_insight.models import AuthenticationConfig

logger = get_logger(name=__name__, level=os.environ.get("LOG_LEVEL", "INFO"))


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Default Jenkins session (a session stored via the API takes precedence)
    jenkins_base_url: str | None = None
    jenkins_session_id: SecretStr | None = None
    jenkins_ssl_verify: bool = True

    # Per-read timeout in seconds
    request_timeout: float = Field(default=30.0, gt=0)

    # Extra fetch rounds for builds whose reads all failed
    max_retries: int = Field(default=3, ge=0)

    # Background polling
    auto_refresh: bool = False
    refresh_interval: int = Field(default=30, gt=0)

    @property
    def auth_configured(self) -> bool:
        """Check if both the base URL and the session id are set."""
        if not self.jenkins_base_url:
            return False
        if not self.jenkins_session_id or not self.jenkins_session_id.get_secret_value():
            if self.jenkins_session_id is not None:
                logger.warning("JENKINS_SESSION_ID is set but empty")
            return False
        return True

    def authentication(self) -> AuthenticationConfig | None:
        """Snapshot of the configured Jenkins session, if complete."""
        if not self.auth_configured:
            return None
        return AuthenticationConfig(
            jsession_id=self.jenkins_session_id,
            jenkins_base_url=self.jenkins_base_url,
        )


@lru_cache
def get_settings() -> Settings:
    """Get application settings instance."""
    return Settings()
