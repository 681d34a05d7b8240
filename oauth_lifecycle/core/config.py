"""Configuration management for the OAuth lifecycle."""

import re
from dataclasses import replace
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .. import __version__
from ..oauth.oauth_config import OAuthConfig
from ..utils.errors import OAuthConfigurationError

DEFAULT_SCOPES = "repo read:user read:org"
DEFAULT_REDIRECT_URI = "http://127.0.0.1:8765/auth/callback"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # OAuth Client
    oauth_enabled: bool = Field(default=False, description="Enable OAuth authentication")
    oauth_client_id: str | None = Field(default=None, description="OAuth App client ID")
    oauth_client_secret: str | None = Field(
        default=None, description="OAuth App client secret", repr=False
    )
    oauth_redirect_uri: str = Field(
        default=DEFAULT_REDIRECT_URI, description="Registered OAuth callback URL"
    )
    oauth_scopes: str = Field(
        default=DEFAULT_SCOPES,
        description="Scopes to request, separated by spaces or commas",
    )

    # Provider endpoints
    oauth_authorization_url: str | None = Field(
        default=None, description="Override for the authorization endpoint"
    )
    oauth_token_url: str | None = Field(default=None, description="Override for the token endpoint")
    github_host: str | None = Field(
        default=None,
        description="GitHub Enterprise Server URL (e.g. https://github.example.com). "
        "Leave unset for github.com.",
    )
    mcp_server_resource_uri: str | None = Field(
        default=None,
        description="RFC 8707 resource indicator. Defaults to {api base}/mcp-server.",
    )
    oauth_request_timeout: float = Field(
        default=30.0, gt=0, description="Timeout in seconds for each provider request"
    )

    # Audit
    audit_logging: bool = Field(default=True, description="Write OAuth audit events to the log")
    audit_log_file: Path | None = Field(
        default=None, description="Write audit events to this file instead of the main log"
    )

    # Token Storage
    token_storage_path: Path = Field(
        default=Path.home() / ".oauth-lifecycle" / "tokens",
        description="Path to store OAuth tokens",
    )
    token_encryption_key: str | None = Field(
        default=None, description="Fernet key for encrypting stored tokens", repr=False
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("github_host")
    @classmethod
    def validate_github_host(cls, v: str | None) -> str | None:
        """Validate that github_host is an HTTP(S) URL."""
        if not v:
            return None
        if not v.startswith(("https://", "http://")):
            raise ValueError("GitHub host URL must start with https:// or http://")
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def scope_list(self) -> list[str]:
        """Configured scopes, split on whitespace or commas."""
        return [s for s in re.split(r"[\s,]+", self.oauth_scopes) if s]

    @property
    def user_agent(self) -> str:
        return f"oauth-lifecycle/{__version__}"

    def to_oauth_config(self) -> OAuthConfig:
        """Resolve settings into an OAuthConfig.

        Raises:
            OAuthConfigurationError: If OAuth is disabled or credentials are missing
        """
        if not self.oauth_enabled:
            raise OAuthConfigurationError("OAuth is not enabled. Set OAUTH_ENABLED=true")
        if not self.oauth_client_id or not self.oauth_client_secret:
            raise OAuthConfigurationError(
                "OAuth credentials missing. Set OAUTH_CLIENT_ID and OAUTH_CLIENT_SECRET"
            )
        if not self.scope_list:
            raise OAuthConfigurationError("No OAuth scopes configured")

        config = OAuthConfig.for_github(
            client_id=self.oauth_client_id,
            client_secret=self.oauth_client_secret,
            redirect_uri=self.oauth_redirect_uri,
            scopes=self.scope_list,
            user_agent=self.user_agent,
            github_host=self.github_host,
            resource_uri=self.mcp_server_resource_uri,
            request_timeout=self.oauth_request_timeout,
        )

        overrides = {}
        if self.oauth_authorization_url:
            overrides["authorization_endpoint"] = self.oauth_authorization_url
        if self.oauth_token_url:
            overrides["token_endpoint"] = self.oauth_token_url
        if overrides:
            config = replace(config, **overrides)
        return config.validate()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process-wide settings, loading them on first use."""
    return Settings()
