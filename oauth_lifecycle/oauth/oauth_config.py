"""OAuth client configuration.

The configuration is resolved once (see ``core.config.Settings``) and shared
read-only by every handler for the lifetime of the process.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from ..utils.errors import MissingConfigFieldError

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0

REQUIRED_FIELDS = (
    "client_id",
    "client_secret",
    "redirect_uri",
    "scopes",
    "authorization_endpoint",
    "token_endpoint",
    "base_url",
    "api_base_url",
    "user_agent",
    "resource_uri",
)


@dataclass(frozen=True)
class OAuthConfig:
    """OAuth configuration for one provider deployment."""

    # Client identity
    client_id: str
    client_secret: str = field(repr=False)
    redirect_uri: str
    scopes: tuple[str, ...]

    # Provider endpoints
    authorization_endpoint: str
    token_endpoint: str
    base_url: str
    api_base_url: str

    # Request identity
    user_agent: str
    resource_uri: str

    device_authorization_endpoint: str | None = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    def validate(self) -> "OAuthConfig":
        """Check that every required field is populated.

        Returns:
            The same configuration, for chaining

        Raises:
            MissingConfigFieldError: If a required field is empty
        """
        for name in REQUIRED_FIELDS:
            if not getattr(self, name):
                raise MissingConfigFieldError(name)
        if self.request_timeout <= 0:
            raise MissingConfigFieldError("request_timeout")
        return self

    @property
    def scope_string(self) -> str:
        """Scopes joined the way the authorization endpoint expects."""
        return " ".join(self.scopes)

    @property
    def device_code_url(self) -> str:
        """Device authorization endpoint (RFC 8628 Section 3.1)."""
        return self.device_authorization_endpoint or f"{self.base_url.rstrip('/')}/login/device/code"

    @property
    def user_info_url(self) -> str:
        """Authenticated-user endpoint used to check that a token is live."""
        return f"{self.api_base_url.rstrip('/')}/user"

    @property
    def introspection_url(self) -> str:
        """Token introspection endpoint for this client."""
        return f"{self.api_base_url.rstrip('/')}/applications/{self.client_id}/token"

    @property
    def revocation_url(self) -> str:
        """Grant revocation endpoint for this client."""
        return f"{self.api_base_url.rstrip('/')}/applications/{self.client_id}/grant"

    def redacted(self) -> dict[str, Any]:
        """Get the configuration without the client secret."""
        return {
            "client_id": self.client_id,
            "has_client_secret": bool(self.client_secret),
            "redirect_uri": self.redirect_uri,
            "scopes": list(self.scopes),
            "authorization_endpoint": self.authorization_endpoint,
            "token_endpoint": self.token_endpoint,
            "base_url": self.base_url,
            "api_base_url": self.api_base_url,
            "device_authorization_endpoint": self.device_code_url,
            "user_agent": self.user_agent,
            "resource_uri": self.resource_uri,
        }

    @classmethod
    def for_github(
        cls,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: list[str] | tuple[str, ...],
        user_agent: str,
        github_host: str | None = None,
        resource_uri: str | None = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> "OAuthConfig":
        """Build a configuration for github.com or a GitHub Enterprise Server host.

        Args:
            client_id: OAuth App client ID
            client_secret: OAuth App client secret
            redirect_uri: Registered callback URL
            scopes: Scopes to request
            user_agent: Value for the User-Agent header
            github_host: Enterprise host (e.g. "https://github.example.com"), None for github.com
            resource_uri: RFC 8707 resource indicator (default: "{api_base}/mcp-server")
            request_timeout: Per-request timeout in seconds

        Returns:
            OAuthConfig with GitHub endpoints filled in
        """
        if github_host:
            base_url = github_host.rstrip("/")
            api_base_url = f"{base_url}/api/v3"
        else:
            base_url = "https://github.com"
            api_base_url = "https://api.github.com"

        resource = resource_uri or f"{base_url if github_host else api_base_url}/mcp-server"

        return cls(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            scopes=tuple(scopes),
            authorization_endpoint=f"{base_url}/login/oauth/authorize",
            token_endpoint=f"{base_url}/login/oauth/access_token",
            base_url=base_url,
            api_base_url=api_base_url,
            user_agent=user_agent,
            resource_uri=resource,
            request_timeout=request_timeout,
        )
