"""Base class for OAuth flow handlers.

This module provides shared functionality for OAuth handlers including
configuration checks, HTTP client setup, OAuth error parsing and audit
event reporting.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..observability.audit import EventSink, NullEventSink, Outcome, record_event
from ..utils.errors import NetworkError, OAuthNotInitializedError, ProtocolError
from .oauth_config import OAuthConfig
from .oauth_tokens import TokenResponse

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
GITHUB_JSON_ACCEPT = "application/vnd.github+json"

# Longest slice of a provider error body carried into error messages
MAX_ERROR_BODY = 200


def is_success(response: httpx.Response) -> bool:
    """Check for a 2xx status code."""
    return 200 <= response.status_code < 300


def response_json(response: httpx.Response) -> dict[str, Any] | None:
    """Decode a JSON object body, or None if the body is not one."""
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class OAuthHandlerBase(ABC):
    """Base class for OAuth flow handlers with shared functionality.

    This class provides common attributes and methods used by both
    the Authorization Code Flow and Device Flow handlers.
    """

    def __init__(
        self,
        oauth_config: OAuthConfig | None = None,
        event_sink: EventSink | None = None,
    ):
        """Initialize OAuth handler base.

        Args:
            oauth_config: Resolved OAuth configuration (may be supplied later)
            event_sink: Audit sink (default: discard events)
        """
        self.oauth_config = oauth_config.validate() if oauth_config else None
        self.event_sink = event_sink or NullEventSink()

    @abstractmethod
    async def authorize(self) -> TokenResponse:
        """Run the authorization flow to obtain tokens.

        Returns:
            TokenResponse with access token and optional refresh token

        Raises:
            OAuthError: If authorization fails
        """
        pass

    @property
    def is_initialized(self) -> bool:
        return self.oauth_config is not None

    def require_config(self) -> OAuthConfig:
        """Get the configuration or fail with a configuration error."""
        if self.oauth_config is None:
            raise OAuthNotInitializedError()
        return self.oauth_config

    def _http_client(self, accept: str = "application/json") -> httpx.AsyncClient:
        """Create an HTTP client with the configured timeout and identity headers."""
        config = self.require_config()
        return httpx.AsyncClient(
            timeout=config.request_timeout,
            headers={"User-Agent": config.user_agent, "Accept": accept},
        )

    def _client_auth(self) -> httpx.BasicAuth:
        """HTTP Basic credentials for the provider's application endpoints."""
        config = self.require_config()
        return httpx.BasicAuth(config.client_id, config.client_secret)

    def _parse_oauth_error(self, response: httpx.Response) -> tuple[str, str | None] | None:
        """Parse OAuth error response (RFC 6749 Section 5.2).

        Args:
            response: HTTP response from token endpoint

        Returns:
            Tuple of (error code, error description), or None if the body has no error
        """
        error_data = response_json(response)
        if not error_data or not error_data.get("error"):
            return None
        return str(error_data["error"]), error_data.get("error_description")

    def _protocol_error(self, response: httpx.Response, context: str) -> ProtocolError:
        """Build a ProtocolError describing a failed provider response."""
        parsed = self._parse_oauth_error(response)
        if parsed:
            error, description = parsed
        else:
            error = f"http_{response.status_code}"
            body = (response.text or "").strip()[:MAX_ERROR_BODY]
            reason = response.reason_phrase or ""
            description = " - ".join(part for part in (reason, body) if part) or None
        return ProtocolError(error, description, status_code=response.status_code, context=context)

    async def _post_token_request(self, form: dict[str, str], context: str, **token_kwargs: Any) -> TokenResponse:
        """POST a grant to the token endpoint and parse the token response.

        Args:
            form: Form fields (client credentials are added here)
            context: Prefix for error messages, e.g. "Token exchange failed"
            **token_kwargs: Passed to TokenResponse.from_oauth_response

        Returns:
            Parsed TokenResponse

        Raises:
            ProtocolError: If the provider rejects the request
            NetworkError: If the provider cannot be reached
        """
        config = self.require_config()
        data = {
            "client_id": config.client_id,
            "client_secret": config.client_secret,
            **form,
        }

        async with self._http_client() as client:
            try:
                response = await client.post(
                    config.token_endpoint,
                    data=data,
                    headers={"Content-Type": FORM_CONTENT_TYPE},
                )
            except httpx.HTTPError as e:
                raise NetworkError(f"{context}: {e}") from e

        if not is_success(response):
            raise self._protocol_error(response, context)

        # GitHub reports OAuth errors with a 200 status
        parsed = self._parse_oauth_error(response)
        if parsed:
            raise ProtocolError(parsed[0], parsed[1], status_code=response.status_code, context=context)

        token_data = response_json(response)
        if not token_data or not token_data.get("access_token"):
            raise ProtocolError(
                "invalid_response",
                "token response missing access_token",
                status_code=response.status_code,
                context=context,
            )

        token_kwargs.setdefault("default_scope", config.scope_string)
        try:
            return TokenResponse.from_oauth_response(token_data, **token_kwargs)
        except ValueError as e:
            raise ProtocolError(
                "invalid_response", str(e), status_code=response.status_code, context=context
            ) from e

    def _record(self, action: str, outcome: Outcome, **details: Any) -> None:
        """Report an audit event, tagging it with the client id."""
        if self.oauth_config is not None:
            details.setdefault("client_id", self.oauth_config.client_id)
        record_event(self.event_sink, f"oauth_{action}", outcome, "auth", details)
