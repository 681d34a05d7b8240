"""OAuth authorization flow with PKCE.

This module implements the OAuth 2.0/2.1 authorization code flow with PKCE
(RFC 7636) and the token maintenance operations that follow it: refresh,
validation with audience checks (RFC 8707), and revocation. Device flow
operations are delegated to ``DeviceFlowHandler`` so both flows share one
configuration and one audit sink.
"""

import hashlib
import hmac
import logging
import secrets
import string
import webbrowser
from base64 import urlsafe_b64encode
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import httpx

from ..observability.audit import EventSink
from ..utils.errors import NetworkError, OAuthError, ProtocolError
from .audience import AudienceValidator
from .callback_server import OAuthCallbackServer
from .device_flow import DeviceFlowHandler, DeviceFlowSession
from .oauth_base import GITHUB_JSON_ACCEPT, OAuthHandlerBase, is_success
from .oauth_config import OAuthConfig
from .oauth_tokens import PKCEParams, TokenResponse, TokenValidation, ValidationFailure

logger = logging.getLogger(__name__)

# RFC 3986 unreserved characters
UNRESERVED_CHARACTERS = string.ascii_uppercase + string.ascii_lowercase + string.digits + "-._~"

PKCE_VERIFIER_LENGTH = 128
STATE_LENGTH = 32

# Authorization URL parameters that callers may not override
PROTECTED_AUTH_PARAMS = frozenset(
    {"client_id", "response_type", "state", "code_challenge", "code_challenge_method"}
)


def generate_random_string(length: int, alphabet: str = UNRESERVED_CHARACTERS) -> str:
    """Generate a cryptographically secure random string.

    Bytes that would bias the result (``byte % len(alphabet)`` is not uniform
    for the top of the byte range) are discarded and resampled.

    Args:
        length: Number of characters
        alphabet: Characters to draw from (at most 256)

    Returns:
        Random string of exactly ``length`` characters
    """
    alphabet_size = len(alphabet)
    max_valid = (256 // alphabet_size) * alphabet_size - 1

    chars: list[str] = []
    while len(chars) < length:
        # Generate extra bytes to account for rejections
        for byte in secrets.token_bytes(length * 2):
            if byte <= max_valid:
                chars.append(alphabet[byte % alphabet_size])
                if len(chars) == length:
                    break
    return "".join(chars)


def compute_code_challenge(code_verifier: str) -> str:
    """base64url(SHA-256(verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_pkce_params(length: int = PKCE_VERIFIER_LENGTH) -> PKCEParams:
    """Generate fresh PKCE parameters.

    Args:
        length: Verifier length, 43 to 128 characters

    Returns:
        PKCEParams with an S256 challenge
    """
    if not 43 <= length <= 128:
        raise ValueError("PKCE code verifier length must be between 43 and 128")
    code_verifier = generate_random_string(length)
    return PKCEParams(
        code_verifier=code_verifier,
        code_challenge=compute_code_challenge(code_verifier),
        code_challenge_method="S256",
    )


def generate_pkce_pair() -> tuple[str, str]:
    """Generate PKCE code verifier and challenge.

    Returns:
        Tuple of (code_verifier, code_challenge)
    """
    params = generate_pkce_params()
    return params.code_verifier, params.code_challenge


def generate_state() -> str:
    """Generate an unguessable CSRF state value."""
    return generate_random_string(STATE_LENGTH)


def validate_state(received_state: Any, expected_state: Any) -> bool:
    """Compare two state values in constant time.

    Returns False (never raises) for missing, non-string or length-mismatched
    values.
    """
    if not isinstance(received_state, str) or not isinstance(expected_state, str):
        return False
    if not received_state or not expected_state:
        return False
    if len(received_state) != len(expected_state):
        return False
    return hmac.compare_digest(received_state.encode("utf-8"), expected_state.encode("utf-8"))


@dataclass(frozen=True)
class AuthorizationRequest:
    """Everything needed to send the user to the provider and finish the flow later."""

    url: str
    state: str = field(repr=False)
    code_verifier: str = field(repr=False)
    code_challenge: str


class OAuthFlowManager(OAuthHandlerBase):
    """Handles OAuth authorization code flow with PKCE and token maintenance.

    Construct one per process and pass it to whoever needs it:

        manager = OAuthFlowManager(config, event_sink=LoggingEventSink())
        request = manager.start_authorization_flow()
        ...
        token = await manager.exchange_code(code, request.code_verifier)
    """

    def __init__(
        self,
        oauth_config: OAuthConfig | None = None,
        event_sink: EventSink | None = None,
        audience_validator: AudienceValidator | None = None,
    ):
        """Initialize OAuth flow manager.

        Args:
            oauth_config: Resolved configuration (may be supplied later via initialize())
            event_sink: Audit sink (default: discard events)
            audience_validator: Override for the introspection-based audience check
        """
        super().__init__(oauth_config, event_sink)
        self._injected_audience_validator = audience_validator
        self._audience_validator = audience_validator
        self._device_flow: DeviceFlowHandler | None = None

    def initialize(self, oauth_config: OAuthConfig, reconfigure: bool = False) -> "OAuthFlowManager":
        """Supply the configuration.

        Calling this again is a no-op unless ``reconfigure`` is True.

        Args:
            oauth_config: Resolved configuration
            reconfigure: Replace an existing configuration

        Returns:
            This manager

        Raises:
            MissingConfigFieldError: If the configuration is incomplete
        """
        if self.oauth_config is not None and not reconfigure:
            if oauth_config != self.oauth_config:
                logger.debug("OAuth manager already initialized; ignoring new configuration")
            return self

        self.oauth_config = oauth_config.validate()
        # An injected validator survives; the default one is rebuilt from the new config
        self._audience_validator = self._injected_audience_validator
        self._device_flow = None
        logger.info(f"OAuth manager initialized for client {oauth_config.client_id}")
        return self

    def get_config(self) -> dict[str, Any] | None:
        """Get the current configuration without the client secret."""
        return self.oauth_config.redacted() if self.oauth_config else None

    @property
    def audience_validator(self) -> AudienceValidator:
        if self._audience_validator is None:
            self._audience_validator = AudienceValidator(self.require_config())
        return self._audience_validator

    @property
    def device_flow(self) -> DeviceFlowHandler:
        if self._device_flow is None:
            self._device_flow = DeviceFlowHandler(self.require_config(), self.event_sink)
        return self._device_flow

    # PKCE and state

    def generate_pkce_params(self) -> PKCEParams:
        return generate_pkce_params()

    def generate_state(self) -> str:
        return generate_state()

    @staticmethod
    def validate_state(received_state: Any, expected_state: Any) -> bool:
        """Validate state parameter with timing-safe comparison."""
        return validate_state(received_state, expected_state)

    # Authorization code flow

    def build_authorization_url(
        self,
        state: str,
        code_challenge: str,
        extra_params: dict[str, str] | None = None,
        resource_uri: str | None = None,
    ) -> str:
        """Create authorization URL with PKCE and state parameters.

        Args:
            state: CSRF state value
            code_challenge: PKCE S256 challenge
            extra_params: Additional query parameters (may replace scope or redirect_uri)
            resource_uri: RFC 8707 resource (default: configured resource URI)

        Returns:
            Full authorization URL

        Raises:
            OAuthNotInitializedError: If no configuration is set
            ValueError: If extra_params tries to replace a protected parameter
        """
        config = self.require_config()

        extra_params = extra_params or {}
        overridden = PROTECTED_AUTH_PARAMS.intersection(extra_params)
        if overridden:
            raise ValueError(f"Cannot override authorization parameters: {', '.join(sorted(overridden))}")

        params = {
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "scope": config.scope_string,
            "response_type": "code",
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            # RFC 8707: Resource parameter
            "resource": resource_uri or config.resource_uri,
            **extra_params,
        }
        return f"{config.authorization_endpoint}?{urlencode(params)}"

    def start_authorization_flow(self, extra_params: dict[str, str] | None = None) -> AuthorizationRequest:
        """Generate PKCE and state and build the authorization URL."""
        pkce = self.generate_pkce_params()
        state = self.generate_state()
        url = self.build_authorization_url(state, pkce.code_challenge, extra_params)
        return AuthorizationRequest(
            url=url,
            state=state,
            code_verifier=pkce.code_verifier,
            code_challenge=pkce.code_challenge,
        )

    async def exchange_code(
        self,
        code: str,
        code_verifier: str,
        state: str | None = None,
        redirect_uri: str | None = None,
        resource_uri: str | None = None,
    ) -> TokenResponse:
        """Exchange authorization code for access token (RFC 6749 Section 4.1.3).

        Success is not audited here; the caller decides whether to log it.

        Args:
            code: Authorization code from callback
            code_verifier: PKCE code verifier
            state: State value to echo to the provider
            redirect_uri: Redirect URI used for this flow (default: configured)
            resource_uri: RFC 8707 resource (default: configured resource URI)

        Returns:
            TokenResponse with access token

        Raises:
            ProtocolError: If the provider rejects the exchange
            NetworkError: If the provider cannot be reached
        """
        config = self.require_config()
        form = {
            "code": code,
            "code_verifier": code_verifier,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri or config.redirect_uri,
            # RFC 8707: Include resource parameter in token request
            "resource": resource_uri or config.resource_uri,
        }
        if state:
            form["state"] = state

        try:
            return await self._post_token_request(form, "Token exchange failed")
        except OAuthError as e:
            self._record("token_exchange", "failure", error=str(e))
            raise

    async def refresh_token(self, refresh_token: str) -> TokenResponse:
        """Refresh an access token using a refresh token (RFC 6749 Section 6).

        If the provider does not return a new refresh token the old one is
        kept on the returned TokenResponse.

        Args:
            refresh_token: Refresh token

        Returns:
            New TokenResponse with refreshed access token

        Raises:
            ProtocolError: If the provider rejects the refresh
            NetworkError: If the provider cannot be reached
        """
        self.require_config()
        form = {"grant_type": "refresh_token", "refresh_token": refresh_token}

        try:
            token = await self._post_token_request(
                form, "Token refresh failed", previous_refresh_token=refresh_token
            )
        except OAuthError as e:
            self._record("token_refresh", "failure", error=str(e))
            raise

        self._record("token_refresh", "success", expires_in=token.expires_in, scopes=token.scopes)
        return token

    # Token maintenance

    async def validate_token(self, token: str, expected_audience: str | None = None) -> TokenValidation:
        """Validate an access token and check its audience.

        Two checks must both pass: the provider accepts the token on its
        authenticated-user endpoint, and introspection shows the token was
        issued to this client.

        Args:
            token: Bearer token to check
            expected_audience: Resource URI (default: configured resource URI)

        Returns:
            TokenValidation (never raises for validation outcomes)
        """
        config = self.require_config()
        resource_uri = expected_audience or config.resource_uri

        try:
            async with self._http_client(accept=GITHUB_JSON_ACCEPT) as client:
                response = await client.get(
                    config.user_info_url,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as e:
            self._record("token_validation", "failure", error=f"Token validation request failed: {e}")
            return TokenValidation(
                valid=False,
                error=f"Token validation request failed: {e}",
                failure=ValidationFailure.VERIFICATION_ERROR,
            )

        if not is_success(response):
            self._record(
                "token_validation",
                "failure",
                error="Provider API validation failed",
                status=response.status_code,
            )
            return TokenValidation(
                valid=False,
                error=f"Token validation failed: {response.status_code} {response.reason_phrase}".rstrip(),
                failure=ValidationFailure.INACTIVE,
            )

        scopes = [s.strip() for s in response.headers.get("x-oauth-scopes", "").split(",") if s.strip()]

        # Audience validation (RFC 8707)
        audience = await self.audience_validator.validate(token, resource_uri)
        if not audience.valid_audience:
            self._record(
                "token_validation",
                "failure",
                error="Token audience validation failed",
                expected_audience=resource_uri,
                reason=audience.error,
            )
            return TokenValidation(
                valid=False,
                error=f"Token audience validation failed: {audience.error}",
                failure=audience.failure or ValidationFailure.WRONG_AUDIENCE,
            )

        self._record("token_validation", "success", scopes=scopes, audience=resource_uri)
        return TokenValidation(valid=True, scopes=scopes, expires_at=audience.expires_at)

    async def revoke_token(self, token: str) -> None:
        """Revoke the application grant behind an access token.

        Local credential storage is left untouched.

        Raises:
            ProtocolError: If the provider rejects the revocation
            NetworkError: If the provider cannot be reached
        """
        config = self.require_config()
        context = "Token revocation failed"

        try:
            async with self._http_client(accept=GITHUB_JSON_ACCEPT) as client:
                try:
                    response = await client.request(
                        "DELETE",
                        config.revocation_url,
                        json={"access_token": token},
                        auth=self._client_auth(),
                    )
                except httpx.HTTPError as e:
                    raise NetworkError(f"{context}: {e}") from e

            if not is_success(response):
                raise self._protocol_error(response, context)

        except OAuthError as e:
            self._record("token_revocation", "failure", error=str(e))
            raise

        self._record("token_revocation", "success")

    # Device flow

    async def initiate_device_flow(self, scopes: list[str] | tuple[str, ...]) -> DeviceFlowSession:
        """Start a device authorization (RFC 8628)."""
        return await self.device_flow.request_device_code(scopes)

    async def poll_device_flow_token(self, device_code: str, interval: int) -> TokenResponse:
        """Poll until the device authorization completes (RFC 8628)."""
        return await self.device_flow.poll_for_token(device_code, interval)

    # Interactive flow

    async def authorize(
        self,
        callback_server: OAuthCallbackServer | None = None,
        open_browser: bool = True,
    ) -> TokenResponse:
        """Run the authorization code flow with a local callback server.

        This will:
        1. Generate PKCE parameters and state
        2. Open the browser at the authorization URL
        3. Wait for the provider to redirect back to the local server
        4. Check the returned state and exchange the code for tokens

        Returns:
            TokenResponse with access token and optional refresh token

        Raises:
            ProtocolError: If authorization or the exchange fails
            CallbackTimeoutError: If the user does not complete authorization in time
        """
        server = callback_server or OAuthCallbackServer()
        redirect_uri = server.callback_url

        request = self.start_authorization_flow({"redirect_uri": redirect_uri})

        logger.info("Starting OAuth authorization flow...")
        logger.info(f"Opening browser to: {request.url}")
        if open_browser:
            webbrowser.open(request.url)

        result = await server.wait_for_callback()

        if result.error:
            raise ProtocolError(result.error, result.error_description, context="Authorization failed")
        if not result.code:
            raise ProtocolError("invalid_request", "no code received", context="Authorization failed")
        if not self.validate_state(result.state, request.state):
            raise ProtocolError("invalid_state", "state mismatch", context="Authorization failed")

        logger.info("Received authorization code, exchanging for tokens...")
        token = await self.exchange_code(
            result.code,
            request.code_verifier,
            state=result.state,
            redirect_uri=redirect_uri,
        )
        logger.info("Successfully obtained access token")
        return token
