"""OAuth 2.0 authorization lifecycle.

This package provides:
- Authorization Code Flow with PKCE (RFC 7636)
- Resource indicators and audience checks (RFC 8707)
- Device Authorization Grant (RFC 8628)
- Token refresh, validation and revocation
- A local callback server for browser-based logins
"""

from .audience import AudienceValidator, parse_expiry
from .callback_server import CallbackResult, OAuthCallbackServer
from .device_flow import (
    DeviceAuthorizationCallback,
    DeviceFlowDeniedError,
    DeviceFlowError,
    DeviceFlowExpiredError,
    DeviceFlowHandler,
    DeviceFlowSession,
    DeviceFlowTimeoutError,
)
from .oauth_base import OAuthHandlerBase
from .oauth_config import OAuthConfig
from .oauth_flow import (
    AuthorizationRequest,
    OAuthFlowManager,
    generate_pkce_pair,
    generate_pkce_params,
    generate_state,
    validate_state,
)
from .oauth_helpers import (
    OAuthFlowResult,
    OAuthStatus,
    RevocationResult,
    begin_authorization,
    complete_authorization,
    complete_device_authorization,
    get_oauth_status,
    refresh_stored_credentials,
    revoke_oauth_tokens,
)
from .oauth_tokens import (
    AudienceValidation,
    PKCEParams,
    TokenResponse,
    TokenValidation,
    ValidationFailure,
)

__all__ = [
    # Base class
    "OAuthHandlerBase",
    # Configuration
    "OAuthConfig",
    # Authorization Code Flow
    "OAuthFlowManager",
    "AuthorizationRequest",
    "generate_pkce_pair",
    "generate_pkce_params",
    "generate_state",
    "validate_state",
    # Device Flow (RFC 8628)
    "DeviceFlowHandler",
    "DeviceFlowSession",
    "DeviceFlowError",
    "DeviceFlowExpiredError",
    "DeviceFlowDeniedError",
    "DeviceFlowTimeoutError",
    "DeviceAuthorizationCallback",
    # Audience (RFC 8707)
    "AudienceValidator",
    "parse_expiry",
    # Callback server
    "OAuthCallbackServer",
    "CallbackResult",
    # Tokens and results
    "PKCEParams",
    "TokenResponse",
    "TokenValidation",
    "AudienceValidation",
    "ValidationFailure",
    # Orchestration
    "OAuthFlowResult",
    "OAuthStatus",
    "RevocationResult",
    "begin_authorization",
    "complete_authorization",
    "complete_device_authorization",
    "refresh_stored_credentials",
    "get_oauth_status",
    "revoke_oauth_tokens",
]
