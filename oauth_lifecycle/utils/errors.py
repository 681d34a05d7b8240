"""Error types for the OAuth lifecycle package.

Every exception carries an ``ErrorKind`` so callers can branch on the kind of
failure instead of matching message text. Validation outcomes (state mismatch,
wrong audience, inactive token) are not exceptions; see ``oauth_tokens``.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Broad category of an OAuth failure."""

    CONFIGURATION = "configuration"
    NETWORK = "network"
    PROTOCOL = "protocol"
    VALIDATION = "validation"
    DEVICE_FLOW_TERMINAL = "device_flow_terminal"


class OAuthError(Exception):
    """Base exception for OAuth lifecycle errors."""

    kind: ErrorKind = ErrorKind.PROTOCOL

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# Configuration errors
class ConfigurationError(OAuthError):
    """Raised when configuration is missing or invalid. Not retryable."""

    kind = ErrorKind.CONFIGURATION


class OAuthConfigurationError(ConfigurationError):
    """Raised when OAuth is disabled or its settings are unusable."""

    pass


class MissingConfigFieldError(ConfigurationError):
    """Raised when a required OAuth configuration field is empty."""

    def __init__(self, field: str):
        super().__init__(f"OAuth configuration missing '{field}' field")
        self.field = field


class OAuthNotInitializedError(ConfigurationError):
    """Raised when an OAuth operation is attempted without configuration."""

    def __init__(self, component: str = "OAuth flow", action: str = "Call initialize() first"):
        super().__init__(f"{component} not initialized. {action}")
        self.component = component


# Transport errors
class NetworkError(OAuthError):
    """Raised when the provider could not be reached or timed out."""

    kind = ErrorKind.NETWORK


class CallbackTimeoutError(NetworkError):
    """Raised when no authorization callback arrives in time."""

    def __init__(self, timeout: float):
        super().__init__(
            f"OAuth callback timeout - no response received within {timeout:g} seconds"
        )
        self.timeout = timeout


# Provider errors
class ProtocolError(OAuthError):
    """Raised when the provider answers with an OAuth error (RFC 6749 Section 5.2)."""

    kind = ErrorKind.PROTOCOL

    def __init__(
        self,
        error: str,
        error_description: str | None = None,
        status_code: int | None = None,
        context: str | None = None,
    ):
        self.error = error
        self.error_description = error_description
        self.status_code = status_code
        detail = f"{error}: {error_description}" if error_description else error
        message = f"{context}: {detail}" if context else detail
        super().__init__(message)
