"""OAuth Lifecycle - OAuth 2.0/2.1 authorization and token lifecycle for tool-calling clients."""

__version__ = "0.1.0"

from .core.config import Settings, get_settings
from .observability import EventSink, LoggingEventSink, NullEventSink, RecordingEventSink
from .oauth import (
    AudienceValidator,
    DeviceFlowHandler,
    DeviceFlowSession,
    OAuthConfig,
    OAuthFlowManager,
    TokenResponse,
    TokenValidation,
    ValidationFailure,
)
from .storage import CredentialVault, FileCredentialVault, StateStore
from .utils.errors import (
    ConfigurationError,
    ErrorKind,
    NetworkError,
    OAuthError,
    ProtocolError,
)

__all__ = [
    "Settings",
    "get_settings",
    # OAuth
    "OAuthConfig",
    "OAuthFlowManager",
    "DeviceFlowHandler",
    "DeviceFlowSession",
    "AudienceValidator",
    "TokenResponse",
    "TokenValidation",
    "ValidationFailure",
    # Storage
    "StateStore",
    "CredentialVault",
    "FileCredentialVault",
    # Audit
    "EventSink",
    "NullEventSink",
    "LoggingEventSink",
    "RecordingEventSink",
    # Errors
    "ErrorKind",
    "OAuthError",
    "ConfigurationError",
    "NetworkError",
    "ProtocolError",
]
