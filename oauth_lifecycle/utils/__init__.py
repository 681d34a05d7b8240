"""Utility functions and classes."""

from .errors import (
    CallbackTimeoutError,
    ConfigurationError,
    ErrorKind,
    MissingConfigFieldError,
    NetworkError,
    OAuthConfigurationError,
    OAuthError,
    OAuthNotInitializedError,
    ProtocolError,
)
from .logging_config import AUDIT_LOGGER_NAME, configure_audit_logger, setup_logging

__all__ = [
    "ErrorKind",
    "OAuthError",
    "ConfigurationError",
    "OAuthConfigurationError",
    "MissingConfigFieldError",
    "OAuthNotInitializedError",
    "NetworkError",
    "CallbackTimeoutError",
    "ProtocolError",
    "AUDIT_LOGGER_NAME",
    "configure_audit_logger",
    "setup_logging",
]
