"""OAuth token and validation result types.

Token values are excluded from ``repr`` so they cannot leak through logs or
tracebacks.
"""

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

DEFAULT_TOKEN_TYPE = "Bearer"
DEFAULT_EXPIRES_IN = 3600


@dataclass(frozen=True)
class PKCEParams:
    """PKCE verifier/challenge pair (RFC 7636)."""

    code_verifier: str = field(repr=False)
    code_challenge: str
    code_challenge_method: str = "S256"


@dataclass
class TokenResponse:
    """Token endpoint response with metadata."""

    access_token: str = field(repr=False)
    token_type: str = DEFAULT_TOKEN_TYPE
    expires_in: int = DEFAULT_EXPIRES_IN
    refresh_token: str | None = field(default=None, repr=False)
    scope: str = ""

    # Unix timestamp
    issued_at: float = field(default_factory=time.time)

    @property
    def expires_at(self) -> datetime:
        """Absolute expiry time (issued_at + expires_in)."""
        return datetime.fromtimestamp(self.issued_at + self.expires_in, tz=UTC)

    @property
    def scopes(self) -> list[str]:
        """Granted scopes as a list."""
        return self.scope.split() if self.scope else []

    def is_expired(self, buffer_seconds: int = 60) -> bool:
        """Check if token is expired or will expire soon.

        Args:
            buffer_seconds: Consider token expired if it expires within this many seconds

        Returns:
            True if token is expired or will expire within buffer_seconds
        """
        return time.time() >= (self.issued_at + self.expires_in - buffer_seconds)

    @classmethod
    def from_oauth_response(
        cls,
        response_data: dict[str, Any],
        default_scope: str = "",
        previous_refresh_token: str | None = None,
    ) -> "TokenResponse":
        """Create from OAuth token endpoint response.

        Args:
            response_data: JSON response from token endpoint
            default_scope: Scope to report when the provider omits one
            previous_refresh_token: Refresh token to keep if the response has none

        Returns:
            TokenResponse with issued_at set to current time

        Raises:
            KeyError: If the response has no access_token
            ValueError: If expires_in is not a number of seconds
        """
        raw_expires_in = response_data.get("expires_in") or DEFAULT_EXPIRES_IN
        if isinstance(raw_expires_in, bool):
            raise ValueError(f"Invalid expires_in: {raw_expires_in!r}")
        try:
            expires_in = int(raw_expires_in)
        except (TypeError, ValueError, OverflowError) as e:
            raise ValueError(f"Invalid expires_in: {raw_expires_in!r}") from e

        return cls(
            access_token=response_data["access_token"],
            token_type=response_data.get("token_type") or DEFAULT_TOKEN_TYPE,
            expires_in=expires_in,
            refresh_token=response_data.get("refresh_token") or previous_refresh_token,
            scope=response_data.get("scope") or default_scope,
            issued_at=time.time(),
        )


class ValidationFailure(str, Enum):
    """Why a token or flow was rejected."""

    INACTIVE = "inactive"
    WRONG_AUDIENCE = "wrong_audience"
    EXPIRED = "expired"
    VERIFICATION_ERROR = "verification_error"
    STATE_INVALID = "state_invalid"


@dataclass
class AudienceValidation:
    """Result of checking which client a token was issued to."""

    valid_audience: bool
    error: str | None = None
    expires_at: datetime | None = None
    failure: ValidationFailure | None = None


@dataclass
class TokenValidation:
    """Result of validating a bearer token."""

    valid: bool
    scopes: list[str] = field(default_factory=list)
    expires_at: datetime | None = None
    error: str | None = None
    failure: ValidationFailure | None = None
