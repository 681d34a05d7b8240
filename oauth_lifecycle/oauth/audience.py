"""Token audience validation (RFC 8707 resource indicators).

A token that is merely *active* may have been minted for some other
application registered with the same provider. Accepting it would let that
application act through this server (a confused deputy). The validator asks
the provider's introspection endpoint which client the token belongs to,
authenticating as this deployment's own client, and rejects anything that
was not issued to the configured client id.

Every failure, including network and parse errors, is a rejection.
"""

import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from .oauth_base import GITHUB_JSON_ACCEPT, is_success, response_json
from .oauth_config import OAuthConfig
from .oauth_tokens import AudienceValidation, ValidationFailure

logger = logging.getLogger(__name__)


def parse_expiry(value: Any) -> datetime:
    """Parse an introspection expiry (ISO-8601 string or epoch seconds).

    Raises:
        ValueError: If the value is not a recognizable timestamp
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid expiry value: {value!r}")
    if isinstance(value, int | float):
        try:
            return datetime.fromtimestamp(value, tz=UTC)
        except (OverflowError, OSError) as e:
            raise ValueError(f"Expiry timestamp out of range: {value!r}") from e
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed
    raise ValueError(f"Invalid expiry value: {value!r}")


class AudienceValidator:
    """Confirms a bearer token was issued to this deployment's client."""

    def __init__(self, oauth_config: OAuthConfig):
        """Initialize the validator.

        Args:
            oauth_config: Configuration holding the client credentials and API base
        """
        self.oauth_config = oauth_config

    async def validate(self, token: str, expected_resource: str) -> AudienceValidation:
        """Check which client a token was issued to.

        Args:
            token: Bearer token to check
            expected_resource: Resource URI the token should be valid for

        Returns:
            AudienceValidation; valid_audience is False on any failure
        """
        config = self.oauth_config
        try:
            async with httpx.AsyncClient(
                timeout=config.request_timeout,
                headers={"User-Agent": config.user_agent, "Accept": GITHUB_JSON_ACCEPT},
            ) as client:
                response = await client.post(
                    config.introspection_url,
                    json={"access_token": token},
                    auth=httpx.BasicAuth(config.client_id, config.client_secret),
                )

            if not is_success(response):
                return AudienceValidation(
                    valid_audience=False,
                    error=(
                        f"Token introspection failed: {response.status_code} - "
                        "Token may not be issued by this OAuth application"
                    ),
                    failure=ValidationFailure.VERIFICATION_ERROR,
                )

            token_data = response_json(response)
            if token_data is None:
                raise ValueError("introspection response is not a JSON object")

            app = token_data.get("app") or {}
            issued_client_id = app.get("client_id") if isinstance(app, dict) else None

            if issued_client_id != config.client_id:
                return AudienceValidation(
                    valid_audience=False,
                    error=(
                        f"Token was issued by client_id '{issued_client_id or 'unknown'}' "
                        f"but this server expects '{config.client_id}'"
                    ),
                    failure=ValidationFailure.WRONG_AUDIENCE,
                )

            raw_expiry = token_data.get("expires_at")
            if raw_expiry:
                expires_at = parse_expiry(raw_expiry)
                if expires_at <= datetime.now(UTC):
                    return AudienceValidation(
                        valid_audience=False,
                        error="Token has expired according to introspection data",
                        expires_at=expires_at,
                        failure=ValidationFailure.EXPIRED,
                    )
                return AudienceValidation(valid_audience=True, expires_at=expires_at)

            logger.debug(f"Token audience confirmed for resource {expected_resource}")
            return AudienceValidation(valid_audience=True)

        except (httpx.HTTPError, ValueError, TypeError, AttributeError) as e:
            return AudienceValidation(
                valid_audience=False,
                error=f"Audience validation error: {e}",
                failure=ValidationFailure.VERIFICATION_ERROR,
            )
