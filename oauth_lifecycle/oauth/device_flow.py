"""OAuth 2.0 Device Authorization Grant (RFC 8628).

This module implements the Device Authorization Grant for OAuth 2.0,
which allows devices with limited input capabilities to obtain user
authorization without requiring a browser on the device.

Polling state machine:
    authorization_pending -> wait ``interval``, poll again
    slow_down             -> ``interval += 5`` (cumulative), wait, poll again
    expired_token         -> DeviceFlowExpiredError, no retry
    access_denied         -> DeviceFlowDeniedError, no retry
    any other error code  -> transient, wait, poll again
    network failure       -> transient, unless the message mentions expiry
    15 minutes elapsed    -> DeviceFlowTimeoutError
"""

import asyncio
import logging
import sys
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..observability.audit import EventSink
from ..utils.errors import ErrorKind, NetworkError, OAuthError, ProtocolError
from .oauth_base import FORM_CONTENT_TYPE, OAuthHandlerBase, is_success, response_json
from .oauth_config import OAuthConfig
from .oauth_tokens import TokenResponse

logger = logging.getLogger(__name__)

# RFC 8628 grant type URN
DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"

DEFAULT_POLL_INTERVAL = 5
SLOW_DOWN_INCREMENT = 5
# Hard ceiling on polling, independent of the provider's expires_in
MAX_POLL_DURATION = 15 * 60


@dataclass
class DeviceFlowSession:
    """Information about a pending device authorization request.

    This is passed to the authorization callback so external systems
    (like Slack) can notify users about pending authorizations.
    """

    device_code: str = field(repr=False)  # The secret device code (don't expose to users)
    user_code: str
    verification_uri: str
    verification_uri_complete: str | None = None
    expires_in: int = 900
    interval: int = DEFAULT_POLL_INTERVAL

    @property
    def expires_minutes(self) -> int:
        """Get expiration time in minutes."""
        return self.expires_in // 60

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "DeviceFlowSession":
        """Create from a device authorization response.

        Raises:
            KeyError: If a required field is missing
        """
        return cls(
            device_code=data["device_code"],
            user_code=data["user_code"],
            verification_uri=data["verification_uri"],
            verification_uri_complete=data.get("verification_uri_complete"),
            expires_in=int(data.get("expires_in") or 900),
            interval=int(data.get("interval") or DEFAULT_POLL_INTERVAL),
        )


# Type alias for the authorization callback
DeviceAuthorizationCallback = Callable[[DeviceFlowSession], Awaitable[None] | None]


class DeviceFlowError(OAuthError):
    """Base exception for terminal device flow errors."""

    kind = ErrorKind.DEVICE_FLOW_TERMINAL

    def __init__(self, error: str, error_description: str | None = None):
        self.error = error
        self.error_description = error_description
        message = f"{error}: {error_description}" if error_description else error
        super().__init__(message)


class DeviceFlowExpiredError(DeviceFlowError):
    """Device code has expired."""

    pass


class DeviceFlowDeniedError(DeviceFlowError):
    """User denied the authorization request."""

    pass


class DeviceFlowTimeoutError(DeviceFlowError):
    """Polling exceeded the maximum wait time."""

    pass


class DeviceFlowHandler(OAuthHandlerBase):
    """Handles OAuth 2.0 Device Authorization Grant (RFC 8628).

    This flow is designed for clients that:
    - Have limited input capabilities
    - Cannot easily open a browser
    - Need to run headless (e.g., in a container or SSH session)

    The flow works by:
    1. Requesting a device code from the authorization server
    2. Displaying a URL and user code for the user to enter in their browser
    3. Polling the token endpoint until the user completes authorization

    Example with callback for Slack notification:
        async def notify_slack(session: DeviceFlowSession):
            await slack_client.chat_postMessage(
                channel="#auth",
                text=f"Visit {session.verification_uri} and enter {session.user_code}",
            )

        handler = DeviceFlowHandler(oauth_config, authorization_callback=notify_slack)
    """

    def __init__(
        self,
        oauth_config: OAuthConfig | None = None,
        event_sink: EventSink | None = None,
        authorization_callback: DeviceAuthorizationCallback | None = None,
        max_wait: float = MAX_POLL_DURATION,
    ):
        """Initialize device flow handler.

        Args:
            oauth_config: Resolved OAuth configuration
            event_sink: Audit sink (default: discard events)
            authorization_callback: Optional callback invoked with the DeviceFlowSession
                once the user code is available. May be sync or async.
            max_wait: Maximum seconds to poll before giving up
        """
        super().__init__(oauth_config, event_sink)
        self.authorization_callback = authorization_callback
        self.max_wait = max_wait

    async def request_device_code(self, scopes: list[str] | tuple[str, ...] | None = None) -> DeviceFlowSession:
        """Request a device code from the authorization server.

        Args:
            scopes: Scopes to request (default: configured scopes)

        Returns:
            DeviceFlowSession with the user code and verification URI

        Raises:
            ProtocolError: If the provider rejects the request
            NetworkError: If the provider cannot be reached
        """
        config = self.require_config()
        scope = " ".join(scopes) if scopes else config.scope_string
        context = "Device flow initiation failed"

        try:
            async with self._http_client() as client:
                try:
                    response = await client.post(
                        config.device_code_url,
                        data={"client_id": config.client_id, "scope": scope},
                        headers={"Content-Type": FORM_CONTENT_TYPE},
                    )
                except httpx.HTTPError as e:
                    raise NetworkError(f"{context}: {e}") from e

            if not is_success(response):
                raise self._protocol_error(response, context)

            parsed = self._parse_oauth_error(response)
            if parsed:
                raise ProtocolError(parsed[0], parsed[1], status_code=response.status_code, context=context)

            try:
                session = DeviceFlowSession.from_response(response_json(response) or {})
            except (KeyError, TypeError, ValueError) as e:
                raise ProtocolError(
                    "invalid_response", f"missing or invalid field {e}", context=context
                ) from e

        except OAuthError as e:
            self._record("device_flow_initiate", "failure", error=str(e))
            raise

        self._record(
            "device_flow_initiate",
            "success",
            expires_in=session.expires_in,
            interval=session.interval,
        )
        return session

    async def poll_for_token(
        self,
        device_code: str,
        interval: int = DEFAULT_POLL_INTERVAL,
        max_wait: float | None = None,
    ) -> TokenResponse:
        """Poll the token endpoint until user authorizes or polling times out.

        Args:
            device_code: Device code from request_device_code()
            interval: Initial polling interval in seconds
            max_wait: Override for the maximum polling duration in seconds

        Returns:
            TokenResponse with access token and optional refresh token

        Raises:
            DeviceFlowExpiredError: If the device code expires
            DeviceFlowDeniedError: If the user denies the request
            DeviceFlowTimeoutError: If polling exceeds the maximum duration
        """
        config = self.require_config()
        limit = self.max_wait if max_wait is None else max_wait

        token_data = {
            "client_id": config.client_id,
            "device_code": device_code,
            "grant_type": DEVICE_CODE_GRANT_TYPE,
        }

        logger.debug(f"Polling {config.token_endpoint} every {interval}s for device authorization")

        start_time = time.monotonic()
        current_interval = interval

        async def wait() -> None:
            remaining = limit - (time.monotonic() - start_time)
            await asyncio.sleep(max(0, min(current_interval, remaining)))

        try:
            async with self._http_client() as client:
                while True:
                    if time.monotonic() - start_time >= limit:
                        raise DeviceFlowTimeoutError(
                            "timeout",
                            f"Device flow timed out after {limit / 60:g} minutes",
                        )

                    try:
                        response = await client.post(
                            config.token_endpoint,
                            data=token_data,
                            headers={"Content-Type": FORM_CONTENT_TYPE},
                        )
                    except httpx.HTTPError as e:
                        if "expired" in str(e).lower():
                            raise DeviceFlowExpiredError("expired_token", str(e)) from e
                        # Network error, wait and retry
                        logger.warning(f"Network error during polling: {e}")
                        await wait()
                        continue

                    payload = response_json(response) or {}
                    error = payload.get("error")

                    # Success - we got a token
                    if is_success(response) and not error and payload.get("access_token"):
                        try:
                            token = TokenResponse.from_oauth_response(
                                payload, default_scope=config.scope_string
                            )
                        except ValueError as e:
                            raise ProtocolError(
                                "invalid_response",
                                str(e),
                                status_code=response.status_code,
                                context="Device flow token response",
                            ) from e
                        logger.info("Device authorization successful")
                        self._record(
                            "device_flow_complete",
                            "success",
                            expires_in=token.expires_in,
                            scopes=token.scopes,
                        )
                        return token

                    error = error or f"http_{response.status_code}"
                    error_description = payload.get("error_description")

                    if error == "authorization_pending":
                        # User hasn't authorized yet, keep polling
                        logger.debug(f"Authorization pending, waiting {current_interval}s...")
                        await wait()
                        continue

                    elif error == "slow_down":
                        current_interval += SLOW_DOWN_INCREMENT
                        logger.debug(f"Slowing down, new interval: {current_interval}s")
                        await wait()
                        continue

                    elif error == "expired_token":
                        raise DeviceFlowExpiredError(
                            error,
                            error_description or "Device code has expired. Please start a new device flow.",
                        )

                    elif error == "access_denied":
                        raise DeviceFlowDeniedError(
                            error, error_description or "User denied the authorization request."
                        )

                    else:
                        # Unknown codes are treated as transient provider trouble
                        logger.warning(
                            f"Device flow poll returned {error}"
                            f"{f': {error_description}' if error_description else ''}, retrying"
                        )
                        await wait()
                        continue

        except (DeviceFlowError, ProtocolError) as e:
            self._record("device_flow_complete", "failure", error=e.error)
            raise

    async def authorize(self, scopes: list[str] | None = None) -> TokenResponse:
        """Run the complete device authorization flow.

        This will:
        1. Request a device code
        2. Display authorization instructions to the user
        3. Invoke the authorization callback, if any
        4. Poll until user completes authorization

        Returns:
            TokenResponse with access token and optional refresh token

        Raises:
            DeviceFlowError: If authorization fails
        """
        logger.info("Requesting device code...")
        session = await self.request_device_code(scopes)

        self._display_authorization_instructions(session)

        # Invoke callback if provided (e.g., for Slack notification)
        if self.authorization_callback:
            logger.debug("Invoking device authorization callback...")
            try:
                result = self.authorization_callback(session)
                # Handle both sync and async callbacks
                if asyncio.iscoroutine(result):
                    await result
                logger.debug("Device authorization callback completed")
            except Exception as e:
                logger.warning(f"Device authorization callback failed: {e}")
                # Don't fail the flow if callback fails

        logger.info("Waiting for user authorization...")
        return await self.poll_for_token(session.device_code, session.interval)

    def _display_authorization_instructions(self, session: DeviceFlowSession) -> None:
        """Display authorization instructions to the user on stderr."""
        print("\n" + "=" * 60, file=sys.stderr)
        print("DEVICE AUTHORIZATION REQUIRED", file=sys.stderr)
        print("=" * 60, file=sys.stderr)
        print(file=sys.stderr)
        print("To authorize this device, please:", file=sys.stderr)
        print(file=sys.stderr)

        if session.verification_uri_complete:
            print(f"  1. Visit: {session.verification_uri_complete}", file=sys.stderr)
            print(file=sys.stderr)
            print("  OR", file=sys.stderr)
            print(file=sys.stderr)

        print(f"  1. Visit: {session.verification_uri}", file=sys.stderr)
        print(f"  2. Enter code: {session.user_code}", file=sys.stderr)

        print(file=sys.stderr)
        print(f"This code expires in {session.expires_minutes} minutes.", file=sys.stderr)
        print("=" * 60, file=sys.stderr)
        print(file=sys.stderr)
