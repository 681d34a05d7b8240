"""OAuth flow orchestration.

Glue between the flow manager, the pending-state store and the credential
vault: starting an authorization, completing it from a callback, and the
status/refresh/revoke operations a tool layer exposes to users.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from ..storage.state_store import CallbackMethod, FlowStateData, StateStore
from ..storage.token_store import CredentialVault
from ..utils.errors import OAuthError
from .device_flow import DeviceAuthorizationCallback
from .oauth_flow import AuthorizationRequest, OAuthFlowManager
from .oauth_tokens import TokenResponse, ValidationFailure

logger = logging.getLogger(__name__)


@dataclass
class OAuthFlowResult:
    """Outcome of completing an authorization."""

    success: bool
    token_type: str | None = None
    scopes: list[str] = field(default_factory=list)
    expires_at: datetime | None = None
    has_refresh_token: bool = False
    organization: str | None = None
    error: str | None = None
    failure: ValidationFailure | None = None
    token: TokenResponse | None = field(default=None, repr=False)


@dataclass
class OAuthStatus:
    """What the vault currently holds."""

    authenticated: bool
    expires_at: datetime | None = None
    expires_in: int | None = None
    scopes: list[str] = field(default_factory=list)
    client_id: str | None = None
    has_refresh_token: bool = False


@dataclass
class RevocationResult:
    """Outcome of revoking the stored credential."""

    success: bool
    was_revoked: bool
    errors: list[str] = field(default_factory=list)


def persist_token(vault: CredentialVault, token: TokenResponse, client_id: str | None) -> None:
    """Hand a token to the vault."""
    vault.store(
        access_token=token.access_token,
        refresh_token=token.refresh_token,
        expires_at=token.expires_at,
        scopes=token.scopes,
        token_type=token.token_type,
        client_id=client_id,
    )


def begin_authorization(
    manager: OAuthFlowManager,
    state_store: StateStore,
    scopes: list[str] | None = None,
    organization: str | None = None,
    callback_method: CallbackMethod = CallbackMethod.MANUAL,
    callback_port: int | None = None,
    redirect_uri: str | None = None,
    ttl: float | None = None,
) -> AuthorizationRequest:
    """Start an authorization code flow and remember it by state.

    Args:
        manager: Initialized flow manager
        state_store: Store for the pending flow
        scopes: Scopes to request (default: configured scopes)
        organization: Organization context to carry through the flow
        callback_method: How the code will come back
        callback_port: Port of the local callback server, if any
        redirect_uri: Redirect URI for this flow (default: configured)
        ttl: Pending state lifetime in seconds

    Returns:
        AuthorizationRequest with the URL to send the user to
    """
    config = manager.require_config()
    requested_scopes = tuple(scopes) if scopes else config.scopes

    extra_params = {"scope": " ".join(requested_scopes)}
    if redirect_uri:
        extra_params["redirect_uri"] = redirect_uri

    request = manager.start_authorization_flow(extra_params)
    state_store.put(
        request.state,
        FlowStateData(
            code_verifier=request.code_verifier,
            scopes=requested_scopes,
            client_id=config.client_id,
            callback_method=callback_method,
            organization=organization,
            callback_port=callback_port,
        ),
        ttl=ttl,
    )
    logger.info(f"Started authorization flow ({callback_method.value})")
    return request


async def complete_authorization(
    manager: OAuthFlowManager,
    state_store: StateStore,
    code: str,
    state: str,
    vault: CredentialVault | None = None,
    expected_state: str | None = None,
    redirect_uri: str | None = None,
) -> OAuthFlowResult:
    """Finish an authorization code flow from the provider's callback.

    The pending entry is removed before the exchange, so a state value can
    only ever be redeemed once.

    Args:
        manager: Initialized flow manager
        state_store: Store holding the pending flow
        code: Authorization code from the callback
        state: State value from the callback
        vault: Where to persist the token (optional)
        expected_state: State the caller issued, compared in constant time
        redirect_uri: Redirect URI used when the flow started

    Returns:
        OAuthFlowResult; success is False for an unknown, expired or mismatched state

    Raises:
        ProtocolError: If the provider rejects the code
        NetworkError: If the provider cannot be reached
    """
    if expected_state is not None and not manager.validate_state(state, expected_state):
        return OAuthFlowResult(
            success=False,
            error="OAuth state mismatch",
            failure=ValidationFailure.STATE_INVALID,
        )

    pending = state_store.consume(state)
    if pending is None:
        return OAuthFlowResult(
            success=False,
            error="Invalid or expired OAuth state",
            failure=ValidationFailure.STATE_INVALID,
        )

    token = await manager.exchange_code(
        code,
        pending.code_verifier,
        state=state,
        redirect_uri=redirect_uri,
    )

    scopes = token.scopes or list(pending.scopes)
    if vault is not None:
        persist_token(vault, token, pending.client_id)

    return OAuthFlowResult(
        success=True,
        token_type=token.token_type,
        scopes=scopes,
        expires_at=token.expires_at,
        has_refresh_token=bool(token.refresh_token),
        organization=pending.organization,
        token=token,
    )


async def complete_device_authorization(
    manager: OAuthFlowManager,
    scopes: list[str] | None = None,
    vault: CredentialVault | None = None,
    on_session: DeviceAuthorizationCallback | None = None,
) -> OAuthFlowResult:
    """Run a device flow to completion and persist the token.

    Args:
        manager: Initialized flow manager
        scopes: Scopes to request (default: configured scopes)
        vault: Where to persist the token (optional)
        on_session: Called with the user code and URL before polling starts

    Returns:
        OAuthFlowResult for the granted token

    Raises:
        DeviceFlowError: If the user denies access, the code expires or polling times out
    """
    config = manager.require_config()
    requested = list(scopes) if scopes else list(config.scopes)

    session = await manager.initiate_device_flow(requested)
    if on_session is not None:
        result = on_session(session)
        if asyncio.iscoroutine(result):
            await result

    token = await manager.poll_device_flow_token(session.device_code, session.interval)
    if vault is not None:
        persist_token(vault, token, config.client_id)

    return OAuthFlowResult(
        success=True,
        token_type=token.token_type,
        scopes=token.scopes or requested,
        expires_at=token.expires_at,
        has_refresh_token=bool(token.refresh_token),
        token=token,
    )


async def refresh_stored_credentials(
    manager: OAuthFlowManager, vault: CredentialVault
) -> TokenResponse | None:
    """Refresh the stored credential and save the result.

    Returns:
        The new token, or None if nothing refreshable is stored

    Raises:
        ProtocolError: If the provider rejects the refresh token
        NetworkError: If the provider cannot be reached
    """
    credential = vault.get()
    if credential is None or not credential.refresh_token:
        logger.warning("No refresh token available")
        return None

    token = await manager.refresh_token(credential.refresh_token)
    persist_token(vault, token, credential.client_id)
    logger.info("Token refreshed successfully")
    return token


def get_oauth_status(vault: CredentialVault) -> OAuthStatus:
    """Describe the stored credential without exposing it."""
    credential = vault.get()
    if credential is None:
        return OAuthStatus(authenticated=False)

    expires_in = None
    if credential.expires_at:
        expires_in = max(0, int((credential.expires_at - datetime.now(UTC)).total_seconds()))

    return OAuthStatus(
        authenticated=True,
        expires_at=credential.expires_at,
        expires_in=expires_in,
        scopes=list(credential.scopes),
        client_id=credential.client_id,
        has_refresh_token=bool(credential.refresh_token),
    )


async def revoke_oauth_tokens(manager: OAuthFlowManager, vault: CredentialVault) -> RevocationResult:
    """Revoke the stored credential with the provider and clear it locally.

    The vault is cleared even when the provider call fails; the failure is
    reported in ``errors``.
    """
    credential = vault.get()
    if credential is None:
        return RevocationResult(success=True, was_revoked=False)

    errors: list[str] = []
    try:
        await manager.revoke_token(credential.access_token)
    except OAuthError as e:
        errors.append(f"Revocation API error: {e}")

    vault.clear()
    return RevocationResult(success=True, was_revoked=True, errors=errors)
