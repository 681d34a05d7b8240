"""Tests for the authorization code flow manager."""

from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from conftest import make_response, mock_http_client

from oauth_lifecycle.oauth.audience import AudienceValidator
from oauth_lifecycle.oauth.callback_server import CallbackResult, OAuthCallbackServer
from oauth_lifecycle.oauth.oauth_config import OAuthConfig
from oauth_lifecycle.oauth.oauth_flow import OAuthFlowManager, compute_code_challenge
from oauth_lifecycle.oauth.oauth_tokens import ValidationFailure
from oauth_lifecycle.observability.audit import RecordingEventSink
from oauth_lifecycle.utils.errors import (
    ErrorKind,
    MissingConfigFieldError,
    NetworkError,
    OAuthNotInitializedError,
    ProtocolError,
)


def query_of(url: str) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(urlparse(url).query).items()}


class TestInitialization:
    """Tests for configuring the manager."""

    def test_uninitialized_manager(self) -> None:
        manager = OAuthFlowManager()
        assert manager.is_initialized is False
        assert manager.get_config() is None
        with pytest.raises(OAuthNotInitializedError) as exc_info:
            manager.start_authorization_flow()
        assert exc_info.value.kind is ErrorKind.CONFIGURATION

    def test_initialize_is_idempotent(self, oauth_config: OAuthConfig) -> None:
        manager = OAuthFlowManager().initialize(oauth_config)
        other = OAuthConfig.for_github("other", "secret", "http://localhost/cb", ["repo"], "ua")

        manager.initialize(other)
        assert manager.require_config().client_id == "abc"

        manager.initialize(other, reconfigure=True)
        assert manager.require_config().client_id == "other"

    def test_injected_audience_validator_survives_initialize(self, oauth_config: OAuthConfig) -> None:
        injected = AudienceValidator(oauth_config)
        manager = OAuthFlowManager(audience_validator=injected)

        manager.initialize(oauth_config)
        assert manager.audience_validator is injected

        other = OAuthConfig.for_github("other", "secret", "http://localhost/cb", ["repo"], "ua")
        manager.initialize(other, reconfigure=True)
        assert manager.audience_validator is injected

    def test_default_audience_validator_follows_reconfigure(self, oauth_config: OAuthConfig) -> None:
        manager = OAuthFlowManager().initialize(oauth_config)
        assert manager.audience_validator.oauth_config.client_id == "abc"

        other = OAuthConfig.for_github("other", "secret", "http://localhost/cb", ["repo"], "ua")
        manager.initialize(other, reconfigure=True)
        assert manager.audience_validator.oauth_config.client_id == "other"

    def test_incomplete_config_rejected(self) -> None:
        config = OAuthConfig.for_github("", "secret", "http://localhost/cb", ["repo"], "ua")
        with pytest.raises(MissingConfigFieldError, match="client_id"):
            OAuthFlowManager().initialize(config)

    def test_get_config_hides_secret(self, manager: OAuthFlowManager) -> None:
        config = manager.get_config()
        assert config is not None
        assert "client_secret" not in config
        assert config["has_client_secret"] is True
        assert "test_client_secret" not in repr(manager.oauth_config)

    @pytest.mark.asyncio
    async def test_uninitialized_operations_raise(self) -> None:
        manager = OAuthFlowManager()
        with pytest.raises(OAuthNotInitializedError):
            await manager.exchange_code("code", "verifier")
        with pytest.raises(OAuthNotInitializedError):
            await manager.refresh_token("refresh")
        with pytest.raises(OAuthNotInitializedError):
            await manager.validate_token("token")


class TestAuthorizationUrl:
    """Tests for authorization URL construction."""

    def test_start_authorization_flow(self, manager: OAuthFlowManager) -> None:
        request = manager.start_authorization_flow()
        url = urlparse(request.url)
        params = query_of(request.url)

        assert f"{url.scheme}://{url.netloc}{url.path}" == "https://github.com/login/oauth/authorize"
        assert params["client_id"] == "abc"
        assert params["redirect_uri"] == "http://127.0.0.1:8765/auth/callback"
        assert params["scope"] == "repo read:user"
        assert params["response_type"] == "code"
        assert params["state"] == request.state
        assert params["code_challenge"] == compute_code_challenge(request.code_verifier)
        assert params["code_challenge_method"] == "S256"
        assert params["resource"] == "https://api.github.com/mcp-server"

    def test_extra_params_override_scope(self, manager: OAuthFlowManager) -> None:
        url = manager.build_authorization_url(
            "state-value", "challenge", extra_params={"scope": "gist", "allow_signup": "false"}
        )
        params = query_of(url)
        assert params["scope"] == "gist"
        assert params["allow_signup"] == "false"

    @pytest.mark.parametrize("name", ["client_id", "state", "code_challenge", "response_type"])
    def test_protected_params_cannot_be_overridden(self, manager: OAuthFlowManager, name: str) -> None:
        with pytest.raises(ValueError, match=name):
            manager.build_authorization_url("state-value", "challenge", extra_params={name: "x"})

    def test_enterprise_host(self) -> None:
        config = OAuthConfig.for_github(
            "abc", "secret", "http://localhost/cb", ["repo"], "ua", github_host="https://ghe.example.com/"
        )
        manager = OAuthFlowManager(config)
        request = manager.start_authorization_flow()

        assert request.url.startswith("https://ghe.example.com/login/oauth/authorize?")
        assert config.api_base_url == "https://ghe.example.com/api/v3"
        assert query_of(request.url)["resource"] == "https://ghe.example.com/mcp-server"


class TestExchangeCode:
    """Tests for authorization code exchange."""

    @pytest.mark.asyncio
    async def test_success(self, manager: OAuthFlowManager) -> None:
        mock_post = AsyncMock(
            return_value=make_response(
                200,
                {
                    "access_token": "gho_new",
                    "token_type": "bearer",
                    "scope": "repo,read:user",
                    "refresh_token": "ghr_new",
                    "expires_in": 28800,
                },
            )
        )

        with mock_http_client(post=mock_post):
            token = await manager.exchange_code("code-value", "verifier-value", state="state-value")

        assert token.access_token == "gho_new"
        assert token.refresh_token == "ghr_new"
        assert token.expires_in == 28800

        args, kwargs = mock_post.call_args
        assert args[0] == "https://github.com/login/oauth/access_token"
        assert kwargs["data"] == {
            "client_id": "abc",
            "client_secret": "test_client_secret",  # pragma: allowlist secret
            "code": "code-value",
            "code_verifier": "verifier-value",
            "grant_type": "authorization_code",
            "redirect_uri": "http://127.0.0.1:8765/auth/callback",
            "resource": "https://api.github.com/mcp-server",
            "state": "state-value",
        }

    @pytest.mark.asyncio
    async def test_defaults_when_provider_omits_fields(self, manager: OAuthFlowManager) -> None:
        mock_post = AsyncMock(return_value=make_response(200, {"access_token": "gho_new"}))

        with mock_http_client(post=mock_post):
            token = await manager.exchange_code("code", "verifier")

        assert token.token_type == "Bearer"
        assert token.expires_in == 3600
        assert token.scope == "repo read:user"
        assert token.refresh_token is None

    @pytest.mark.asyncio
    async def test_error_in_200_response(
        self, manager: OAuthFlowManager, event_sink: RecordingEventSink
    ) -> None:
        mock_post = AsyncMock(
            return_value=make_response(
                200,
                {
                    "error": "bad_verification_code",
                    "error_description": "The code passed is incorrect or expired.",
                },
            )
        )

        with mock_http_client(post=mock_post):
            with pytest.raises(ProtocolError) as exc_info:
                await manager.exchange_code("code", "verifier")

        assert exc_info.value.error == "bad_verification_code"
        assert exc_info.value.kind is ErrorKind.PROTOCOL
        assert "Token exchange failed" in str(exc_info.value)
        assert event_sink.actions() == ["oauth_token_exchange"]
        assert event_sink.events[0].outcome == "failure"
        assert event_sink.events[0].details["client_id"] == "abc"

    @pytest.mark.asyncio
    async def test_http_error_status(self, manager: OAuthFlowManager) -> None:
        mock_post = AsyncMock(return_value=make_response(500, text="upstream exploded"))

        with mock_http_client(post=mock_post):
            with pytest.raises(ProtocolError) as exc_info:
                await manager.exchange_code("code", "verifier")

        assert exc_info.value.error == "http_500"
        assert exc_info.value.status_code == 500
        assert "upstream exploded" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_missing_access_token(self, manager: OAuthFlowManager) -> None:
        mock_post = AsyncMock(return_value=make_response(200, {"token_type": "bearer"}))

        with mock_http_client(post=mock_post):
            with pytest.raises(ProtocolError, match="invalid_response"):
                await manager.exchange_code("code", "verifier")

    @pytest.mark.asyncio
    async def test_malformed_expires_in(
        self, manager: OAuthFlowManager, event_sink: RecordingEventSink
    ) -> None:
        mock_post = AsyncMock(return_value=make_response(200, {"access_token": "t", "expires_in": "soon"}))

        with mock_http_client(post=mock_post):
            with pytest.raises(ProtocolError) as exc_info:
                await manager.exchange_code("code", "verifier")

        assert exc_info.value.error == "invalid_response"
        assert exc_info.value.kind is ErrorKind.PROTOCOL
        assert event_sink.actions() == ["oauth_token_exchange"]
        assert event_sink.events[-1].outcome == "failure"

    @pytest.mark.asyncio
    async def test_network_error(self, manager: OAuthFlowManager) -> None:
        mock_post = AsyncMock(side_effect=httpx.ConnectTimeout("timed out"))

        with mock_http_client(post=mock_post):
            with pytest.raises(NetworkError) as exc_info:
                await manager.exchange_code("code", "verifier")

        assert exc_info.value.kind is ErrorKind.NETWORK

    @pytest.mark.asyncio
    async def test_success_not_audited(
        self, manager: OAuthFlowManager, event_sink: RecordingEventSink
    ) -> None:
        mock_post = AsyncMock(return_value=make_response(200, {"access_token": "gho_new"}))

        with mock_http_client(post=mock_post):
            await manager.exchange_code("code", "verifier")

        assert event_sink.events == []


class TestRefreshToken:
    """Tests for refresh token handling."""

    @pytest.mark.asyncio
    async def test_keeps_old_refresh_token_when_none_returned(
        self, manager: OAuthFlowManager, event_sink: RecordingEventSink
    ) -> None:
        mock_post = AsyncMock(
            return_value=make_response(200, {"access_token": "A2", "expires_in": 3600})
        )

        with mock_http_client(post=mock_post):
            token = await manager.refresh_token("R1")

        assert token.access_token == "A2"
        assert token.refresh_token == "R1"
        assert mock_post.call_args.kwargs["data"]["grant_type"] == "refresh_token"
        assert mock_post.call_args.kwargs["data"]["refresh_token"] == "R1"

        assert event_sink.actions() == ["oauth_token_refresh"]
        assert event_sink.events[0].outcome == "success"
        assert "refresh_token" not in event_sink.events[0].details

    @pytest.mark.asyncio
    async def test_uses_rotated_refresh_token(self, manager: OAuthFlowManager) -> None:
        mock_post = AsyncMock(
            return_value=make_response(200, {"access_token": "A2", "refresh_token": "R2"})
        )

        with mock_http_client(post=mock_post):
            token = await manager.refresh_token("R1")

        assert token.refresh_token == "R2"

    @pytest.mark.asyncio
    async def test_rejected_refresh(
        self, manager: OAuthFlowManager, event_sink: RecordingEventSink
    ) -> None:
        mock_post = AsyncMock(
            return_value=make_response(400, {"error": "invalid_grant", "error_description": "revoked"})
        )

        with mock_http_client(post=mock_post):
            with pytest.raises(ProtocolError) as exc_info:
                await manager.refresh_token("R1")

        assert exc_info.value.error == "invalid_grant"
        assert exc_info.value.error_description == "revoked"
        assert event_sink.events[-1].outcome == "failure"


class TestValidateToken:
    """Tests for token validation."""

    @pytest.mark.asyncio
    async def test_valid_token(self, manager: OAuthFlowManager, event_sink: RecordingEventSink) -> None:
        mock_get = AsyncMock(
            return_value=make_response(
                200, {"login": "octocat"}, headers={"X-OAuth-Scopes": "repo, read:user"}
            )
        )
        mock_post = AsyncMock(return_value=make_response(200, {"app": {"client_id": "abc"}}))

        with mock_http_client(get=mock_get, post=mock_post):
            result = await manager.validate_token("gho_token")

        assert result.valid is True
        assert result.scopes == ["repo", "read:user"]
        assert mock_get.call_args.kwargs["headers"]["Authorization"] == "Bearer gho_token"
        assert event_sink.events[-1].action == "oauth_token_validation"
        assert event_sink.events[-1].outcome == "success"

    @pytest.mark.asyncio
    async def test_inactive_token(self, manager: OAuthFlowManager) -> None:
        mock_get = AsyncMock(return_value=make_response(401, {"message": "Bad credentials"}))
        mock_post = AsyncMock()

        with mock_http_client(get=mock_get, post=mock_post):
            result = await manager.validate_token("gho_token")

        assert result.valid is False
        assert result.failure is ValidationFailure.INACTIVE
        assert "401" in result.error
        mock_post.assert_not_called()

    @pytest.mark.asyncio
    async def test_wrong_audience(self, manager: OAuthFlowManager, event_sink: RecordingEventSink) -> None:
        mock_get = AsyncMock(return_value=make_response(200, {}, headers={"X-OAuth-Scopes": "repo"}))
        mock_post = AsyncMock(return_value=make_response(200, {"app": {"client_id": "someone-else"}}))

        with mock_http_client(get=mock_get, post=mock_post):
            result = await manager.validate_token("gho_token")

        assert result.valid is False
        assert result.failure is ValidationFailure.WRONG_AUDIENCE
        assert result.error.startswith("Token audience validation failed")
        assert event_sink.events[-1].outcome == "failure"

    @pytest.mark.asyncio
    async def test_network_error_is_verification_error(self, manager: OAuthFlowManager) -> None:
        mock_get = AsyncMock(side_effect=httpx.ConnectError("unreachable"))

        with mock_http_client(get=mock_get):
            result = await manager.validate_token("gho_token")

        assert result.valid is False
        assert result.failure is ValidationFailure.VERIFICATION_ERROR

    @pytest.mark.asyncio
    async def test_out_of_range_expiry_is_rejected(self, manager: OAuthFlowManager) -> None:
        mock_get = AsyncMock(return_value=make_response(200, {}, headers={"X-OAuth-Scopes": "repo"}))
        mock_post = AsyncMock(
            return_value=make_response(200, {"app": {"client_id": "abc"}, "expires_at": 1e20})
        )

        with mock_http_client(get=mock_get, post=mock_post):
            result = await manager.validate_token("gho_token")

        assert result.valid is False
        assert result.failure is ValidationFailure.VERIFICATION_ERROR

    @pytest.mark.asyncio
    async def test_token_never_audited(self, manager: OAuthFlowManager, event_sink: RecordingEventSink) -> None:
        mock_get = AsyncMock(return_value=make_response(200, {}, headers={"X-OAuth-Scopes": ""}))
        mock_post = AsyncMock(return_value=make_response(200, {"app": {"client_id": "abc"}}))

        with mock_http_client(get=mock_get, post=mock_post):
            await manager.validate_token("gho_secret_token")

        for event in event_sink.events:
            assert "gho_secret_token" not in repr(event.details)


class TestRevokeToken:
    """Tests for grant revocation."""

    @pytest.mark.asyncio
    async def test_success(self, manager: OAuthFlowManager, event_sink: RecordingEventSink) -> None:
        mock_request = AsyncMock(return_value=httpx.Response(204))

        with mock_http_client(request=mock_request):
            await manager.revoke_token("gho_token")

        args, kwargs = mock_request.call_args
        assert args == ("DELETE", "https://api.github.com/applications/abc/grant")
        assert kwargs["json"] == {"access_token": "gho_token"}
        assert event_sink.actions() == ["oauth_token_revocation"]
        assert event_sink.events[0].outcome == "success"

    @pytest.mark.asyncio
    async def test_failure(self, manager: OAuthFlowManager, event_sink: RecordingEventSink) -> None:
        mock_request = AsyncMock(return_value=make_response(422, {"message": "Validation Failed"}))

        with mock_http_client(request=mock_request):
            with pytest.raises(ProtocolError) as exc_info:
                await manager.revoke_token("gho_token")

        assert exc_info.value.status_code == 422
        assert event_sink.events[0].outcome == "failure"


class TestInteractiveAuthorize:
    """Tests for the local-server authorization flow."""

    @pytest.mark.asyncio
    async def test_authorize_exchanges_code(self, manager: OAuthFlowManager) -> None:
        server = OAuthCallbackServer(port=9876)
        captured = {}

        async def fake_wait() -> CallbackResult:
            state = query_of(captured["url"])["state"]
            return CallbackResult(code="code-value", state=state)

        mock_post = AsyncMock(return_value=make_response(200, {"access_token": "gho_new"}))

        with patch("oauth_lifecycle.oauth.oauth_flow.webbrowser.open", side_effect=lambda url: captured.update(url=url)):
            with patch.object(server, "wait_for_callback", side_effect=fake_wait):
                with mock_http_client(post=mock_post):
                    token = await manager.authorize(callback_server=server)

        assert token.access_token == "gho_new"
        assert query_of(captured["url"])["redirect_uri"] == "http://127.0.0.1:9876/auth/callback"
        assert mock_post.call_args.kwargs["data"]["redirect_uri"] == "http://127.0.0.1:9876/auth/callback"

    @pytest.mark.asyncio
    async def test_authorize_rejects_state_mismatch(self, manager: OAuthFlowManager) -> None:
        server = OAuthCallbackServer(port=9876)

        with patch.object(
            server,
            "wait_for_callback",
            AsyncMock(return_value=CallbackResult(code="code-value", state="forged")),
        ):
            with pytest.raises(ProtocolError, match="invalid_state"):
                await manager.authorize(callback_server=server, open_browser=False)

    @pytest.mark.asyncio
    async def test_authorize_reports_provider_error(self, manager: OAuthFlowManager) -> None:
        server = OAuthCallbackServer(port=9876)

        with patch.object(
            server,
            "wait_for_callback",
            AsyncMock(return_value=CallbackResult(error="access_denied", error_description="nope")),
        ):
            with pytest.raises(ProtocolError, match="access_denied"):
                await manager.authorize(callback_server=server, open_browser=False)
