"""Pytest configuration and fixtures for oauth-lifecycle tests."""

import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from oauth_lifecycle.oauth.oauth_config import OAuthConfig
from oauth_lifecycle.oauth.oauth_flow import OAuthFlowManager
from oauth_lifecycle.observability.audit import RecordingEventSink
from oauth_lifecycle.storage.state_store import StateStore
from oauth_lifecycle.storage.token_store import FileCredentialVault


def make_response(
    status_code: int = 200,
    json: Any = None,
    headers: dict[str, str] | None = None,
    text: str | None = None,
) -> httpx.Response:
    """Build a real httpx.Response for mocked client calls."""
    if text is not None:
        return httpx.Response(status_code, text=text, headers=headers)
    return httpx.Response(status_code, json=json if json is not None else {}, headers=headers)


@contextmanager
def mock_http_client(**methods: AsyncMock) -> Iterator[MagicMock]:
    """Patch httpx.AsyncClient so ``async with`` yields a client with the given methods."""
    with patch("httpx.AsyncClient") as mock_client:
        mock_client.return_value.__aenter__ = AsyncMock(return_value=MagicMock(**methods))
        mock_client.return_value.__aexit__ = AsyncMock(return_value=None)
        yield mock_client


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def oauth_config() -> OAuthConfig:
    """Create a github.com OAuthConfig for testing."""
    return OAuthConfig.for_github(
        client_id="abc",
        client_secret="test_client_secret",  # pragma: allowlist secret
        redirect_uri="http://127.0.0.1:8765/auth/callback",
        scopes=["repo", "read:user"],
        user_agent="oauth-lifecycle/test",
    )


@pytest.fixture
def event_sink() -> RecordingEventSink:
    """Create an in-memory audit sink."""
    return RecordingEventSink()


@pytest.fixture
def manager(oauth_config: OAuthConfig, event_sink: RecordingEventSink) -> OAuthFlowManager:
    """Create an initialized OAuthFlowManager."""
    return OAuthFlowManager(oauth_config, event_sink=event_sink)


@pytest.fixture
def state_store():
    """Create a StateStore without a background sweep."""
    store = StateStore()
    yield store
    store.shutdown()


@pytest.fixture
def vault(temp_dir: Path) -> FileCredentialVault:
    """Create an unencrypted credential vault in a temporary directory."""
    return FileCredentialVault(storage_path=temp_dir / "tokens")


@pytest.fixture
def encrypted_vault(temp_dir: Path) -> FileCredentialVault:
    """Create a credential vault with encryption enabled."""
    encryption_key = FileCredentialVault.generate_encryption_key()
    return FileCredentialVault(storage_path=temp_dir / "encrypted_tokens", encryption_key=encryption_key)
