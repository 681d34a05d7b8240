"""Command-line front end for the OAuth lifecycle.

Usage:
    # Log in through the browser (local callback server)
    oauth-lifecycle login

    # Log in on a headless machine
    oauth-lifecycle device-login

    # Inspect, refresh, check or revoke the stored token
    oauth-lifecycle status
    oauth-lifecycle refresh
    oauth-lifecycle validate
    oauth-lifecycle revoke

    # Generate a TOKEN_ENCRYPTION_KEY
    oauth-lifecycle generate-key
"""

import argparse
import asyncio
import json
import logging
import sys
from urllib.parse import urlparse

from dotenv import load_dotenv

from .core.config import Settings
from .oauth import (
    OAuthCallbackServer,
    OAuthFlowManager,
    get_oauth_status,
    refresh_stored_credentials,
    revoke_oauth_tokens,
)
from .oauth.callback_server import DEFAULT_CALLBACK_TIMEOUT
from .oauth.oauth_helpers import persist_token
from .observability import EventSink, LoggingEventSink, NullEventSink
from .storage import FileCredentialVault
from .utils.errors import OAuthError
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def get_vault(settings: Settings) -> FileCredentialVault:
    """Open the credential vault configured in settings."""
    if not settings.token_encryption_key:
        print("Warning: No TOKEN_ENCRYPTION_KEY found. Tokens will be stored unencrypted.", file=sys.stderr)
    return FileCredentialVault(settings.token_storage_path, settings.token_encryption_key)


def get_event_sink(settings: Settings) -> EventSink:
    return LoggingEventSink() if settings.audit_logging else NullEventSink()


def get_manager(settings: Settings) -> OAuthFlowManager:
    """Build a flow manager from settings.

    Raises:
        OAuthConfigurationError: If OAuth is disabled or misconfigured
    """
    return OAuthFlowManager(settings.to_oauth_config(), event_sink=get_event_sink(settings))


def callback_server_for(redirect_uri: str, timeout: float) -> OAuthCallbackServer:
    """Serve the callback on the host, port and path of the redirect URI."""
    parsed = urlparse(redirect_uri)
    return OAuthCallbackServer(
        host=parsed.hostname or "127.0.0.1",
        port=parsed.port or 80,
        path=parsed.path or "/",
        timeout=timeout,
    )


async def login(settings: Settings, open_browser: bool, timeout: float) -> int:
    manager = get_manager(settings)
    vault = get_vault(settings)
    server = callback_server_for(settings.oauth_redirect_uri, timeout)

    token = await manager.authorize(callback_server=server, open_browser=open_browser)
    persist_token(vault, token, manager.require_config().client_id)

    print("Authorization successful!")
    print(f"  Scopes: {' '.join(token.scopes) or '(none)'}")
    print(f"  Expires at: {token.expires_at.isoformat()}")
    return 0


async def device_login(settings: Settings, scopes: list[str] | None) -> int:
    manager = get_manager(settings)
    vault = get_vault(settings)

    token = await manager.device_flow.authorize(scopes)
    persist_token(vault, token, manager.require_config().client_id)

    print("Authorization successful!")
    print(f"  Scopes: {' '.join(token.scopes) or '(none)'}")
    return 0


def status(settings: Settings) -> int:
    result = get_oauth_status(get_vault(settings))
    if not result.authenticated:
        print("Not authenticated.")
        return 1

    print(
        json.dumps(
            {
                "authenticated": True,
                "client_id": result.client_id,
                "scopes": result.scopes,
                "expires_at": result.expires_at,
                "expires_in": result.expires_in,
                "has_refresh_token": result.has_refresh_token,
            },
            indent=2,
            default=str,
        )
    )
    return 0


async def refresh(settings: Settings) -> int:
    token = await refresh_stored_credentials(get_manager(settings), get_vault(settings))
    if token is None:
        print("No refresh token stored. Run 'login' again.")
        return 1

    print("Token refreshed successfully!")
    print(f"  Expires at: {token.expires_at.isoformat()}")
    return 0


async def validate(settings: Settings) -> int:
    credential = get_vault(settings).get()
    if credential is None:
        print("No token stored.")
        return 1

    result = await get_manager(settings).validate_token(credential.access_token)
    if not result.valid:
        print(f"Token is not valid ({result.failure.value if result.failure else 'unknown'}): {result.error}")
        return 1

    print("Token is valid.")
    print(f"  Scopes: {', '.join(result.scopes) or '(none)'}")
    return 0


async def revoke(settings: Settings) -> int:
    result = await revoke_oauth_tokens(get_manager(settings), get_vault(settings))
    if not result.was_revoked:
        print("No token stored.")
        return 0

    for error in result.errors:
        print(f"Warning: {error}", file=sys.stderr)
    print("Token revoked and removed from local storage.")
    return 0


def generate_key() -> int:
    """Generate a new encryption key."""
    key = FileCredentialVault.generate_encryption_key()
    print("\nGenerated encryption key:")
    print(f"\nTOKEN_ENCRYPTION_KEY={key}\n")
    print("Add this to your .env file to enable token encryption.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="oauth-lifecycle",
        description="Manage OAuth authorization and stored tokens",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--log-level", help="Override LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    login_parser = subparsers.add_parser("login", help="Authorize through the browser")
    login_parser.add_argument(
        "--no-browser", action="store_true", help="Print the URL instead of opening a browser"
    )
    login_parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_CALLBACK_TIMEOUT,
        help="Seconds to wait for the callback",
    )

    device_parser = subparsers.add_parser("device-login", help="Authorize with a device code")
    device_parser.add_argument("--scopes", nargs="+", help="Scopes to request")

    subparsers.add_parser("status", help="Show the stored token")
    subparsers.add_parser("refresh", help="Refresh the stored token")
    subparsers.add_parser("validate", help="Check the stored token with the provider")
    subparsers.add_parser("revoke", help="Revoke and delete the stored token")
    subparsers.add_parser("generate-key", help="Generate a token encryption key")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "generate-key":
        return generate_key()

    settings = Settings()
    setup_logging(level=args.log_level or settings.log_level, audit_log_file=settings.audit_log_file)

    try:
        if args.command == "login":
            return asyncio.run(login(settings, not args.no_browser, args.timeout))
        elif args.command == "device-login":
            return asyncio.run(device_login(settings, args.scopes))
        elif args.command == "status":
            return status(settings)
        elif args.command == "refresh":
            return asyncio.run(refresh(settings))
        elif args.command == "validate":
            return asyncio.run(validate(settings))
        elif args.command == "revoke":
            return asyncio.run(revoke(settings))
        else:
            parser.print_help()
            return 1

    except OAuthError as e:
        logger.debug(f"{args.command} failed", exc_info=True)
        print(f"Error ({e.kind.value}): {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
