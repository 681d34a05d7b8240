"""Local HTTP server that receives the OAuth redirect.

Used by the ``local_server`` callback method: the authorization URL's
redirect_uri points at this server, which captures ``code`` and ``state``
from the first callback request and then shuts down.
"""

import asyncio
import html
import logging
import time
from dataclasses import dataclass, field

from aiohttp import web

from ..utils.errors import CallbackTimeoutError, NetworkError

logger = logging.getLogger(__name__)

DEFAULT_CALLBACK_HOST = "127.0.0.1"
DEFAULT_CALLBACK_PORT = 8765
DEFAULT_CALLBACK_PATH = "/auth/callback"
DEFAULT_CALLBACK_TIMEOUT = 300  # 5 minutes

SUCCESS_PAGE = """
<html>
<head><title>Authorization Successful</title></head>
<body style="font-family: sans-serif; text-align: center; padding: 50px;">
    <h1 style="color: green;">Authorization Successful</h1>
    <p>You can close this window and return to the terminal.</p>
</body>
</html>
"""

FAILURE_PAGE = """
<html>
<head><title>Authorization Failed</title></head>
<body style="font-family: sans-serif; text-align: center; padding: 50px;">
    <h1 style="color: red;">Authorization Failed</h1>
    <p><strong>Error:</strong> {error}</p>
    <p>{error_description}</p>
    <p>Please close this window and try again.</p>
</body>
</html>
"""

NOT_FOUND_PAGE = """
<html>
<head><title>Not Found</title></head>
<body>
    <h1>404 - Not Found</h1>
    <p>This is the OAuth callback server. Only {path} is supported.</p>
</body>
</html>
"""


@dataclass
class CallbackResult:
    """Query parameters delivered to the redirect URI."""

    code: str = field(default="", repr=False)
    state: str = field(default="", repr=False)
    error: str | None = None
    error_description: str | None = None

    @property
    def succeeded(self) -> bool:
        return bool(self.code) and self.error is None


class OAuthCallbackServer:
    """Temporary aiohttp server that waits for a single OAuth callback."""

    def __init__(
        self,
        host: str = DEFAULT_CALLBACK_HOST,
        port: int = DEFAULT_CALLBACK_PORT,
        path: str = DEFAULT_CALLBACK_PATH,
        timeout: float = DEFAULT_CALLBACK_TIMEOUT,
    ):
        self.host = host
        self.port = port
        self.path = path
        self.timeout = timeout
        self.result: asyncio.Future[CallbackResult] | None = None
        self._runner: web.AppRunner | None = None

    @property
    def callback_url(self) -> str:
        """Redirect URI served by this server."""
        return f"http://{self.host}:{self.port}{self.path}"

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    def build_app(self) -> web.Application:
        """Create the aiohttp application and a fresh result future."""
        self.result = asyncio.get_running_loop().create_future()

        app = web.Application()
        app.router.add_get(self.path, self._handle_callback)
        app.router.add_get("/health", self._handle_health)
        app.router.add_route("*", "/{tail:.*}", self._handle_not_found)
        return app

    async def _handle_callback(self, request: web.Request) -> web.Response:
        query = request.query
        result = CallbackResult(
            code=query.get("code", ""),
            state=query.get("state", ""),
            error=query.get("error") or None,
            error_description=query.get("error_description") or None,
        )

        if self.result is not None and not self.result.done():
            self.result.set_result(result)

        if result.error:
            return web.Response(
                text=FAILURE_PAGE.format(
                    error=html.escape(result.error),
                    error_description=html.escape(result.error_description or ""),
                ),
                content_type="text/html",
            )
        if not result.code:
            return web.Response(
                text=FAILURE_PAGE.format(
                    error="missing_code",
                    error_description="The callback did not include an authorization code.",
                ),
                content_type="text/html",
                status=400,
            )
        return web.Response(text=SUCCESS_PAGE, content_type="text/html")

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "ok",
                "server": "oauth-callback",
                "timestamp": time.time(),
                "port": self.port,
            }
        )

    async def _handle_not_found(self, request: web.Request) -> web.Response:
        return web.Response(
            text=NOT_FOUND_PAGE.format(path=html.escape(self.path)),
            content_type="text/html",
            status=404,
        )

    async def start(self) -> None:
        """Bind the server without waiting for a callback."""
        if self._runner is not None:
            raise NetworkError("Callback server is already running")

        runner = web.AppRunner(self.build_app())
        await runner.setup()
        try:
            site = web.TCPSite(runner, self.host, self.port)
            await site.start()
        except OSError as e:
            await runner.cleanup()
            raise NetworkError(f"OAuth callback server error: {e}") from e

        self._runner = runner
        logger.info(f"Callback server listening on {self.callback_url}")

    async def stop(self) -> None:
        """Shut the server down. Safe to call more than once."""
        runner, self._runner = self._runner, None
        if runner is not None:
            await runner.cleanup()
        if self.result is not None and not self.result.done():
            self.result.cancel()

    async def wait_for_callback(self) -> CallbackResult:
        """Start the server and wait for the first callback.

        Returns:
            CallbackResult with the code/state or the provider's error

        Raises:
            CallbackTimeoutError: If no callback arrives within the timeout
            NetworkError: If the server cannot bind its port
        """
        await self.start()
        assert self.result is not None
        logger.info("Waiting for authorization...")

        try:
            return await asyncio.wait_for(self.result, timeout=self.timeout)
        except TimeoutError as e:
            logger.error("Authorization timeout")
            raise CallbackTimeoutError(self.timeout) from e
        finally:
            await self.stop()
