"""
Local OAuth redirect server.

Listens on ``http://localhost:<port>/callback`` and captures the first
redirect it receives. State validation is left to the OAuth manager so
that mismatches surface as CSRFMismatch to the caller.
"""
import asyncio
import html
import logging
from dataclasses import dataclass
from typing import Optional

from aiohttp import web

from settings import OAUTH_CALLBACK_HOST, OAUTH_CALLBACK_PATH, OAUTH_CALLBACK_PORT

logger = logging.getLogger(__name__)

SUCCESS_PAGE = """
<html>
    <body>
        <h1>Authentication Successful!</h1>
        <p>You can now close this window and return to the application.</p>
        <script>
            setTimeout(function() {
                window.close();
            }, 2000);
        </script>
    </body>
</html>
"""

ERROR_PAGE = """
<html>
    <body>
        <h1>Authentication Failed</h1>
        <p>Error: {error}</p>
        <p>{description}</p>
        <p>You can close this window.</p>
    </body>
</html>
"""


@dataclass
class CallbackResult:
    """Query parameters delivered to the redirect URI"""
    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None


class OAuthCallbackServer:
    """Local HTTP server for OAuth callback"""

    def __init__(
        self,
        host: str = OAUTH_CALLBACK_HOST,
        port: int = OAUTH_CALLBACK_PORT,
        path: str = OAUTH_CALLBACK_PATH,
    ):
        self.host = host
        self.port = port
        self.result: Optional[CallbackResult] = None
        self.app = web.Application()
        self.runner: Optional[web.AppRunner] = None
        self._event = asyncio.Event()

        self.app.router.add_get(path, self._handle_callback)

    async def _handle_callback(self, request: web.Request) -> web.Response:
        """Handle OAuth callback request"""
        if self._event.is_set():
            return web.Response(text="Callback already received", status=409)

        error = request.query.get("error")
        error_description = request.query.get("error_description")

        if error:
            logger.warning(f"OAuth error from provider: {error} {error_description or ''}".rstrip())
            self.result = CallbackResult(error=error, error_description=error_description,
                                         state=request.query.get("state"))
            self._event.set()
            return web.Response(
                text=ERROR_PAGE.format(
                    error=html.escape(error),
                    description=html.escape(error_description or ""),
                ),
                content_type="text/html",
                status=400,
            )

        code = request.query.get("code")
        state = request.query.get("state")
        if not code or not state:
            return web.Response(text="Missing code or state parameter", status=400)

        self.result = CallbackResult(code=code, state=state)
        self._event.set()
        return web.Response(text=SUCCESS_PAGE, content_type="text/html")

    async def start(self) -> None:
        """Start the callback server"""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, host=self.host, port=self.port)
        await site.start()
        logger.info(f"OAuth callback server listening on http://{self.host}:{self.port}")

    async def wait_for_callback(self, timeout: float = 300) -> Optional[CallbackResult]:
        """
        Wait for OAuth callback.

        Args:
            timeout: Maximum time to wait in seconds (default 5 minutes)

        Returns:
            CallbackResult, or None on timeout
        """
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
            return self.result
        except asyncio.TimeoutError:
            logger.warning(f"OAuth callback timeout after {timeout} seconds")
            return None

    async def stop(self) -> None:
        """Stop the callback server"""
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
