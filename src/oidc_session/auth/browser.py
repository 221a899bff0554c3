"""
Browser launch capability for the OIDC session manager.

The loopback launcher opens the system browser and runs a minimal HTTP
server on the redirect URI to catch the issuer's redirect. The server only
starts when needed and runs in a background thread.
"""

import asyncio
import logging
import socket
import threading
import time
import webbrowser
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from html import escape
from typing import Dict, Mapping, Optional, Tuple
from urllib.parse import urlparse

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse

from ..utils.constants import DEFAULT_AUTH_ERROR_MESSAGE, DEFAULT_BROWSER_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class BrowserResultType(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    CANCEL = "cancel"
    DISMISS = "dismiss"


@dataclass(frozen=True)
class BrowserResult:
    """Outcome of a browser round-trip."""

    type: BrowserResultType
    code: Optional[str] = None
    error_code: Optional[str] = None
    error_description: Optional[str] = None
    params: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def success(cls, code: str, params: Optional[Mapping[str, str]] = None) -> "BrowserResult":
        return cls(type=BrowserResultType.SUCCESS, code=code, params=dict(params or {}))

    @classmethod
    def failed(
        cls,
        description: Optional[str] = None,
        error_code: Optional[str] = None,
        params: Optional[Mapping[str, str]] = None,
    ) -> "BrowserResult":
        return cls(
            type=BrowserResultType.ERROR,
            error_code=error_code,
            error_description=description,
            params=dict(params or {}),
        )

    @classmethod
    def cancelled(cls) -> "BrowserResult":
        return cls(type=BrowserResultType.CANCEL)

    @classmethod
    def dismissed(cls) -> "BrowserResult":
        return cls(type=BrowserResultType.DISMISS)

    @property
    def is_abandoned(self) -> bool:
        return self.type in (BrowserResultType.CANCEL, BrowserResultType.DISMISS)


@dataclass(frozen=True)
class PresentationOptions:
    """How the browser is presented. Never sent to the issuer."""

    browser: Optional[str] = None
    new_window: bool = False
    timeout_seconds: float = DEFAULT_BROWSER_TIMEOUT_SECONDS


class BrowserLauncher(ABC):
    """Abstract browser capability."""

    @abstractmethod
    async def open(self, url: str, options: PresentationOptions) -> BrowserResult:
        """
        Open url and wait for the round-trip to end.

        Always terminates with success, error, cancel or dismiss.
        """
        pass


def result_from_params(params: Mapping[str, str]) -> BrowserResult:
    """Map redirect query parameters to a browser result."""
    if params.get("error"):
        return BrowserResult.failed(
            description=params.get("error_description"),
            error_code=params["error"],
            params=params,
        )
    if params.get("code"):
        return BrowserResult.success(params["code"], params=params)
    return BrowserResult.dismissed()


def _create_result_html(title: str, message: str) -> str:
    """Create the page shown in the browser after the redirect."""
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <title>{escape(title)}</title>
        <style>
            body {{
                font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
                display: flex;
                justify-content: center;
                align-items: center;
                min-height: 100vh;
                margin: 0;
            }}
            .container {{
                padding: 40px;
                text-align: center;
                max-width: 400px;
            }}
        </style>
    </head>
    <body>
        <div class="container">
            <h1>{escape(title)}</h1>
            <p>{escape(message)}</p>
            <p>You can close this window and return to your application.</p>
        </div>
    </body>
    </html>
    """


class LoopbackBrowserLauncher(BrowserLauncher):
    """
    Opens the system browser and listens on the redirect URI for the result.

    One round-trip may be pending at a time; a new open() supersedes the
    previous one, which then resolves as dismissed.
    """

    def __init__(self, redirect_uri: str) -> None:
        parsed = urlparse(redirect_uri)
        self.redirect_uri = redirect_uri
        self.hostname = parsed.hostname or "localhost"
        self.port = parsed.port or 80
        self.callback_path = parsed.path or "/"

        self.app = FastAPI()
        self.server: Optional[uvicorn.Server] = None
        self.server_thread: Optional[threading.Thread] = None
        self.is_running = False

        self._pending: Optional[asyncio.Future] = None
        self._pending_loop: Optional[asyncio.AbstractEventLoop] = None
        self._pending_lock = threading.Lock()

        self._setup_callback_route()

    def _setup_callback_route(self) -> None:
        """Setup the redirect route."""

        @self.app.get(self.callback_path)
        async def callback(request: Request) -> HTMLResponse:
            params: Dict[str, str] = dict(request.query_params)
            result = result_from_params(params)
            delivered = self.deliver(result)

            if result.type is BrowserResultType.ERROR:
                message = result.error_description or DEFAULT_AUTH_ERROR_MESSAGE
                logger.error(f"Issuer returned an error: {result.error_code}")
                return HTMLResponse(
                    content=_create_result_html("Authentication Failed", message),
                    status_code=400,
                )
            if not delivered:
                return HTMLResponse(
                    content=_create_result_html(
                        "Nothing to do", "No sign-in is waiting for this redirect."
                    ),
                    status_code=409,
                )
            if result.type is BrowserResultType.SUCCESS:
                return HTMLResponse(
                    content=_create_result_html(
                        "Authentication Successful", "You have signed in."
                    )
                )
            return HTMLResponse(content=_create_result_html("Signed Out", "You have signed out."))

    def deliver(self, result: BrowserResult) -> bool:
        """
        Resolve the pending round-trip. Safe to call from any thread.

        Returns:
            False if no round-trip was waiting.
        """
        with self._pending_lock:
            future, loop = self._pending, self._pending_loop
        if future is None or loop is None:
            logger.warning("Redirect received with no pending browser round-trip")
            return False

        def _resolve() -> None:
            if not future.done():
                future.set_result(result)

        loop.call_soon_threadsafe(_resolve)
        return True

    def start(self) -> Tuple[bool, str]:
        """
        Start the loopback server.

        Returns:
            Tuple of (success: bool, error_message: str)
        """
        if self.is_running:
            return True, ""

        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind((self.hostname, self.port))
        except OSError:
            error_msg = f"Port {self.port} is already in use"
            logger.error(error_msg)
            return False, error_msg

        def run_server() -> None:
            """Run the server in a separate thread."""
            try:
                config = uvicorn.Config(
                    self.app,
                    host=self.hostname,
                    port=self.port,
                    log_level="warning",
                    access_log=False,
                )
                self.server = uvicorn.Server(config)
                asyncio.run(self.server.serve())
            except Exception as e:
                logger.error(f"Loopback server error: {e}", exc_info=True)
                self.is_running = False

        self.server_thread = threading.Thread(target=run_server, daemon=True)
        self.server_thread.start()

        max_wait = 3.0
        start_time = time.time()
        while time.time() - start_time < max_wait:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                if s.connect_ex((self.hostname, self.port)) == 0:
                    self.is_running = True
                    logger.info(f"Loopback server started on {self.hostname}:{self.port}")
                    return True, ""
            time.sleep(0.1)

        error_msg = f"Failed to start loopback server on {self.hostname}:{self.port}"
        logger.error(error_msg)
        return False, error_msg

    def stop(self) -> None:
        """Stop the loopback server."""
        if not self.is_running:
            return

        if self.server is not None:
            self.server.should_exit = True
        if self.server_thread and self.server_thread.is_alive():
            self.server_thread.join(timeout=3.0)

        self.is_running = False
        logger.info("Loopback server stopped")

    def _open_browser(self, url: str, options: PresentationOptions) -> bool:
        try:
            controller = webbrowser.get(options.browser) if options.browser else webbrowser
            return bool(controller.open(url, new=1 if options.new_window else 2))
        except webbrowser.Error as e:
            logger.error(f"Could not open browser: {e}")
            return False

    async def open(self, url: str, options: PresentationOptions) -> BrowserResult:
        started, error_msg = await asyncio.to_thread(self.start)
        if not started:
            return BrowserResult.failed(description=f"Redirect listener unavailable: {error_msg}")

        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        with self._pending_lock:
            previous = self._pending
            self._pending, self._pending_loop = future, loop
        if previous is not None and not previous.done():
            previous.get_loop().call_soon_threadsafe(
                lambda: previous.done() or previous.set_result(BrowserResult.dismissed())
            )

        try:
            if not await asyncio.to_thread(self._open_browser, url, options):
                return BrowserResult.cancelled()
            return await asyncio.wait_for(future, timeout=options.timeout_seconds)
        except asyncio.TimeoutError:
            logger.info("Browser round-trip timed out after %.0fs", options.timeout_seconds)
            return BrowserResult.dismissed()
        finally:
            with self._pending_lock:
                if self._pending is future:
                    self._pending, self._pending_loop = None, None
