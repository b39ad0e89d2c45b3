"""Web-auth presenters: the user-facing half of the authorization step.

A presenter shows the authorization URL to the user and hands back the
redirect URI the provider sent the browser to. The session only depends on
the ``WebAuthPresenter`` protocol, so any UI can supply its own.

- ``CallbackPresenter`` delegates to an async function (custom UI, CLI
  prompts, tests).
- ``LoopbackBrowserPresenter`` opens the system browser and receives the
  redirect on a local HTTP listener (RFC 8252 Section 7.3).
"""

from __future__ import annotations

import asyncio
import logging
import socket
import webbrowser
from typing import Awaitable, Callable, Protocol
from urllib.parse import urlsplit

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, Response
from starlette.routing import Route

from pkceflow.models.errors import (
    ConfigurationError,
    OAuth2Error,
    PresentationError,
    UserAuthCancelledError,
)

logger = logging.getLogger(__name__)


class WebAuthPresenter(Protocol):
    """Protocol for handling the user authorization step."""

    async def present(self, url: str, callback_scheme: str) -> str | None:
        """Show the authorization URL and wait for the redirect.

        Args:
            url: Authorization URL for the user to visit
            callback_scheme: Scheme of the redirect URI to wait for

        Returns:
            The full callback URI, or None if the presenter finished
            without one

        Raises:
            UserAuthCancelledError: If the user or ``cancel()`` aborted
            PresentationError: If the page could not be presented
        """
        ...

    def cancel(self) -> None:
        """Abort a pending ``present()`` call, if any."""
        ...


CallbackHandler = Callable[[str, str], Awaitable["str | None"]]


class CallbackPresenter:
    """Presenter that delegates to an async handler function.

    The handler receives the authorization URL and the callback scheme and
    returns the callback URL. Suitable for CLI tools and custom UIs.
    """

    def __init__(self, handler: CallbackHandler):
        self.handler = handler
        self._pending: asyncio.Future[str | None] | None = None
        self._cancelled: set[asyncio.Future[str | None]] = set()

    async def present(self, url: str, callback_scheme: str) -> str | None:
        pending = asyncio.ensure_future(self.handler(url, callback_scheme))
        self._pending = pending
        try:
            return await pending
        except asyncio.CancelledError:
            if pending in self._cancelled:
                raise UserAuthCancelledError("Authorization was cancelled") from None
            raise
        except OAuth2Error:
            raise
        except Exception as e:
            raise PresentationError(f"Authorization handler failed: {e}") from e
        finally:
            self._cancelled.discard(pending)
            if self._pending is pending:
                self._pending = None

    def cancel(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._cancelled.add(self._pending)
            self._pending.cancel()


SUCCESS_PAGE = """<!doctype html>
<html><head><title>Authorization complete</title></head>
<body><p>Authorization complete. You can close this window.</p></body></html>
"""

LOOPBACK_HOSTS = {"127.0.0.1": "127.0.0.1", "localhost": "127.0.0.1", "::1": "::1"}
STARTUP_POLL_INTERVAL = 0.01


class LoopbackBrowserPresenter:
    """Presenter that uses the system browser and a loopback redirect listener.

    Serves a single route on the host, port and path of ``redirect_uri``
    for the duration of one ``present()`` call.

    Args:
        redirect_uri: ``http://127.0.0.1:<port>/<path>`` style URI that the
            provider redirects to
        timeout: Seconds to wait for the redirect
        open_browser: Opens a URL, returns False if no browser was found
    """

    def __init__(
        self,
        redirect_uri: str,
        timeout: float = 300.0,
        open_browser: Callable[[str], bool] = webbrowser.open,
    ):
        parsed = urlsplit(redirect_uri)
        if parsed.scheme != "http" or parsed.hostname not in LOOPBACK_HOSTS:
            raise ConfigurationError(
                f"Loopback redirect URI must be http on a loopback host: {redirect_uri}"
            )
        if parsed.port is None:
            raise ConfigurationError(
                f"Loopback redirect URI needs an explicit port: {redirect_uri}"
            )

        self.redirect_uri = redirect_uri
        self.host = LOOPBACK_HOSTS[parsed.hostname]
        self.port = parsed.port
        self.path = parsed.path or "/"
        self.timeout = timeout
        self.open_browser = open_browser

        self._app = Starlette(
            routes=[Route(self.path, self._handle_callback, methods=["GET"])]
        )
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._socket: socket.socket | None = None
        self._result: asyncio.Future[str] | None = None
        self._lock = asyncio.Lock()

    async def present(self, url: str, callback_scheme: str) -> str | None:
        if callback_scheme != "http":
            raise PresentationError(
                f"Loopback presenter cannot receive {callback_scheme}:// callbacks"
            )

        # One listener at a time; a superseded call releases the port first
        async with self._lock:
            result = asyncio.get_running_loop().create_future()
            self._result = result
            try:
                await self._start_server()
                # webbrowser.open blocks until console browsers exit
                if not await asyncio.to_thread(self.open_browser, url):
                    logger.warning(f"Could not open a browser, visit this URL: {url}")
                return await asyncio.wait_for(result, timeout=self.timeout)
            except asyncio.TimeoutError:
                raise PresentationError(
                    f"No authorization callback received within {self.timeout}s"
                ) from None
            finally:
                if self._result is result:
                    self._result = None
                await self._stop_server()

    def cancel(self) -> None:
        if self._result is not None and not self._result.done():
            self._result.set_exception(
                UserAuthCancelledError("Authorization was cancelled")
            )

    async def _handle_callback(self, request: Request) -> Response:
        callback_url = str(request.url)
        if self._result is None or self._result.done():
            logger.debug("Ignoring callback with no authorization in progress")
            return Response("No authorization in progress", status_code=409)

        self._result.set_result(callback_url)
        return HTMLResponse(SUCCESS_PAGE)

    async def _start_server(self) -> None:
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.port))
        except OSError as e:
            sock.close()
            raise PresentationError(
                f"Cannot listen for the callback on {self.host}:{self.port}: {e}"
            ) from e

        config = uvicorn.Config(app=self._app, log_level="warning", lifespan="off")
        self._socket = sock
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._serve_task.done():
                error = (
                    None
                    if self._serve_task.cancelled()
                    else self._serve_task.exception()
                )
                raise PresentationError(
                    f"Callback listener on {self.host}:{self.port} stopped during "
                    f"startup: {error}"
                )
            await asyncio.sleep(STARTUP_POLL_INTERVAL)
        logger.debug(f"Listening for authorization callback on {self.redirect_uri}")

    async def _stop_server(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._serve_task is not None and not self._serve_task.done():
            await self._serve_task
        if self._socket is not None:
            self._socket.close()
        self._server = None
        self._serve_task = None
        self._socket = None
