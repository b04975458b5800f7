"""
Local HTTP listener that captures the OAuth redirect carrying the authorization code.
"""

import logging
import time
import webbrowser
from enum import Enum
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import List, Optional
from urllib.parse import parse_qs, urlparse

from .errors import CallbackTimeout, IoError, OAuthCodeMissing

logger = logging.getLogger(__name__)

DEFAULT_REDIRECT_URL = "http://localhost:8080"
ACKNOWLEDGEMENT = "Go back to your terminal :)"
# Longest an accepted connection may sit idle before its request line arrives.
REQUEST_READ_TIMEOUT = 10.0


class ListenerState(Enum):
    IDLE = "idle"
    LISTENING = "listening"
    CODE_RECEIVED = "code_received"
    RESPONDED = "responded"
    CLOSED = "closed"


def extract_code(path: str) -> str:
    """Pull the `code` query parameter out of a callback request path.

    Raises OAuthCodeMissing when it is absent, e.g. when the user denied
    access and the server sent `error=access_denied` instead.
    """
    query = parse_qs(urlparse(path).query)
    code = query.get("code", [""])[0]
    if not code:
        raise OAuthCodeMissing(query.get("error", [None])[0])
    return code


class _CallbackHandler(BaseHTTPRequestHandler):
    """Handles the single redirect request and hands the result to the listener."""

    def setup(self):
        self.timeout = self.server.request_timeout
        super().setup()

    def do_GET(self):
        listener = self.server.listener
        listener._receive(self.path)

        body = ACKNOWLEDGEMENT.encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)
        listener._set_state(ListenerState.RESPONDED)

    def log_message(self, format, *args):
        logger.debug("callback: " + format, *args)


class CallbackListener:
    """Bounded-lifetime server: accepts exactly one callback request, then closes.

    The host and port come from the redirect URL registered with Fitbit; they
    must match exactly or the authorization server rejects the request.
    """

    def __init__(self, redirect_url: str = DEFAULT_REDIRECT_URL):
        parsed = urlparse(redirect_url)
        self.redirect_url = redirect_url
        self.host = parsed.hostname or "localhost"
        if parsed.port is not None:
            self.port = parsed.port
        else:
            self.port = 443 if parsed.scheme == "https" else 80
        self.state = ListenerState.IDLE
        self.transitions: List[ListenerState] = [ListenerState.IDLE]
        self.code: Optional[str] = None
        self._failure: Optional[OAuthCodeMissing] = None
        self._server: Optional[HTTPServer] = None

    def _set_state(self, state: ListenerState) -> None:
        self.state = state
        self.transitions.append(state)

    def _receive(self, path: str) -> None:
        try:
            self.code = extract_code(path)
        except OAuthCodeMissing as e:
            logger.warning("Authorization callback carried no code: %s", e)
            self._failure = e
            return
        self._set_state(ListenerState.CODE_RECEIVED)

    @property
    def server_port(self) -> int:
        """Port actually bound (differs from `port` only when binding port 0)."""
        if self._server is None:
            return self.port
        return self._server.server_address[1]

    def listen(self) -> None:
        """Bind the listening socket. A port already in use is fatal."""
        if self.state is not ListenerState.IDLE:
            raise RuntimeError(f"listener already {self.state.value}")
        try:
            self._server = HTTPServer((self.host, self.port), _CallbackHandler)
        except OSError as e:
            raise IoError(f"could not start http listener on {self.host}:{self.port}: {e}") from e
        self._server.listener = self
        self._set_state(ListenerState.LISTENING)
        logger.info("Waiting for authorization callback on %s:%s", self.host, self.server_port)

    def wait_for_code(self, timeout: Optional[float] = None) -> str:
        """Block until one callback request arrives and return its code.

        With no timeout this waits forever, which is what a human completing
        the browser consent needs.
        """
        if self.state is ListenerState.IDLE:
            self.listen()
        if self.state is not ListenerState.LISTENING:
            raise RuntimeError(f"listener already {self.state.value}")

        deadline = None if timeout is None else time.monotonic() + timeout
        try:
            # Connections that close or idle without a request do not count.
            while self.code is None and self._failure is None:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    break
                self._server.timeout = remaining
                self._server.request_timeout = (
                    REQUEST_READ_TIMEOUT if remaining is None else min(remaining, REQUEST_READ_TIMEOUT)
                )
                self._server.handle_request()
        finally:
            self.close()

        if self._failure is not None:
            raise self._failure
        if self.code is None:
            raise CallbackTimeout(f"no authorization callback within {timeout} seconds")
        return self.code

    def close(self) -> None:
        if self._server is not None:
            self._server.server_close()
            self._server = None
        if self.state is not ListenerState.CLOSED:
            self._set_state(ListenerState.CLOSED)

    def __enter__(self) -> "CallbackListener":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class WebBrowserOpener:
    """Opens URLs with the operating system's default browser."""

    def open(self, url: str) -> bool:
        try:
            opened = webbrowser.open(url)
        except webbrowser.Error as e:
            logger.warning("Could not launch a browser: %s", e)
            return False
        if not opened:
            logger.warning("No browser available to open the authorization URL")
        return opened


class NullBrowserOpener:
    """Never opens anything; the user copies the printed URL instead."""

    def open(self, url: str) -> bool:
        return False
