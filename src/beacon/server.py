#!/usr/bin/env python3
"""
Authenticated monitoring endpoint

This module provides:
- parse_basic_auth / check_credentials: HTTP Basic authentication
- MonitoringServer: ThreadingHTTPServer in a daemon thread serving
  GET /varz (JSON snapshot of the VarzStore) and GET /healthz (raw health
  string), both behind Basic auth
"""

import base64
import binascii
import hmac
import json
import sys
import threading
import urllib.parse
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Optional, Sequence

from .errors import AuthenticationError, MalformedRequestError, TransportSetupError
from .varz import VarzStore

REALM = "beacon"


def parse_basic_auth(header: str) -> tuple[str, str]:
    """Decode a ``Basic <base64(user:pass)>`` header value."""
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "basic" or not token.strip():
        raise MalformedRequestError("Authorization header is not Basic auth")
    try:
        decoded = base64.b64decode(token.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise MalformedRequestError("Authorization header is not valid base64") from exc
    user, sep, password = decoded.partition(":")
    if not sep:
        raise MalformedRequestError("Authorization header lacks 'user:password'")
    return user, password


def check_credentials(header: Optional[str], credentials: Sequence[str]) -> None:
    """Raise unless *header* carries exactly the expected credentials."""
    if header is None:
        raise AuthenticationError("Authorization required")
    user, password = parse_basic_auth(header)
    expected_user, expected_password = credentials
    # Compare both halves so timing does not reveal which one differs
    user_ok = hmac.compare_digest(user.encode("utf-8"), expected_user.encode("utf-8"))
    password_ok = hmac.compare_digest(password.encode("utf-8"), expected_password.encode("utf-8"))
    if not (user_ok and password_ok):
        raise AuthenticationError("Invalid credentials")


def basic_auth_header(user: str, password: str) -> str:
    token = base64.b64encode(f"{user}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


# ---------------------------------------------------------------------------
# HTTP handler
# ---------------------------------------------------------------------------

def _make_handler(varz: VarzStore, healthz: Callable[[], str],
                  credentials: Sequence[str]):
    """Create a handler class bound to the given store and credentials."""

    class MonitoringHTTPHandler(BaseHTTPRequestHandler):

        def log_message(self, format, *args):
            # Silence default stderr logging
            pass

        def _respond(self, status: int, body: bytes, content_type: str,
                     headers: Optional[dict] = None):
            self.send_response(status)
            self.send_header("Content-Type", content_type)
            # Byte length, not character count
            self.send_header("Content-Length", str(len(body)))
            for name, value in (headers or {}).items():
                self.send_header(name, value)
            self.end_headers()
            self.wfile.write(body)

        def _json_response(self, data, status: int = 200):
            body = json.dumps(data, ensure_ascii=False).encode("utf-8")
            self._respond(status, body, "application/json")

        def do_GET(self):
            try:
                check_credentials(self.headers.get("Authorization"), credentials)
            except MalformedRequestError:
                self._respond(400, b"Bad Request\n", "text/plain; charset=utf-8")
                return
            except AuthenticationError:
                self._respond(
                    401, b"Unauthorized\n", "text/plain; charset=utf-8",
                    headers={"WWW-Authenticate": f'Basic realm="{REALM}"'},
                )
                return

            path = urllib.parse.urlparse(self.path).path.rstrip("/")

            if path == "/varz":
                try:
                    body = json.dumps(varz.snapshot(), ensure_ascii=False).encode("utf-8")
                except Exception as exc:
                    print(f"[beacon] varz snapshot failed: {exc!r}", file=sys.stderr)
                    self._json_response({"error": "varz unavailable"}, status=500)
                    return
                self._respond(200, body, "application/json")

            elif path == "/healthz":
                self._respond(200, healthz().encode("utf-8"), "text/plain; charset=utf-8")

            else:
                self._json_response({"error": "not found"}, status=404)

    return MonitoringHTTPHandler


class _MonitoringHTTPServer(ThreadingHTTPServer):
    daemon_threads = True
    # A second listener on the same port must fail to bind
    allow_reuse_port = False


class MonitoringServer:
    """Owns the HTTP listener; bind() and serve() may be called separately."""

    def __init__(self, varz: VarzStore, healthz: Callable[[], str],
                 credentials: Sequence[str], bind: str = "0.0.0.0", port: int = 0):
        self._varz = varz
        self._healthz = healthz
        self._credentials = tuple(credentials)
        self._bind = bind
        self._requested_port = port or 0
        self._server: Optional[_MonitoringHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        if self._server is None:
            raise RuntimeError("server is not bound")
        return self._server.server_address[1]

    def bind(self) -> int:
        """Bind the listening socket and return the actual port."""
        handler = _make_handler(self._varz, self._healthz, self._credentials)
        try:
            self._server = _MonitoringHTTPServer((self._bind, self._requested_port), handler)
        except OSError as exc:
            raise TransportSetupError(
                f"Could not bind monitoring server on {self._bind}:{self._requested_port}: {exc}"
            ) from exc
        return self.port

    def serve(self) -> None:
        if self._server is None:
            self.bind()
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="beacon-http", daemon=True,
        )
        self._thread.start()

    def start(self) -> int:
        port = self.bind()
        self.serve()
        return port

    def stop(self) -> None:
        if self._server is None:
            return
        if self._thread is not None:
            self._server.shutdown()
            self._thread.join(timeout=5)
            self._thread = None
        self._server.server_close()
        self._server = None
