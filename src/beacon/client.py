"""Thin HTTP client for a component's monitoring endpoint."""

import json
import urllib.error
import urllib.request
from typing import Any, Dict, Optional, Sequence

from .server import basic_auth_header


class MonitoringClient:
    """Queries /varz and /healthz on a registered component.

    *host* is the ``address:port`` string the component publishes in its
    announcement.
    """

    def __init__(self, host: str, credentials: Sequence[str], timeout: float = 10):
        self._base = f"http://{host}"
        self._auth = basic_auth_header(*credentials)
        self._timeout = timeout
        # Monitoring targets are internal hosts; bypass http_proxy env vars
        self._opener = urllib.request.build_opener(urllib.request.ProxyHandler({}))

    def _get(self, path: str) -> bytes:
        request = urllib.request.Request(
            f"{self._base}{path}", headers={"Authorization": self._auth},
        )
        with self._opener.open(request, timeout=self._timeout) as resp:
            return resp.read()

    def get_varz(self) -> Optional[Dict[str, Any]]:
        try:
            return json.loads(self._get("/varz").decode("utf-8"))
        except (urllib.error.URLError, OSError, ValueError):
            return None

    def get_healthz(self) -> Optional[str]:
        try:
            return self._get("/healthz").decode("utf-8")
        except (urllib.error.URLError, OSError, UnicodeDecodeError):
            return None
