"""Registration: wires identity, varz, announcements and the monitoring server."""

import sys
import threading
import time
from typing import Any, Dict, Mapping, Optional, Union

from .announce import AnnouncementPublisher
from .config import ComponentConfig
from .errors import ValidationError
from .identity import Identity, allocate_identity, generate_credentials, local_ip
from .server import MonitoringServer
from .stats import PsutilSampler, Sampler, StatsCache
from .varz import VarzStore

DEFAULT_HEALTHZ = "ok\n"


class Registrar:
    """One registered component instance.

    Owns its VarzStore and StatsCache and hands them by reference to the HTTP
    handler and the discovery subscription; nothing is process-global.
    """

    def __init__(self, sampler: Optional[Sampler] = None):
        self._sampler = sampler
        self._lock = threading.Lock()
        self._healthz = DEFAULT_HEALTHZ

        self.stats: Optional[StatsCache] = None
        self.varz: Optional[VarzStore] = None
        self.identity: Optional[Identity] = None
        self.credentials: Optional[tuple[str, str]] = None
        self.host: Optional[str] = None
        self._publisher: Optional[AnnouncementPublisher] = None
        self._server: Optional[MonitoringServer] = None

    @property
    def registered(self) -> bool:
        return self.identity is not None

    @property
    def port(self) -> Optional[int]:
        return self._server.port if self._server is not None else None

    @property
    def healthz(self) -> str:
        return self._healthz

    @healthz.setter
    def healthz(self, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"healthz must be a str, got {type(value).__name__}")
        self._healthz = value

    def register(self, options: Union[Mapping[str, Any], ComponentConfig]) -> Dict[str, Any]:
        """Register this process and start serving; returns the discover payload.

        All validation happens before any state is touched, so a rejected
        registration leaves the instance exactly as it was.
        """
        if isinstance(options, ComponentConfig):
            config = options
        else:
            config = ComponentConfig.from_options(options)
        config.validate(require_bus=True)

        with self._lock:
            if self.registered:
                raise ValidationError(
                    f"Already registered as {self.identity.type} ({self.identity.uuid})"
                )

            identity = allocate_identity(config.type, config.index)
            generated = generate_credentials()
            credentials = (config.user or generated[0], config.password or generated[1])

            stats = StatsCache(self._sampler or PsutilSampler(), interval=config.varz_interval)
            varz = VarzStore(stats)

            server = MonitoringServer(
                varz, lambda: self._healthz, credentials,
                bind=config.bind, port=config.port or 0,
            )
            port = server.bind()
            host = f"{config.host or local_ip()}:{port}"
            started_at = time.time()

            publisher = AnnouncementPublisher(
                config.bus, identity, host, credentials,
                started_at=started_at, subject_prefix=config.subject_prefix,
            )
            try:
                varz.seed(config.metadata, identity, credentials, host, started_at=started_at)
                server.serve()
                publisher.subscribe()
            except BaseException:
                publisher.stop()
                server.stop()
                raise

            self.stats = stats
            self.varz = varz
            self.identity = identity
            self.credentials = credentials
            self.host = host
            self._publisher = publisher
            self._server = server

        # Announce subscribers run synchronously on some buses and may call
        # back into this registrar
        publisher.announce()
        print(
            f"[beacon] registered {identity.type} index={identity.index}"
            f" uuid={identity.uuid} varz=http://{host}/varz",
            file=sys.stderr,
        )
        return publisher.payload()

    def updated_varz(self) -> Dict[str, Any]:
        if self.varz is None:
            raise RuntimeError("component is not registered")
        return self.varz.snapshot()

    def shutdown(self) -> None:
        with self._lock:
            if self._publisher is not None:
                self._publisher.stop()
                self._publisher = None
            if self._server is not None:
                self._server.stop()
                self._server = None
