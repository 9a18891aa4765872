"""Mutable key/value registry of operational metadata exposed as varz."""

import copy
import os
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from .config import RESERVED_KEYS
from .errors import ValidationError
from .identity import Identity, uptime_string
from .stats import StatsCache

READ_ONLY_KEYS = frozenset({"credentials"})


class VarzStore:
    """Thread-safe varz registry.

    Writes are serialized under one lock and snapshot() copies under the same
    lock, so a snapshot never observes a partially applied seed.
    """

    def __init__(self, stats: StatsCache):
        self._stats = stats
        self._lock = threading.RLock()
        self._entries: Dict[str, Any] = {}
        self._started_at: Optional[float] = None

    def seed(self, options: Mapping[str, Any], identity: Identity,
             credentials: Sequence[str], host: str,
             started_at: Optional[float] = None) -> None:
        """Copy registration metadata into the store and stamp the identity.

        Rejects the whole seed if ``options`` carries a reserved key.
        """
        reserved = RESERVED_KEYS.intersection(options)
        if reserved:
            raise ValidationError(
                f"Refusing to publish reserved key(s) {sorted(reserved)}: "
                "'config' must not be passed to register"
            )

        started_at = time.time() if started_at is None else started_at
        seeded = {str(k): copy.deepcopy(v) for k, v in options.items()}
        seeded.update({
            "type": identity.type,
            "index": identity.index,
            "uuid": identity.uuid,
            "host": host,
            "credentials": list(credentials),
            "start": datetime.fromtimestamp(started_at, timezone.utc).isoformat(),
            "num_cores": os.cpu_count() or 1,
        })

        with self._lock:
            self._entries.update(seeded)
            self._started_at = started_at

    def set(self, key: str, value: Any) -> None:
        if key in RESERVED_KEYS:
            raise ValidationError(f"'{key}' is a reserved varz key")
        if key in READ_ONLY_KEYS:
            raise ValidationError(f"'{key}' is read-only")
        with self._lock:
            self._entries[key] = value

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return copy.deepcopy(self._entries.get(key, default))

    def __getitem__(self, key: str) -> Any:
        with self._lock:
            return copy.deepcopy(self._entries[key])

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def keys(self) -> Iterable[str]:
        with self._lock:
            return list(self._entries)

    def snapshot(self) -> Dict[str, Any]:
        """Return every entry with freshly cached stats merged in."""
        sample = self._stats.snapshot()
        with self._lock:
            data = copy.deepcopy(self._entries)
            started_at = self._started_at
        data.update(sample.to_varz())
        if started_at is not None:
            data["uptime"] = uptime_string(time.time() - started_at)
        return data
