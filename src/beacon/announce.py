"""Announce a component on the bus and answer discovery requests."""

import json
import sys
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from .bus import Message, MessageBus, Subscription, new_inbox
from .config import DEFAULT_SUBJECT_PREFIX
from .errors import TransportSetupError
from .identity import Identity, uptime_string

ANNOUNCE_SUBJECT = f"{DEFAULT_SUBJECT_PREFIX}.announce"
DISCOVER_SUBJECT = f"{DEFAULT_SUBJECT_PREFIX}.discover"


def subjects(prefix: str = DEFAULT_SUBJECT_PREFIX) -> tuple[str, str]:
    """Return the (announce, discover) subjects for a prefix."""
    return f"{prefix}.announce", f"{prefix}.discover"


class AnnouncementPublisher:
    """Publishes the discover payload once and replies to every discover request."""

    def __init__(self, bus: MessageBus, identity: Identity, host: str,
                 credentials: Sequence[str], started_at: Optional[float] = None,
                 subject_prefix: str = DEFAULT_SUBJECT_PREFIX):
        self._bus = bus
        self._identity = identity
        self._host = host
        self._credentials = list(credentials)
        self._started_at = time.time() if started_at is None else started_at
        self.announce_subject, self.discover_subject = subjects(subject_prefix)
        self._subscription: Optional[Subscription] = None

    def payload(self) -> Dict[str, Any]:
        """Static identity fields plus the uptime at the time of the call."""
        return {
            "type": self._identity.type,
            "index": self._identity.index,
            "uuid": self._identity.uuid,
            "host": self._host,
            "credentials": list(self._credentials),
            "start": datetime.fromtimestamp(self._started_at, timezone.utc).isoformat(),
            "uptime": uptime_string(time.time() - self._started_at),
        }

    def encode(self) -> bytes:
        return json.dumps(self.payload(), ensure_ascii=False).encode("utf-8")

    def start(self) -> None:
        """Subscribe to discovery requests, then announce once."""
        self.subscribe()
        self.announce()

    def subscribe(self) -> None:
        try:
            self._subscription = self._bus.subscribe(self.discover_subject, self._on_discover)
        except Exception as exc:
            raise TransportSetupError(
                f"Could not subscribe to {self.discover_subject}: {exc}"
            ) from exc

    def announce(self) -> None:
        self._bus.publish(self.announce_subject, self.encode())

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def _on_discover(self, msg: Message) -> None:
        if not msg.reply:
            return
        self._bus.publish(msg.reply, self.encode())


def discover_all(bus: MessageBus, timeout: float = 1.0,
                 subject_prefix: str = DEFAULT_SUBJECT_PREFIX) -> List[Dict[str, Any]]:
    """Send one discovery request and collect every reply until *timeout*."""
    _, discover_subject = subjects(subject_prefix)
    replies: List[Dict[str, Any]] = []
    lock = threading.Lock()

    def on_reply(msg: Message) -> None:
        try:
            body = json.loads(msg.data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            print(f"[discover] ignoring malformed reply: {exc}", file=sys.stderr)
            return
        with lock:
            replies.append(body)

    inbox = new_inbox()
    sub = bus.subscribe(inbox, on_reply)
    try:
        bus.publish(discover_subject, b"", reply=inbox)
        time.sleep(timeout)
    finally:
        sub.unsubscribe()
    with lock:
        return list(replies)
