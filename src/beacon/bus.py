"""
Message bus adapters

This module provides:
- MessageBus: the protocol the announcement publisher is written against
- InMemoryBus: synchronous, thread-safe bus for a single process and tests
- NatsBus: adapter running the asyncio nats-py client on a daemon thread
"""

import asyncio
import itertools
import sys
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol
from uuid import uuid4

from .errors import TransportSetupError


@dataclass(frozen=True)
class Message:
    subject: str
    data: bytes
    reply: Optional[str] = None


MessageCallback = Callable[[Message], None]


class Subscription:
    """Handle returned by subscribe(); call unsubscribe() to cancel."""

    def __init__(self, subject: str, cancel: Callable[[], None]):
        self.subject = subject
        self._cancel = cancel
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if self._active:
            self._active = False
            self._cancel()


class MessageBus(Protocol):
    def publish(self, subject: str, data: bytes, reply: Optional[str] = None) -> None: ...

    def subscribe(self, subject: str, callback: MessageCallback) -> Subscription: ...

    def request(self, subject: str, data: bytes = b"", timeout: float = 1.0) -> Message: ...


def new_inbox() -> str:
    return f"_INBOX.{uuid4().hex}"


# ---------------------------------------------------------------------------
# In-process bus
# ---------------------------------------------------------------------------

class InMemoryBus:
    """Delivers each publish synchronously to every subscriber of the subject."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: Dict[str, Dict[int, MessageCallback]] = {}
        self._sids = itertools.count(1)

    def subscribe(self, subject: str, callback: MessageCallback) -> Subscription:
        with self._lock:
            sid = next(self._sids)
            self._subscribers.setdefault(subject, {})[sid] = callback

        def cancel() -> None:
            with self._lock:
                subs = self._subscribers.get(subject)
                if subs is not None:
                    subs.pop(sid, None)
                    if not subs:
                        del self._subscribers[subject]

        return Subscription(subject, cancel)

    def publish(self, subject: str, data: bytes, reply: Optional[str] = None) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(subject, {}).values())
        msg = Message(subject=subject, data=data, reply=reply)
        for callback in callbacks:
            try:
                callback(msg)
            except Exception as exc:
                # Publishing is fire-and-forget; one bad subscriber must not
                # prevent delivery to the rest.
                print(f"[bus] subscriber on {subject} failed: {exc!r}", file=sys.stderr)

    def request(self, subject: str, data: bytes = b"", timeout: float = 1.0) -> Message:
        replies: List[Message] = []
        got_reply = threading.Event()

        def on_reply(msg: Message) -> None:
            replies.append(msg)
            got_reply.set()

        inbox = new_inbox()
        sub = self.subscribe(inbox, on_reply)
        try:
            self.publish(subject, data, reply=inbox)
            if not got_reply.wait(timeout):
                raise TimeoutError(f"No reply on {subject} within {timeout}s")
        finally:
            sub.unsubscribe()
        return replies[0]

    def subscriber_count(self, subject: str) -> int:
        with self._lock:
            return len(self._subscribers.get(subject, {}))


# ---------------------------------------------------------------------------
# NATS adapter
# ---------------------------------------------------------------------------

class NatsBus:
    """Blocking facade over the asyncio nats-py client.

    The client lives on an event loop running in a daemon thread. Subscriber
    callbacks are dispatched to the loop's default executor so they may call
    publish() without blocking the loop.
    """

    def __init__(self, client, loop: asyncio.AbstractEventLoop,
                 thread: threading.Thread, timeout: float = 5.0):
        self._client = client
        self._loop = loop
        self._thread = thread
        self._timeout = timeout

    @classmethod
    def connect(cls, url: str = "nats://127.0.0.1:4222", timeout: float = 5.0) -> "NatsBus":
        import nats

        loop = asyncio.new_event_loop()
        thread = threading.Thread(target=loop.run_forever, name="beacon-nats", daemon=True)
        thread.start()
        try:
            client = asyncio.run_coroutine_threadsafe(
                nats.connect(url, connect_timeout=timeout), loop,
            ).result(timeout + 1)
        except Exception as exc:
            loop.call_soon_threadsafe(loop.stop)
            thread.join(timeout=1)
            raise TransportSetupError(f"Could not connect to NATS at {url}: {exc}") from exc
        return cls(client, loop, thread, timeout)

    def _run(self, coro, timeout: Optional[float] = None):
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(self._timeout if timeout is None else timeout)

    def publish(self, subject: str, data: bytes, reply: Optional[str] = None) -> None:
        self._run(self._client.publish(subject, data, reply=reply or ""))

    def subscribe(self, subject: str, callback: MessageCallback) -> Subscription:
        loop = self._loop

        async def handler(msg) -> None:
            message = Message(subject=msg.subject, data=msg.data, reply=msg.reply or None)
            await loop.run_in_executor(None, callback, message)

        sub = self._run(self._client.subscribe(subject, cb=handler))
        return Subscription(subject, lambda: self._run(sub.unsubscribe()))

    def request(self, subject: str, data: bytes = b"", timeout: float = 1.0) -> Message:
        try:
            msg = self._run(self._client.request(subject, data, timeout=timeout), timeout + 1)
        except asyncio.TimeoutError as exc:
            raise TimeoutError(f"No reply on {subject} within {timeout}s") from exc
        return Message(subject=msg.subject, data=msg.data, reply=msg.reply or None)

    def close(self) -> None:
        try:
            self._run(self._client.drain())
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=self._timeout)
