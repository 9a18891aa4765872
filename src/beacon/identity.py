"""Process identity, credentials and host helpers."""

import secrets
import socket
from dataclasses import dataclass
from uuid import uuid4

from .errors import ValidationError


@dataclass(frozen=True)
class Identity:
    """The {type, index, uuid} triple naming a registered instance."""
    type: str
    index: int
    uuid: str


def allocate_identity(type: str, index: int = 0) -> Identity:
    """Derive a process-unique identity; the uuid is prefixed by ``{index}-``."""
    if not type:
        raise ValidationError("Component 'type' is required")
    if isinstance(index, bool) or not isinstance(index, int) or index < 0:
        raise ValidationError(f"Component 'index' must be a non-negative integer, got {index!r}")
    return Identity(type=type, index=index, uuid=f"{index}-{uuid4().hex}")


def generate_credentials() -> tuple[str, str]:
    return secrets.token_hex(16), secrets.token_hex(16)


def local_ip(route: str = "198.18.0.1") -> str:
    """Return the local address used for the default outbound route.

    Connecting a UDP socket sends no packets; it only asks the kernel to
    pick a source address.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect((route, 1))
            return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"


def uptime_string(delta: float) -> str:
    num_seconds = int(delta)
    days, rem = divmod(num_seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, seconds = divmod(rem, 60)
    return f"{days}d:{hours}h:{minutes}m:{seconds}s"
