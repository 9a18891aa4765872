"""Configuration loading and validation for component registration."""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .errors import ValidationError


# Keys that may never appear in registration input
RESERVED_KEYS = frozenset({"config"})

DEFAULT_SUBJECT_PREFIX = "vcap.component"


@dataclass
class ComponentConfig:
    type: str = ""
    index: int = 0
    port: Optional[int] = None

    # Advertised address; detected from the default route when unset
    host: Optional[str] = None
    bind: str = "0.0.0.0"

    # Basic-auth credentials; generated when unset
    user: Optional[str] = None
    password: Optional[str] = None

    # Message bus: either a live handle or a NATS URL to connect to
    bus: Any = None
    nats_url: Optional[str] = None
    subject_prefix: str = DEFAULT_SUBJECT_PREFIX

    # Freshness window (seconds) for cached CPU/memory samples
    varz_interval: float = 1.0

    # Everything else is published verbatim in varz
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "ComponentConfig":
        """Build a config from a loose options mapping.

        This is the only validation step for registration input: reserved
        keys are rejected here, before anything else is constructed.
        ``nats`` is accepted as an alias for ``bus``; keys that are not
        config fields are collected into ``metadata``.
        """
        options = {str(k): v for k, v in options.items()}
        reserved = RESERVED_KEYS.intersection(options)
        if reserved:
            raise ValidationError(
                f"Refusing to publish reserved key(s) {sorted(reserved)}: "
                "'config' must not be passed to register"
            )

        if "nats" in options:
            if options.get("bus") is not None:
                raise ValidationError("Pass either 'nats' or 'bus', not both")
            options["bus"] = options.pop("nats")

        known = {f.name for f in fields(cls)} - {"metadata"}
        kwargs = {k: v for k, v in options.items() if k in known}
        metadata = dict(options.get("metadata") or {})
        metadata.update({k: v for k, v in options.items() if k not in known and k != "metadata"})

        config = cls(**kwargs, metadata=metadata)
        config.validate(require_bus=False)
        return config

    def validate(self, require_bus: bool = True) -> None:
        """Check field types and required values; raise ValidationError."""
        reserved = RESERVED_KEYS.intersection(self.metadata or {})
        if reserved:
            raise ValidationError(
                f"Refusing to publish reserved key(s) {sorted(reserved)}: "
                "'config' must not be passed to register"
            )
        if not isinstance(self.type, str) or not self.type:
            raise ValidationError("Component 'type' is required")
        if isinstance(self.index, bool) or not isinstance(self.index, int) or self.index < 0:
            raise ValidationError(f"Component 'index' must be a non-negative integer, got {self.index!r}")
        if self.port is not None:
            if isinstance(self.port, bool) or not isinstance(self.port, int) or not 0 <= self.port <= 65535:
                raise ValidationError(f"Component 'port' must be in 0..65535, got {self.port!r}")
        for name in ("user", "password"):
            value = getattr(self, name)
            if value is not None and (not isinstance(value, str) or not value):
                raise ValidationError(f"Component '{name}' must be a non-empty string, got {value!r}")
        if isinstance(self.varz_interval, bool) or not isinstance(self.varz_interval, (int, float)) \
                or self.varz_interval < 0:
            raise ValidationError("'varz_interval' must be a non-negative number of seconds")
        if require_bus and self.bus is None:
            raise ValidationError("A message bus handle ('nats' or 'bus') is required")


def load_config(path: str | Path) -> ComponentConfig:
    """Load a ComponentConfig from a YAML file."""
    path = Path(path)
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValidationError(f"{path}: expected a mapping at the top level")
    return ComponentConfig.from_options(data)


def merge_cli_args(config: ComponentConfig, args) -> ComponentConfig:
    """Overlay CLI arguments onto an existing config. CLI values take precedence."""
    for f in fields(ComponentConfig):
        if f.name in ("metadata", "bus"):
            continue
        cli_val = getattr(args, f.name, None)
        if cli_val is not None:
            setattr(config, f.name, cli_val)
    return config
