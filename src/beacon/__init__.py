"""
Component registration and discovery

This package provides:
1. Registrar — registers a process, announces it and serves varz/healthz
2. VarzStore / StatsCache — operational metadata with cached CPU/memory stats
3. AnnouncementPublisher — announce and discovery-reply on the message bus
4. MonitoringServer / MonitoringClient — the Basic-auth HTTP endpoint and its client
"""

from .announce import ANNOUNCE_SUBJECT, DISCOVER_SUBJECT, AnnouncementPublisher, discover_all
from .bus import InMemoryBus, Message, MessageBus, NatsBus, Subscription
from .client import MonitoringClient
from .config import ComponentConfig, load_config
from .errors import (
    AuthenticationError,
    BeaconError,
    MalformedRequestError,
    TransportSetupError,
    ValidationError,
)
from .identity import Identity, allocate_identity
from .registrar import Registrar
from .server import MonitoringServer
from .stats import MemoryCounters, PsutilSampler, StatsCache, StatsSample
from .varz import VarzStore

__version__ = '0.1.0'
__all__ = [
    'ANNOUNCE_SUBJECT',
    'DISCOVER_SUBJECT',
    'AnnouncementPublisher',
    'AuthenticationError',
    'BeaconError',
    'ComponentConfig',
    'Identity',
    'InMemoryBus',
    'MalformedRequestError',
    'MemoryCounters',
    'Message',
    'MessageBus',
    'MonitoringClient',
    'MonitoringServer',
    'NatsBus',
    'PsutilSampler',
    'Registrar',
    'StatsCache',
    'StatsSample',
    'Subscription',
    'TransportSetupError',
    'ValidationError',
    'VarzStore',
    'allocate_identity',
    'discover_all',
    'load_config',
]
