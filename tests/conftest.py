from __future__ import annotations

import http.client

import pytest

from beacon.bus import InMemoryBus
from beacon.registrar import Registrar
from beacon.server import basic_auth_header
from beacon.stats import MemoryCounters


class FakeSampler:
    """Sampler with settable readings and a call counter."""

    def __init__(self, active=75, wired=25, inactive=660, free=340, load=2.0,
                 rss_kb=1024, cpu=1.5):
        self.counters = MemoryCounters(active, wired, inactive, free)
        self.load = load
        self.rss_kb = rss_kb
        self.cpu = cpu
        self.calls = 0

    def memory(self) -> MemoryCounters:
        self.calls += 1
        return self.counters

    def load_average(self) -> float:
        return self.load

    def process(self) -> tuple[int, float]:
        return self.rss_kb, self.cpu


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def fetch(host: str, path: str, headers: dict | None = None):
    """GET *path* from ``addr:port``; returns (status, headers, raw body bytes)."""
    address, port = host.rsplit(":", 1)
    conn = http.client.HTTPConnection(address, int(port), timeout=5)
    try:
        conn.request("GET", path, headers=headers or {})
        resp = conn.getresponse()
        return resp.status, resp.headers, resp.read()
    finally:
        conn.close()


def auth_headers(credentials) -> dict:
    return {"Authorization": basic_auth_header(*credentials)}


@pytest.fixture
def sampler():
    return FakeSampler()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bus():
    return InMemoryBus()


@pytest.fixture
def registrar(sampler):
    reg = Registrar(sampler=sampler)
    yield reg
    reg.shutdown()


@pytest.fixture
def options(bus):
    return {"type": "type", "nats": bus, "host": "127.0.0.1", "bind": "127.0.0.1"}
