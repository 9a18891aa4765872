"""CPU and memory sampling with a time-based freshness window."""

import os
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

import psutil


@dataclass(frozen=True)
class MemoryCounters:
    active_bytes: int
    wired_bytes: int
    inactive_bytes: int
    free_bytes: int


@dataclass(frozen=True)
class StatsSample:
    """One reading of host memory/load plus this process's rss and cpu."""
    mem_used_bytes: int
    mem_free_bytes: int
    cpu_load_avg: float
    mem: int = 0      # resident set size of this process, KiB
    cpu: float = 0.0  # percent of one core used by this process
    sampled_at: float = 0.0

    @classmethod
    def from_counters(cls, memory: MemoryCounters, load_avg: float,
                      rss_kb: int = 0, cpu_percent: float = 0.0,
                      sampled_at: float = 0.0) -> 'StatsSample':
        return cls(
            mem_used_bytes=memory.active_bytes + memory.wired_bytes,
            mem_free_bytes=memory.inactive_bytes + memory.free_bytes,
            cpu_load_avg=load_avg,
            mem=rss_kb,
            cpu=cpu_percent,
            sampled_at=sampled_at,
        )

    def to_varz(self) -> Dict[str, Any]:
        return {
            "mem_used_bytes": self.mem_used_bytes,
            "mem_free_bytes": self.mem_free_bytes,
            "cpu_load_avg": self.cpu_load_avg,
            "mem": self.mem,
            "cpu": self.cpu,
        }


class Sampler(Protocol):
    """Resource-sampling collaborator."""

    def memory(self) -> MemoryCounters: ...

    def load_average(self) -> float: ...

    def process(self) -> tuple[int, float]: ...


class PsutilSampler:
    """Sampler backed by psutil."""

    def __init__(self, pid: Optional[int] = None):
        self._process = psutil.Process(pid or os.getpid())

    def memory(self) -> MemoryCounters:
        vm = psutil.virtual_memory()
        # 'wired' only exists on macOS/BSD
        return MemoryCounters(
            active_bytes=getattr(vm, "active", 0),
            wired_bytes=getattr(vm, "wired", 0),
            inactive_bytes=getattr(vm, "inactive", 0),
            free_bytes=vm.free,
        )

    def load_average(self) -> float:
        return float(psutil.getloadavg()[0])

    def process(self) -> tuple[int, float]:
        with self._process.oneshot():
            rss = self._process.memory_info().rss
            pcpu = self._process.cpu_percent(interval=None)
        return rss // 1024, float(pcpu)


class StatsCache:
    """Caches a StatsSample for ``interval`` seconds.

    Sampling is comparatively expensive and varz may be polled often, so a
    sample up to one interval old is served from the cache.
    """

    def __init__(self, sampler: Sampler, interval: float = 1.0,
                 clock: Callable[[], float] = time.monotonic):
        self._sampler = sampler
        self._interval = interval
        self._clock = clock
        self._lock = threading.Lock()
        self._sample: Optional[StatsSample] = None
        self._last_update: Optional[float] = None

    @property
    def interval(self) -> float:
        return self._interval

    def snapshot(self) -> StatsSample:
        with self._lock:
            now = self._clock()
            if self._sample is None or self._last_update is None \
                    or now - self._last_update >= self._interval:
                self._sample = self._take_sample(now)
                self._last_update = now
            return self._sample

    def invalidate(self) -> None:
        """Force the next snapshot() to re-sample."""
        with self._lock:
            self._sample = None
            self._last_update = None

    def _take_sample(self, now: float) -> StatsSample:
        rss_kb, cpu_percent = self._sampler.process()
        return StatsSample.from_counters(
            self._sampler.memory(),
            self._sampler.load_average(),
            rss_kb=rss_kb,
            cpu_percent=cpu_percent,
            sampled_at=now,
        )
