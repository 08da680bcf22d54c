"""
Profiling utilities for Catalog Sync.

Measures wall-clock time and process memory around a sync or rollup run so the
CLI can report what a page range or a retention pass cost:
- Wall-clock time (perf_counter)
- CPU usage (psutil)
- Peak RSS via a background sampling thread

Usage:
    from catalog_sync.utils.profiler import profile_block

    with profile_block("sync worker-3 1-12") as stats:
        asyncio.run(run_range())

    print(stats.duration_seconds, stats.peak_rss_bytes)
"""

from __future__ import annotations

import contextlib
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Generator, Optional

import psutil


@dataclass
class ProfileStats:
    """
    Container for profiling measurements.
    """

    label: str
    start_ts: float = field(default=0.0)
    end_ts: float = field(default=0.0)
    duration_seconds: float = field(default=0.0)
    peak_rss_bytes: Optional[int] = field(default=None)
    cpu_percent: Optional[float] = field(default=None)
    extra: dict[str, Any] = field(default_factory=dict)

    def as_log_fields(self) -> Dict[str, Any]:
        fields = asdict(self)
        fields["duration_seconds"] = round(self.duration_seconds, 3)
        return fields


@contextlib.contextmanager
def profile_block(label: str, sample_interval_ms: int = 100) -> Generator[ProfileStats, None, None]:
    """
    Profile a block of code.

    Parameters
    ----------
    label : str
        Name recorded on the returned stats.
    sample_interval_ms : int
        How often the sampler thread reads the process RSS.

    Yields
    ------
    ProfileStats
        Populated when the block exits (also on error).
    """
    stats = ProfileStats(label=label)
    process = psutil.Process()
    process.cpu_percent(interval=None)  # prime the counter

    peak_rss = process.memory_info().rss
    stop_sampling = threading.Event()

    def _sample() -> None:
        nonlocal peak_rss
        while not stop_sampling.wait(sample_interval_ms / 1000):
            try:
                peak_rss = max(peak_rss, process.memory_info().rss)
            except psutil.Error:
                return

    sampler = threading.Thread(target=_sample, name=f"profiler-{label}", daemon=True)
    stats.start_ts = time.perf_counter()
    sampler.start()
    try:
        yield stats
    finally:
        stats.end_ts = time.perf_counter()
        stats.duration_seconds = stats.end_ts - stats.start_ts

        stop_sampling.set()
        sampler.join(timeout=1.0)

        stats.peak_rss_bytes = peak_rss
        stats.cpu_percent = process.cpu_percent(interval=None)


__all__ = ["ProfileStats", "profile_block"]
