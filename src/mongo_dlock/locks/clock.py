"""Latency-adjusted estimate of the lock store's clock.

Lock timestamps are written in the store's clock domain so that hosts with
skewed clocks still agree on heartbeat age. The estimate assumes symmetric
network latency: half of each round trip is the one-way delay.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from mongo_dlock.core.constants import DEFAULT_SERVER_TIME_SAMPLES
from mongo_dlock.core.exceptions import ConfigurationError


class ServerTimeSource(Protocol):
    def server_time(self) -> datetime: ...


def half_rounded_average_ms(latencies_ms: list[float]) -> int:
    """Average one-way delay, rounded half up to whole milliseconds."""
    if not latencies_ms:
        return 0
    return math.floor(sum(latencies_ms) / len(latencies_ms) / 2 + 0.5)


@dataclass(frozen=True)
class ServerTimeSample:
    """Adjusted server time plus the local monotonic instant it was taken."""

    server_time: datetime
    taken_at: float
    latencies_ms: tuple[float, ...]
    clock: Callable[[], float] = time.monotonic

    def now(self) -> datetime:
        """Server time advanced by the local time elapsed since sampling."""
        elapsed = max(0.0, self.clock() - self.taken_at)
        return self.server_time + timedelta(seconds=elapsed)


class ClockSync:
    """Estimate the store's current time with sequential round trips.

    Sampling is sequential rather than parallel so that the last sample,
    whose server time is used, is also the freshest.
    """

    def __init__(
        self,
        sample_count: int = DEFAULT_SERVER_TIME_SAMPLES,
        clock: Callable[[], float] = time.monotonic,
    ):
        if sample_count < 1:
            raise ConfigurationError("Server time sample count must be at least 1", field="server_time_samples")
        self.sample_count = sample_count
        self.clock = clock

    def _round_trip(self, store: ServerTimeSource) -> tuple[datetime, float]:
        started = self.clock()
        server_time = store.server_time()
        return server_time, (self.clock() - started) * 1000.0

    def sample(self, store: ServerTimeSource) -> ServerTimeSample:
        round_trips = [self._round_trip(store) for _ in range(self.sample_count)]
        server_time = round_trips[-1][0]
        latencies_ms = [latency for _, latency in round_trips]

        adjusted = server_time + timedelta(milliseconds=half_rounded_average_ms(latencies_ms))
        return ServerTimeSample(
            server_time=adjusted,
            taken_at=self.clock(),
            latencies_ms=tuple(latencies_ms),
            clock=self.clock,
        )

    def estimate(self, store: ServerTimeSource) -> datetime:
        return self.sample(store).server_time


def estimate_server_time(store: ServerTimeSource, sample_count: int = DEFAULT_SERVER_TIME_SAMPLES) -> datetime:
    """Server-reported time of the last sample plus the average one-way delay."""
    return ClockSync(sample_count).estimate(store)
