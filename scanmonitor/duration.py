from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from scanmonitor.models import ScanJob

LOGGER = logging.getLogger(__name__)

TICK_SECONDS = 1.0


def format_duration(duration_ms: int | float | None) -> str:
    if not duration_ms or duration_ms < 0:
        return "0s"
    total_seconds = int(duration_ms // 1000)
    minutes, seconds = divmod(total_seconds, 60)
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


@dataclass(frozen=True)
class Baseline:
    observed_at: float
    base_ms: float

    def estimate(self, now: float) -> int:
        return int(self.base_ms + max(0.0, (now - self.observed_at) * 1000))


class DurationEstimator:
    """Elapsed-time estimate for running jobs between two server snapshots.

    The first RUNNING snapshot of a job fixes the local reference time. Later
    snapshots never move that reference; they may only raise the baseline when
    the server is ahead of the local estimate, so the value never goes back.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._baselines: dict[str, Baseline] = {}

    def observe(self, job: ScanJob, now: float | None = None) -> None:
        if not job.is_running:
            if self._baselines.pop(job.scan_id, None) is not None:
                LOGGER.debug("Scan %s left RUNNING (%s), estimate dropped", job.scan_id, job.status)
            return

        now = self._clock() if now is None else now
        snapshot = float(job.duration_ms or 0)
        baseline = self._baselines.get(job.scan_id)
        if baseline is None:
            self._baselines[job.scan_id] = Baseline(observed_at=now, base_ms=snapshot)
            return

        # snapshot expressed relative to the first reference time
        candidate = snapshot - (now - baseline.observed_at) * 1000
        if candidate > baseline.base_ms:
            self._baselines[job.scan_id] = Baseline(observed_at=baseline.observed_at, base_ms=candidate)

    def observe_all(self, jobs: Iterable[ScanJob], now: float | None = None) -> None:
        now = self._clock() if now is None else now
        seen = set()
        for job in jobs:
            seen.add(job.scan_id)
            self.observe(job, now)
        for scan_id in list(self._baselines):
            if scan_id not in seen:
                del self._baselines[scan_id]

    def estimate(self, scan_id: str, now: float | None = None) -> int | None:
        baseline = self._baselines.get(scan_id)
        if baseline is None:
            return None
        return baseline.estimate(self._clock() if now is None else now)

    def display_ms(self, job: ScanJob, now: float | None = None) -> int:
        if job.is_running:
            estimate = self.estimate(job.scan_id, now)
            if estimate is not None:
                return estimate
        return job.duration_ms or 0

    def tracked(self) -> set[str]:
        return set(self._baselines)
