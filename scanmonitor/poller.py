from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable

from scanmonitor.client import ScanApiClient, ScanApiError, WriteThroughError
from scanmonitor.duration import TICK_SECONDS, DurationEstimator
from scanmonitor.models import ScanJob

LOGGER = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 2.0

ChangeCallback = Callable[["JobHistoryPoller"], Any]
ConfirmCallback = Callable[[str], "bool | Awaitable[bool]"]


class InvalidJobStateError(ScanApiError):
    pass


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class JobHistoryPoller:
    """Keeps the scan history view in sync with the server.

    Every refresh replaces the job list wholesale. Requests may overlap; each
    one is tagged with a sequence number and its response is applied only if
    no newer response has been applied already. Use as an async context
    manager: entering starts the poll timer, leaving stops it and discards
    whatever is still in flight.
    """

    def __init__(
        self,
        client: ScanApiClient,
        interval: float = POLL_INTERVAL_SECONDS,
        estimator: DurationEstimator | None = None,
        on_change: ChangeCallback | None = None,
        on_error: ChangeCallback | None = None,
        on_tick: ChangeCallback | None = None,
        tick_interval: float = TICK_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.interval = interval
        self.tick_interval = tick_interval
        self.estimator = estimator or DurationEstimator(clock)
        self.on_change = on_change
        self.on_error = on_error
        self.on_tick = on_tick
        self._jobs: list[ScanJob] = []
        self._error: str | None = None
        self._loading = True
        self._mounted = False
        self._generation = 0
        self._issued_seq = 0
        self._applied_seq = 0
        self._timer: asyncio.Task | None = None
        self._ticker: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def jobs(self) -> list[ScanJob]:
        return list(self._jobs)

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def mounted(self) -> bool:
        return self._mounted

    def get(self, scan_id: str) -> ScanJob | None:
        for job in self._jobs:
            if job.scan_id == scan_id:
                return job
        return None

    async def __aenter__(self) -> "JobHistoryPoller":
        self.mount()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.unmount()

    def mount(self) -> None:
        if self._mounted:
            return
        self._mounted = True
        self._timer = asyncio.create_task(self._poll_forever(), name="history-poll")
        if self.on_tick is not None:
            self._ticker = asyncio.create_task(self._tick_forever(), name="history-tick")
        LOGGER.debug("History poller mounted (interval=%ss)", self.interval)

    async def unmount(self) -> None:
        if not self._mounted:
            return
        self._mounted = False
        self._generation += 1
        tasks = [task for task in (self._timer, self._ticker) if task is not None]
        tasks.extend(self._inflight)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._timer = None
        self._ticker = None
        self._inflight.clear()
        LOGGER.debug("History poller unmounted")

    async def _poll_forever(self) -> None:
        while True:
            task = asyncio.create_task(self._poll_once())
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            await asyncio.sleep(self.interval)

    async def _poll_once(self) -> None:
        try:
            await self.refresh()
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            LOGGER.exception("Unexpected error while refreshing scan history")

    async def _tick_forever(self) -> None:
        while True:
            await asyncio.sleep(self.tick_interval)
            if self._mounted and self.on_tick is not None:
                try:
                    await _maybe_await(self.on_tick(self))
                except asyncio.CancelledError:
                    raise
                except Exception:  # noqa: BLE001
                    LOGGER.exception("Tick callback failed")

    async def refresh(self) -> bool:
        """Fetch the full history once. Returns True if the response was applied."""
        self._issued_seq += 1
        seq = self._issued_seq
        generation = self._generation
        try:
            jobs = await self.client.list_history()
        except ScanApiError as exc:
            if generation != self._generation or seq < self._applied_seq:
                return False
            self._error = exc.message
            self._loading = False
            LOGGER.warning("History refresh #%d failed: %s", seq, exc.message)
            if self.on_error is not None:
                await _maybe_await(self.on_error(self))
            return False

        if generation != self._generation:
            LOGGER.debug("Discarding history response #%d: view unmounted", seq)
            return False
        if seq <= self._applied_seq:
            LOGGER.debug("Discarding stale history response #%d (applied #%d)", seq, self._applied_seq)
            return False

        self._applied_seq = seq
        self._jobs = self._dedupe(jobs)
        self._error = None
        self._loading = False
        self.estimator.observe_all(self._jobs)
        if self.on_change is not None:
            await _maybe_await(self.on_change(self))
        return True

    @staticmethod
    def _dedupe(jobs: list[ScanJob]) -> list[ScanJob]:
        seen: set[str] = set()
        unique = []
        for job in jobs:
            if job.scan_id in seen:
                LOGGER.warning("Server returned scan %s more than once; keeping the first entry", job.scan_id)
                continue
            seen.add(job.scan_id)
            unique.append(job)
        return unique

    async def cancel(self, scan_id: str) -> None:
        job = self.get(scan_id)
        if job is not None and not job.is_active:
            raise InvalidJobStateError(f"Scan {scan_id} is {job.status} and cannot be cancelled")
        try:
            await self.client.cancel_scan(scan_id)
        except WriteThroughError:
            LOGGER.error("Cancel of scan %s failed", scan_id)
            raise
        LOGGER.info("Cancel requested for scan %s", scan_id)

    async def delete(self, scan_id: str, confirm: ConfirmCallback) -> bool:
        if not await _maybe_await(confirm(scan_id)):
            LOGGER.info("Delete of scan %s not confirmed", scan_id)
            return False
        try:
            await self.client.delete_scan(scan_id)
        except WriteThroughError:
            LOGGER.error("Delete of scan %s failed", scan_id)
            raise
        LOGGER.info("Deleted scan %s", scan_id)
        await self.refresh()
        return True
