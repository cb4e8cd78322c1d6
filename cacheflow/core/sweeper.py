"""Background reclamation of expired local entries.

Each tick deletes local entries past their expiry (taking only the lock of
the key being deleted), releases their size from the recorder and, when a
Redis backend is configured, reconciles the remote memory figure.
A backend failure aborts the tick but never the task.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from cacheflow.core.dispatcher import KeyedLock
from cacheflow.core.models import Clock, epoch_millis
from cacheflow.core.recorder import MetricsRecorder
from cacheflow.core.store import EntryStore, RedisEntryStore
from cacheflow.utils.exceptions import BackendError, log_exception
from cacheflow.utils.metrics import MET_ERRORS_TOTAL, MET_SWEEP_ERRORS, MET_SWEEP_REMOVED

log = logging.getLogger(__name__)

__all__ = ["ExpirySweeper", "SweepResult"]


@dataclass(frozen=True, slots=True)
class SweepResult:
    removed: tuple[str, ...] = ()
    released_bytes: int = 0
    remote_bytes: int | None = None
    failed: bool = False


class ExpirySweeper:
    def __init__(
        self,
        recorder: MetricsRecorder,
        *,
        locks: KeyedLock,
        local: EntryStore | None = None,
        remote: RedisEntryStore | None = None,
        interval_seconds: float = 10.0,
        clock: Clock = epoch_millis,
    ) -> None:
        self._recorder = recorder
        self._locks = locks
        self._local = local
        self._remote = remote
        self._interval = interval_seconds
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._periodic_sweep(), name="cacheflow-sweeper")
        log.debug("Expiry sweeper started (every %.1fs)", self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.debug("Expiry sweeper stopped")

    async def run_once(self) -> SweepResult:
        """Run a single tick; backend errors are logged and end the tick early."""
        removed: list[str] = []
        released = 0
        remote_bytes: int | None = None
        try:
            if self._local is not None:
                released = await self._sweep_local(removed)
            if self._remote is not None:
                remote_bytes = await self._remote.memory_used()
                await self._recorder.set_remote_bytes(remote_bytes)
        except BackendError as exc:
            MET_SWEEP_ERRORS.inc()
            MET_ERRORS_TOTAL.labels(type=exc.code, component="sweeper").inc()
            log_exception(exc, level=logging.WARNING, logger=log)
            return SweepResult(tuple(removed), released, remote_bytes, failed=True)

        if removed:
            log.info("Swept %d expired entries (%d bytes)", len(removed), released)
        return SweepResult(tuple(removed), released, remote_bytes)

    async def _sweep_local(self, removed: list[str]) -> int:
        assert self._local is not None
        now = self._clock()
        expired = [key async for key, entry in self._local.scan() if entry.is_expired(now)]
        released = 0
        for key in expired:
            async with self._locks.hold(key):
                # renewed by a write since the scan
                if await self._local.get(key) is not None:
                    continue
                if not await self._local.delete(key):
                    continue
                released += await self._recorder.release_size(key)
            removed.append(key)
            MET_SWEEP_REMOVED.inc()
        return released

    async def _periodic_sweep(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._interval)
                try:
                    await self.run_once()
                except Exception as exc:
                    MET_SWEEP_ERRORS.inc()
                    MET_ERRORS_TOTAL.labels(type=type(exc).__name__, component="sweeper").inc()
                    log.exception("Expiry sweep failed; retrying next tick")
        except asyncio.CancelledError:
            return
