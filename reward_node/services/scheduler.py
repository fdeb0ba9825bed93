"""Scheduler loop: advance epoch lifecycles and pay out closed epochs."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from reward_node.entities.distribution import AbortReason, DistributionResult, RunStatus
from reward_node.entities.epoch import EpochStatus
from reward_node.services.distribution import DistributionEngine
from reward_node.services.epochs import EpochService


class DistributionScheduler:
    def __init__(
        self,
        epoch_service: EpochService,
        engine: DistributionEngine,
        interval_seconds: float = 60,
        auto_distribute: bool = True,
        wait_for_signal: Callable[[float], Awaitable[Any]] | None = None,
        repositories: list[Any] | None = None,
    ):
        self.epoch_service = epoch_service
        self.engine = engine
        self.interval_seconds = interval_seconds
        self.auto_distribute = auto_distribute
        self._wait_for_signal = wait_for_signal
        self._repositories = repositories or []
        # Epochs whose stats had no participants; not retried until restart.
        self._no_participants: set[str] = set()
        self.logger = logging.getLogger(__name__)
        self.stop_event = asyncio.Event()

    async def run(self) -> None:
        self.logger.info(
            "distribution scheduler started (interval=%ss, auto_distribute=%s)",
            self.interval_seconds, self.auto_distribute,
        )
        while not self.stop_event.is_set():
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.logger.exception("distribution loop error: %s", exc)
                self._rollback_repositories()
            await self._wait()

    async def run_once(self, now: datetime | None = None) -> list[DistributionResult]:
        now = now or datetime.now(timezone.utc)

        for epoch in self.epoch_service.tick(now):
            self.logger.info("epoch %s is now %s", epoch.id, epoch.status)

        if not self.auto_distribute:
            return []

        results: list[DistributionResult] = []
        pending = self.epoch_service.epoch_repository.find(status=EpochStatus.CLOSED, distributed=False)
        for epoch in sorted(pending, key=lambda e: e.sequence):
            if epoch.id in self._no_participants:
                continue
            result = await self.engine.distribute(epoch.id)
            results.append(result)
            if result.abort_reason == AbortReason.NO_PARTICIPANTS:
                self._no_participants.add(epoch.id)
            elif result.status == RunStatus.ABORTED:
                self.logger.warning(
                    "epoch=%s distribution aborted (%s); will retry next cycle",
                    epoch.id, result.abort_reason,
                )
        return results

    async def shutdown(self) -> None:
        self.stop_event.set()

    async def _wait(self) -> None:
        """Wait for an epoch-closed signal, the interval, or shutdown."""
        timeout = float(self.interval_seconds)
        if self._wait_for_signal is not None:
            try:
                await self._race_stop(self._wait_for_signal(timeout))
                return
            except Exception as exc:
                self.logger.warning("signal wait failed, falling back to polling: %s", exc)
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass

    async def _race_stop(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        stop = asyncio.ensure_future(self.stop_event.wait())
        done, pending = await asyncio.wait({task, stop}, return_when=asyncio.FIRST_COMPLETED)
        for p in pending:
            p.cancel()
            try:
                await p
            except asyncio.CancelledError:
                pass
        if task in done:
            task.result()

    def _rollback_repositories(self) -> None:
        for repo in self._repositories:
            rollback = getattr(repo, "rollback", None)
            if callable(rollback):
                try:
                    rollback()
                except Exception as exc:
                    self.logger.warning("Rollback failed for %s: %s", type(repo).__name__, exc)
