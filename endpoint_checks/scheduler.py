from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable


LOGGER = logging.getLogger("endpoint-monitor")


class RunMode(enum.Enum):
    NOW = "now"
    IF_NECESSARY = "if_necessary"
    SCHEDULE_ONLY = "schedule_only"


@dataclass
class ScheduleState:
    last_cycle_run_at_utc: float | None = None
    active_worker: asyncio.Task[None] | None = None


def should_run_now(mode: RunMode, last_cycle_run_at: float | None, *, now: float, interval: float) -> bool:
    if mode is RunMode.NOW:
        return True
    if mode is RunMode.IF_NECESSARY:
        return last_cycle_run_at is None or (float(now) - float(last_cycle_run_at)) >= float(interval)
    return False


class Scheduler:
    """
    Single entry point (trigger) for every event source: the periodic timer,
    network-available events and explicit requests.

    At most one cycle runs at a time. A trigger that cannot start a cycle only
    makes sure the next periodic run is armed, and every finished cycle
    re-arms it, whether or not the cycle raised.
    """

    def __init__(
        self,
        run_cycle: Callable[[], Awaitable[object]],
        state: ScheduleState,
        *,
        interval_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.run_cycle = run_cycle
        self.state = state
        self.interval_seconds = float(interval_seconds)
        self.clock = clock
        self._timer: asyncio.TimerHandle | None = None
        self._stopping = False

    @property
    def next_run_scheduled(self) -> bool:
        return self._timer is not None

    def trigger(self, mode: RunMode) -> bool:
        """Returns True when this call started a cycle."""
        run_now = should_run_now(
            mode,
            self.state.last_cycle_run_at_utc,
            now=self.clock(),
            interval=self.interval_seconds,
        )
        if run_now and self.state.active_worker is None and not self._stopping:
            LOGGER.debug("Starting check cycle mode=%s", mode.value)
            self.state.active_worker = asyncio.get_running_loop().create_task(self._work())
            return True

        if run_now and self.state.active_worker is not None:
            LOGGER.info("Check cycle already running; trigger mode=%s only ensures scheduling", mode.value)
        self.ensure_scheduled()
        return False

    def ensure_scheduled(self) -> None:
        if self._stopping or self._timer is not None:
            return
        self._arm_timer()

    def _arm_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(self.interval_seconds, self._on_timer)
        LOGGER.debug("Next check cycle scheduled in_seconds=%s", self.interval_seconds)

    def _on_timer(self) -> None:
        self._timer = None
        self.trigger(RunMode.NOW)

    async def _work(self) -> None:
        try:
            await self.run_cycle()
        except Exception:
            LOGGER.exception("Check cycle crashed")
        finally:
            self.state.active_worker = None
            if not self._stopping:
                self._arm_timer()

    async def stop(self) -> None:
        """Stop scheduling and wait for an in-flight cycle to finish."""
        self._stopping = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        worker = self.state.active_worker
        if worker is not None:
            await asyncio.shield(worker)
