from __future__ import annotations

import logging
import time
from typing import Callable, Protocol

import httpx

from endpoint_checks.alerting import AlertDebouncer, NotificationSink
from endpoint_checks.config import MonitorSettings
from endpoint_checks.executor import run_checks
from endpoint_checks.network import has_network
from endpoint_checks.results import TargetConfig, apply_reference_gate
from endpoint_checks.scheduler import ScheduleState
from endpoint_checks.status import StatusSummary, derive_status
from endpoint_checks.store import ResultStore


LOGGER = logging.getLogger("endpoint-monitor")


class TargetSource(Protocol):
    def list_targets(self) -> list[TargetConfig]: ...


class CheckCycle:
    """
    One monitoring round: purge old history, probe every target, gate the
    batch on the reference targets, persist it, then derive status and feed
    the alert debouncer.
    """

    def __init__(
        self,
        *,
        settings: MonitorSettings,
        target_source: TargetSource,
        store: ResultStore,
        http_client: httpx.AsyncClient,
        sink: NotificationSink,
        debouncer: AlertDebouncer,
        schedule_state: ScheduleState,
        network_available: Callable[[], bool] = has_network,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.target_source = target_source
        self.store = store
        self.http_client = http_client
        self.sink = sink
        self.debouncer = debouncer
        self.schedule_state = schedule_state
        self.network_available = network_available
        self.clock = clock

    async def run(self) -> StatusSummary | None:
        cycle_started = self.clock()
        if self.network_available():
            self.schedule_state.last_cycle_run_at_utc = cycle_started
            await self.check_cycle_work()
        else:
            LOGGER.info("No network available, skipping check cycle")
        summary = await self.derive_notification_status()
        LOGGER.info("Cycle complete elapsed_seconds=%s", round(self.clock() - cycle_started, 3))
        return summary

    async def check_cycle_work(self) -> int:
        """Returns the number of results persisted."""
        LOGGER.info("Running check cycle")

        try:
            purged = self.store.delete_older_than(self.settings.purge_older_than, now=self.clock())
            if purged:
                LOGGER.info("Purged old check results count=%s", purged)
        except Exception:
            LOGGER.exception("Failed to purge old check results")

        timestamp = int(self.clock())
        targets = self.target_source.list_targets()
        if not targets:
            LOGGER.warning("No targets configured; nothing to check")
            return 0
        targets_by_id = {t.id: t for t in targets}

        results = await run_checks(
            targets,
            self.http_client,
            timestamp=timestamp,
            connect_timeout=self.settings.connect_timeout_seconds,
            read_timeout=self.settings.read_timeout_seconds,
        )
        gated = apply_reference_gate(results, targets_by_id, threshold=self.settings.reference_success_ratio)

        inserted = 0
        for result in gated:
            target = targets_by_id[result.target_id]
            level = logging.INFO if result.succeeded else logging.WARNING
            LOGGER.log(
                level,
                "Check result target=%s url=%s succeeded=%s skip=%s status_code_ok=%s content_ok=%s error=%s",
                target.id,
                target.url,
                result.succeeded,
                result.skip,
                result.status_code_ok.value,
                result.content_ok.value,
                result.error_message,
            )
            try:
                self.store.insert(result)
                inserted += 1
            except Exception:
                LOGGER.exception("Failed to store check result target=%s", target.id)
        return inserted

    async def derive_notification_status(self) -> StatusSummary | None:
        now = self.clock()
        targets = self.target_source.list_targets()
        try:
            results = self.store.query_by_period(self.settings.status_latest_period, now=now)
        except Exception:
            LOGGER.exception("Failed to query check results; skipping status derivation")
            return None

        summary = derive_status(targets, results, now=now, stale_after=self.settings.status_stale_after)
        try:
            await self.sink.update_status(summary.failed_checks, summary.stale_checks)
            decision = await self.debouncer.update(summary.failed_checks, summary.stale_checks, now=now)
        except Exception:
            LOGGER.exception("Failed to publish notification status")
            return summary

        LOGGER.info(
            "Status derived failed=%s stale=%s targets=%s alert=%s",
            summary.failed_checks,
            summary.stale_checks,
            len(summary.targets),
            decision.value,
        )
        return summary
