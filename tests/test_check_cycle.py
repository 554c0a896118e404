from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from endpoint_checks.alerting import AlertDebouncer, AlertState
from endpoint_checks.config import MonitorSettings
from endpoint_checks.cycle import CheckCycle
from endpoint_checks.results import CheckResult, TargetConfig, TriState
from endpoint_checks.scheduler import ScheduleState
from endpoint_checks.store import ResultStore


NOW = 1_700_000_000.0


class _StaticSource:
    def __init__(self, targets: list[TargetConfig]) -> None:
        self.targets = targets

    def list_targets(self) -> list[TargetConfig]:
        return list(self.targets)


class _RecordingSink:
    def __init__(self) -> None:
        self.events: list[tuple] = []

    async def raise_alert(self, failed_checks: int, stale_checks: int) -> None:
        self.events.append(("raise", failed_checks, stale_checks))

    async def clear(self) -> None:
        self.events.append(("clear",))

    async def update_status(self, failed_checks: int | None, stale_checks: int | None) -> None:
        self.events.append(("status", failed_checks, stale_checks))


class _FlakyStore(ResultStore):
    def __init__(self, db_path: str, *, fail_insert_for: str | None = None, fail_purge: bool = False) -> None:
        super().__init__(db_path)
        self.fail_insert_for = fail_insert_for
        self.fail_purge = fail_purge

    def insert(self, result: CheckResult) -> int:
        if result.target_id == self.fail_insert_for:
            raise RuntimeError("disk full")
        return super().insert(result)

    def delete_older_than(self, age_seconds: float, *, now: float | None = None) -> int:
        if self.fail_purge:
            raise RuntimeError("database is locked")
        return super().delete_older_than(age_seconds, now=now)


def _settings(tmp_path: Path) -> MonitorSettings:
    return MonitorSettings(
        check_cycle_interval=60,
        purge_older_than=3600,
        status_latest_period=3600,
        status_stale_after=600,
        alert_norepeat=3600,
        reference_success_ratio=0.5,
        retrograde_validity=600,
        connect_timeout_seconds=2.0,
        read_timeout_seconds=2.0,
        db_path=str(tmp_path / "results.db"),
    )


def _cycle(
    tmp_path: Path,
    client: httpx.AsyncClient,
    targets: list[TargetConfig],
    *,
    store: ResultStore | None = None,
    network: bool = True,
) -> tuple[CheckCycle, ResultStore, _RecordingSink, ScheduleState, AlertState]:
    settings = _settings(tmp_path)
    store = store or ResultStore(settings.db_path)
    sink = _RecordingSink()
    schedule_state = ScheduleState()
    alert_state = AlertState()
    cycle = CheckCycle(
        settings=settings,
        target_source=_StaticSource(targets),
        store=store,
        http_client=client,
        sink=sink,
        debouncer=AlertDebouncer(alert_state, sink, norepeat_seconds=settings.alert_norepeat),
        schedule_state=schedule_state,
        network_available=lambda: network,
        clock=lambda: NOW,
    )
    return cycle, store, sink, schedule_state, alert_state


@pytest.mark.asyncio
async def test_cycle_persists_results_and_raises_alert(tmp_path: Path, local_server_base_url: str) -> None:
    targets = [
        TargetConfig(id="ref", url=f"{local_server_base_url}/ok", expected_status_code=200, is_reference=True),
        TargetConfig(id="down", url=f"{local_server_base_url}/unavailable", expected_status_code=200),
        TargetConfig(id="content", url=f"{local_server_base_url}/ok", expected_content="Everything is fine"),
    ]
    async with httpx.AsyncClient() as client:
        cycle, store, sink, schedule_state, alert_state = _cycle(tmp_path, client, targets)
        try:
            summary = await cycle.run()
            rows = {r.target_id: r for r in store.query_all()}
        finally:
            store.close()

    assert summary is not None
    assert summary.failed_checks == 1
    assert summary.stale_checks == 0
    assert schedule_state.last_cycle_run_at_utc == NOW
    assert alert_state.last_alert_raised_at_utc == NOW

    assert set(rows) == {"ref", "down", "content"}
    assert all(r.timestamp_utc == int(NOW) for r in rows.values())
    assert all(r.skip is False for r in rows.values())
    assert rows["down"].status_code_ok is TriState.FALSE
    assert rows["down"].succeeded is False
    assert rows["content"].content_ok is TriState.TRUE
    assert rows["content"].status_code_ok is TriState.NOT_APPLICABLE
    assert rows["content"].succeeded is True

    assert sink.events == [("status", 1, 0), ("raise", 1, 0)]


@pytest.mark.asyncio
async def test_cycle_skips_targets_when_references_fail(
    tmp_path: Path, local_server_base_url: str, closed_port_url: str
) -> None:
    targets = [
        TargetConfig(id="ref", url=closed_port_url, is_reference=True),
        TargetConfig(id="down", url=f"{local_server_base_url}/unavailable"),
    ]
    async with httpx.AsyncClient() as client:
        cycle, store, sink, _schedule_state, _alert_state = _cycle(tmp_path, client, targets)
        try:
            summary = await cycle.run()
            rows = {r.target_id: r for r in store.query_all()}
        finally:
            store.close()

    assert rows["ref"].skip is False
    assert rows["ref"].succeeded is False
    assert rows["down"].skip is True
    assert summary is not None
    by_id = {s.target.id: s for s in summary.targets}
    # The skipped target has no usable evidence: stale, not failed.
    assert by_id["down"].failed is False
    assert by_id["down"].stale is True
    assert by_id["ref"].failed is True


@pytest.mark.asyncio
async def test_cycle_without_network_only_derives_status(tmp_path: Path, local_server_base_url: str) -> None:
    targets = [TargetConfig(id="a", url=f"{local_server_base_url}/ok")]
    async with httpx.AsyncClient() as client:
        cycle, store, sink, schedule_state, _alert_state = _cycle(tmp_path, client, targets, network=False)
        try:
            summary = await cycle.run()
            rows = store.query_all()
        finally:
            store.close()

    assert rows == []
    assert schedule_state.last_cycle_run_at_utc is None
    assert summary is not None
    assert summary.failed_checks == 0
    assert summary.stale_checks == 1
    assert sink.events == [("status", 0, 1), ("clear",)]


@pytest.mark.asyncio
async def test_cycle_with_no_targets_is_noop(tmp_path: Path) -> None:
    async with httpx.AsyncClient() as client:
        cycle, store, sink, _schedule_state, _alert_state = _cycle(tmp_path, client, [])
        try:
            assert await cycle.check_cycle_work() == 0
            summary = await cycle.run()
        finally:
            store.close()
    assert summary is not None
    assert (summary.failed_checks, summary.stale_checks) == (0, 0)


@pytest.mark.asyncio
async def test_store_failures_are_contained(tmp_path: Path, local_server_base_url: str) -> None:
    targets = [
        TargetConfig(id="a", url=f"{local_server_base_url}/ok"),
        TargetConfig(id="b", url=f"{local_server_base_url}/ok"),
    ]
    store = _FlakyStore(str(tmp_path / "flaky.db"), fail_insert_for="a", fail_purge=True)
    async with httpx.AsyncClient() as client:
        cycle, store, _sink, _schedule_state, _alert_state = _cycle(tmp_path, client, targets, store=store)
        try:
            inserted = await cycle.check_cycle_work()
            rows = store.query_all()
        finally:
            store.close()

    assert inserted == 1
    assert [r.target_id for r in rows] == ["b"]


@pytest.mark.asyncio
async def test_cycle_purges_old_results_first(tmp_path: Path, local_server_base_url: str) -> None:
    targets = [TargetConfig(id="a", url=f"{local_server_base_url}/ok")]
    async with httpx.AsyncClient() as client:
        cycle, store, _sink, _schedule_state, _alert_state = _cycle(tmp_path, client, targets)
        try:
            store.insert(
                CheckResult(
                    timestamp_utc=int(NOW) - 7200,
                    target_id="a",
                    status_code_ok=TriState.NOT_APPLICABLE,
                    content_ok=TriState.NOT_APPLICABLE,
                    error_message=None,
                    succeeded=True,
                )
            )
            await cycle.check_cycle_work()
            rows = store.query_all()
        finally:
            store.close()

    assert [r.timestamp_utc for r in rows] == [int(NOW)]
