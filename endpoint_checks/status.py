from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from endpoint_checks.config import MonitorSettings
from endpoint_checks.results import CheckResult, TargetConfig
from endpoint_checks.timeline import TimelineSegment, build_timeline


@dataclass(frozen=True)
class TargetStatus:
    target: TargetConfig
    latest: CheckResult | None
    failed: bool
    stale: bool


@dataclass(frozen=True)
class StatusSummary:
    failed_checks: int
    stale_checks: int
    targets: list[TargetStatus] = field(default_factory=list)


@dataclass(frozen=True)
class TargetTimeline:
    target: TargetConfig
    segments: list[TimelineSegment]
    latest: TimelineSegment | None
    stale: bool
    availability_percent: float | None


def _usable_by_target(results: Iterable[CheckResult]) -> dict[str, list[CheckResult]]:
    out: dict[str, list[CheckResult]] = {}
    for result in results:
        if result.skip:
            continue
        out.setdefault(result.target_id, []).append(result)
    return out


def latest_usable_result(results: Iterable[CheckResult], target_id: str) -> CheckResult | None:
    latest: CheckResult | None = None
    for result in results:
        if result.skip or result.target_id != target_id:
            continue
        if latest is None or result.timestamp_utc > latest.timestamp_utc:
            latest = result
    return latest


def derive_status(
    targets: Iterable[TargetConfig],
    results: Iterable[CheckResult],
    *,
    now: float,
    stale_after: float,
) -> StatusSummary:
    """
    Classify each target by its latest non-skipped result.

    failed: the latest result exists and did not succeed.
    stale: there is no such result, or it is at least stale_after seconds old.
    A missing result makes a target stale but never failed.
    """
    by_target = _usable_by_target(results)

    failed_checks = 0
    stale_checks = 0
    statuses: list[TargetStatus] = []
    for target in targets:
        latest = latest_usable_result(by_target.get(target.id, []), target.id)
        failed = latest is not None and not latest.succeeded
        stale = latest is None or (float(now) - float(latest.timestamp_utc)) >= float(stale_after)
        if failed:
            failed_checks += 1
        if stale:
            stale_checks += 1
        statuses.append(TargetStatus(target=target, latest=latest, failed=failed, stale=stale))

    return StatusSummary(failed_checks=failed_checks, stale_checks=stale_checks, targets=statuses)


def compute_availability(results: list[CheckResult]) -> tuple[int, int, float | None]:
    """
    Returns (total, ok_count, ok_percent_or_None_if_total_0)
    """
    total = len(results)
    if total <= 0:
        return 0, 0, None
    ok_count = sum(1 for r in results if r.succeeded)
    return total, ok_count, (ok_count / float(total)) * 100.0


def build_status_list(
    targets: Iterable[TargetConfig],
    results: Iterable[CheckResult],
    *,
    now: float,
    settings: MonitorSettings,
) -> list[TargetTimeline]:
    by_target = _usable_by_target(results)

    out: list[TargetTimeline] = []
    for target in sorted(targets, key=lambda t: t.url):
        history = by_target.get(target.id, [])
        segments = list(
            build_timeline(
                history,
                cycle_interval=settings.check_cycle_interval,
                retrograde_validity=settings.retrograde_validity,
            )
        )
        latest = segments[-1] if segments else None
        stale = latest is None or (float(now) - float(latest.end)) >= float(settings.status_stale_after)
        _total, _ok, availability = compute_availability(history)
        out.append(
            TargetTimeline(
                target=target,
                segments=segments,
                latest=latest,
                stale=stale,
                availability_percent=availability,
            )
        )
    return out
