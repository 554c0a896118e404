from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Protocol


LOGGER = logging.getLogger("endpoint-monitor")


class AlertDecision(enum.Enum):
    RAISED = "raised"
    SUPPRESSED = "suppressed"
    CLEARED = "cleared"


@dataclass
class AlertState:
    last_alert_raised_at_utc: float | None = None

    @property
    def alerting(self) -> bool:
        return self.last_alert_raised_at_utc is not None


class NotificationSink(Protocol):
    async def raise_alert(self, failed_checks: int, stale_checks: int) -> None: ...

    async def clear(self) -> None: ...

    async def update_status(self, failed_checks: int | None, stale_checks: int | None) -> None: ...


def build_status_text(failed_checks: int | None, stale_checks: int | None) -> str:
    if failed_checks is None or stale_checks is None:
        return "Monitoring starting up"
    if failed_checks == 0 and stale_checks == 0:
        return "All checks OK"
    if failed_checks > 0 and stale_checks > 0:
        return f"{failed_checks} failed, {stale_checks} stale checks"
    if failed_checks > 0:
        return f"{failed_checks} failed checks"
    return f"{stale_checks} stale checks"


def decide_alert(state: AlertState, failed_checks: int, *, now: float, norepeat_seconds: float) -> AlertDecision:
    if failed_checks <= 0:
        return AlertDecision.CLEARED
    last = state.last_alert_raised_at_utc
    if last is None or (float(now) - float(last)) > float(norepeat_seconds):
        return AlertDecision.RAISED
    return AlertDecision.SUPPRESSED


class AlertDebouncer:
    """
    Raises an alert on the first failing cycle and then at most once per
    norepeat window while failures persist. A cycle without failures clears
    the alert and resets the window.
    """

    def __init__(self, state: AlertState, sink: NotificationSink, *, norepeat_seconds: float) -> None:
        self.state = state
        self.sink = sink
        self.norepeat_seconds = float(norepeat_seconds)

    async def update(self, failed_checks: int, stale_checks: int, *, now: float) -> AlertDecision:
        decision = decide_alert(self.state, failed_checks, now=now, norepeat_seconds=self.norepeat_seconds)
        if decision is AlertDecision.RAISED:
            await self.sink.raise_alert(failed_checks, stale_checks)
            self.state.last_alert_raised_at_utc = float(now)
        elif decision is AlertDecision.CLEARED:
            await self.sink.clear()
            self.state.last_alert_raised_at_utc = None
        else:
            LOGGER.info(
                "Alert suppressed failed=%s stale=%s last_alert_ts=%s norepeat_seconds=%s",
                failed_checks,
                stale_checks,
                self.state.last_alert_raised_at_utc,
                self.norepeat_seconds,
            )
        return decision


class LoggingNotificationSink:
    async def raise_alert(self, failed_checks: int, stale_checks: int) -> None:
        LOGGER.warning("ALERT %s", build_status_text(failed_checks, stale_checks))

    async def clear(self) -> None:
        LOGGER.info("Alert cleared")

    async def update_status(self, failed_checks: int | None, stale_checks: int | None) -> None:
        LOGGER.info("Status %s", build_status_text(failed_checks, stale_checks))
