from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sqlite3
import sys
import time
from datetime import datetime, timezone
from pathlib import Path

import httpx

from endpoint_checks.alerting import (
    AlertDebouncer,
    AlertState,
    LoggingNotificationSink,
    NotificationSink,
    build_status_text,
)
from endpoint_checks.config import ConfigTargetSource, MonitorSettings, load_config, settings_from_config, targets_from_config
from endpoint_checks.cycle import CheckCycle
from endpoint_checks.network import NetworkWatcher
from endpoint_checks.scheduler import RunMode, ScheduleState, Scheduler
from endpoint_checks.status import TargetTimeline, build_status_list, derive_status
from endpoint_checks.store import ResultStore
from endpoint_checks.telegram import TelegramNotificationSink


LOGGER = logging.getLogger("endpoint-monitor")

USER_AGENT = "Endpoint Monitor"


def _build_sink(http_client: httpx.AsyncClient) -> NotificationSink:
    sink = TelegramNotificationSink.from_env(http_client)
    if sink is None:
        LOGGER.warning("Missing TELEGRAM_BOT_TOKEN and/or TELEGRAM_CHAT_ID; alerts go to the log only")
        return LoggingNotificationSink()
    return sink


def _format_ts(ts: float) -> str:
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def format_status_list(items: list[TargetTimeline], *, failed_checks: int, stale_checks: int) -> str:
    lines = [f"Status: {build_status_text(failed_checks, stale_checks)}"]
    for item in items:
        ref = " (reference)" if item.target.is_reference else ""
        if item.latest is None:
            state = "NO DATA"
        else:
            state = "OK" if item.latest.succeeded else f"FAILED ({item.latest.message})"
        if item.stale:
            state = f"{state}, STALE"
        availability = "-" if item.availability_percent is None else f"{item.availability_percent:.1f}%"
        lines.append(f"- {item.target.url}{ref}: {state} availability={availability}")
        for seg in item.segments:
            mark = "ok" if seg.succeeded else "!!"
            lines.append(f"    [{mark}] {_format_ts(seg.begin)} -> {_format_ts(seg.end)} {seg.message}")
    return "\n".join(lines) + "\n"


def print_status(config_path: Path) -> int:
    config = load_config(config_path)
    settings = settings_from_config(config)
    targets = targets_from_config(config)
    try:
        store = ResultStore(settings.db_path)
    except (OSError, sqlite3.Error) as e:
        print(f"Cannot open result store db_path={settings.db_path}: {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    try:
        now = time.time()
        results = store.query_by_period(settings.status_latest_period, now=now)
    finally:
        store.close()

    summary = derive_status(targets, results, now=now, stale_after=settings.status_stale_after)
    items = build_status_list(targets, results, now=now, settings=settings)
    print(format_status_list(items, failed_checks=summary.failed_checks, stale_checks=summary.stale_checks), end="")
    return 0


async def run_service(config_path: Path, once: bool) -> int:
    config = load_config(config_path)
    settings: MonitorSettings = settings_from_config(config)
    # Fail fast on a broken target list at startup; later cycles re-read it tolerantly.
    initial_targets = targets_from_config(config)
    target_source = ConfigTargetSource(config_path)

    LOGGER.info(
        "Starting endpoint monitor targets=%s reference_targets=%s interval_seconds=%s db_path=%s",
        [t.id for t in initial_targets],
        [t.id for t in initial_targets if t.is_reference],
        settings.check_cycle_interval,
        settings.db_path,
    )

    store = ResultStore(settings.db_path)
    schedule_state = ScheduleState()
    alert_state = AlertState()
    try:
        async with httpx.AsyncClient(headers={"User-Agent": USER_AGENT}) as http_client:
            sink = _build_sink(http_client)
            cycle = CheckCycle(
                settings=settings,
                target_source=target_source,
                store=store,
                http_client=http_client,
                sink=sink,
                debouncer=AlertDebouncer(alert_state, sink, norepeat_seconds=settings.alert_norepeat),
                schedule_state=schedule_state,
            )

            if once:
                await cycle.run()
                return 0

            scheduler = Scheduler(cycle.run, schedule_state, interval_seconds=settings.check_cycle_interval)
            watcher = NetworkWatcher(
                lambda: scheduler.trigger(RunMode.IF_NECESSARY),
                poll_seconds=settings.network_poll_seconds,
            )

            stop_event = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, stop_event.set)
                except (NotImplementedError, RuntimeError):
                    pass

            scheduler.trigger(RunMode.IF_NECESSARY)
            watcher.start()
            try:
                await stop_event.wait()
            finally:
                LOGGER.info("Shutting down; waiting for in-flight check cycle")
                await watcher.stop()
                await scheduler.stop()
            return 0
    finally:
        store.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="HTTP endpoint uptime monitor")
    parser.add_argument(
        "--config",
        default=os.getenv("ENDPOINT_MONITOR_CONFIG", str(Path(__file__).with_name("config.yaml"))),
        help="Path to YAML config",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="Run one check cycle and exit")
    mode.add_argument("--status", action="store_true", help="Print per-target status and timeline, then exit")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (INFO, WARNING, ...)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    # Avoid leaking secrets (Telegram token is embedded in the Telegram API URL).
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    if args.status:
        return print_status(Path(args.config))
    return asyncio.run(run_service(Path(args.config), once=bool(args.once)))


if __name__ == "__main__":
    raise SystemExit(main())
