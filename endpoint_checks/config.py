from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from endpoint_checks.results import TargetConfig


LOGGER = logging.getLogger("endpoint-monitor")

DEFAULT_DB_PATH = "/data/endpoint-monitor.db"


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return str(default)
    s = str(raw).strip()
    return s if s else str(default)


def _coerce_float(value: Any, *, default: float) -> float:
    try:
        return float(value)
    except Exception:
        return float(default)


def _minutes(config: dict[str, Any], key: str, default_minutes: float) -> int:
    value = _coerce_float(config.get(key, default_minutes), default=default_minutes)
    return int(max(0.0, value) * 60)


@dataclass(frozen=True)
class MonitorSettings:
    # All durations in seconds.
    check_cycle_interval: int = 15 * 60
    purge_older_than: int = 7 * 24 * 60 * 60
    status_latest_period: int = 24 * 60 * 60
    status_stale_after: int = 60 * 60
    alert_norepeat: int = 60 * 60
    reference_success_ratio: float = 0.5
    retrograde_validity: int = 60 * 60
    connect_timeout_seconds: float = 30.0
    read_timeout_seconds: float = 30.0
    network_poll_seconds: float = 30.0
    db_path: str = field(default_factory=lambda: _env_str("ENDPOINT_MONITOR_DB_PATH", DEFAULT_DB_PATH))


def load_config(path: Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError("Config YAML must be a mapping")
    return data


def settings_from_config(config: dict[str, Any]) -> MonitorSettings:
    defaults = MonitorSettings()
    interval = _minutes(config, "check_cycle_interval_minutes", defaults.check_cycle_interval / 60)
    if interval <= 0:
        raise ValueError("check_cycle_interval_minutes must be > 0")

    ratio = _coerce_float(config.get("reference_success_ratio", defaults.reference_success_ratio), default=defaults.reference_success_ratio)
    if not (0.0 <= ratio <= 1.0):
        raise ValueError(f"reference_success_ratio must be within [0, 1], got {ratio}")

    db_path = str(config.get("db_path") or "").strip() or defaults.db_path
    # Deployment override wins over the YAML file.
    db_path = _env_str("ENDPOINT_MONITOR_DB_PATH", db_path)

    return MonitorSettings(
        check_cycle_interval=interval,
        purge_older_than=_minutes(config, "purge_older_than_minutes", defaults.purge_older_than / 60),
        status_latest_period=_minutes(config, "status_latest_period_minutes", defaults.status_latest_period / 60),
        status_stale_after=_minutes(config, "status_stale_after_minutes", defaults.status_stale_after / 60),
        alert_norepeat=_minutes(config, "alert_norepeat_minutes", defaults.alert_norepeat / 60),
        reference_success_ratio=ratio,
        retrograde_validity=_minutes(config, "retrograde_validity_minutes", defaults.retrograde_validity / 60),
        connect_timeout_seconds=max(
            0.1, _coerce_float(config.get("connect_timeout_seconds", 30.0), default=defaults.connect_timeout_seconds)
        ),
        read_timeout_seconds=max(
            0.1, _coerce_float(config.get("read_timeout_seconds", 30.0), default=defaults.read_timeout_seconds)
        ),
        network_poll_seconds=max(
            1.0, _coerce_float(config.get("network_poll_seconds", 30.0), default=defaults.network_poll_seconds)
        ),
        db_path=db_path,
    )


def _parse_expected_status_code(value: Any, idx: int) -> int | None:
    if value is None:
        return None
    try:
        code = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"targets[{idx}].expected_status_code must be an int, got {value!r}") from exc
    if not (100 <= code <= 599):
        raise ValueError(f"targets[{idx}].expected_status_code out of range: {code}")
    return code


def normalize_targets(targets_cfg: list[Any]) -> list[TargetConfig]:
    """
    Accepts plain URL strings or mappings with url/id/expected_status_code/
    expected_content/reference/enabled. Disabled entries are dropped.
    """
    targets: list[TargetConfig] = []
    for idx, entry in enumerate(targets_cfg):
        if isinstance(entry, str):
            url = entry.strip()
            if not url:
                raise ValueError(f"targets[{idx}] is empty")
            targets.append(TargetConfig(id=url, url=url))
            continue

        if not isinstance(entry, dict):
            raise ValueError(f"targets[{idx}] must be a string or mapping, got {type(entry).__name__}")

        url = str(entry.get("url") or "").strip()
        if not url:
            raise ValueError(f"targets[{idx}].url is required")

        if entry.get("enabled") is False:
            continue

        expected_content = entry.get("expected_content")
        targets.append(
            TargetConfig(
                id=str(entry.get("id") or "").strip() or url,
                url=url,
                expected_status_code=_parse_expected_status_code(entry.get("expected_status_code"), idx),
                expected_content=str(expected_content) if expected_content is not None else None,
                is_reference=bool(entry.get("reference", False)),
            )
        )

    seen: set[str] = set()
    for target in targets:
        if target.id in seen:
            raise ValueError(f"Duplicate target id: {target.id}")
        seen.add(target.id)

    return targets


def targets_from_config(config: dict[str, Any]) -> list[TargetConfig]:
    targets_cfg = config.get("targets", [])
    if targets_cfg is None:
        return []
    if not isinstance(targets_cfg, list):
        raise ValueError("Config 'targets' must be a list")
    return normalize_targets(targets_cfg)


class ConfigTargetSource:
    """
    Re-reads the YAML file on every call so target edits apply from the next
    cycle on. A broken file keeps the last good target list.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._last_good: list[TargetConfig] = []

    def list_targets(self) -> list[TargetConfig]:
        try:
            targets = targets_from_config(load_config(self.path))
        except Exception as exc:
            LOGGER.warning(
                "Failed to load targets path=%s error=%s; keeping last good list count=%s",
                self.path,
                exc,
                len(self._last_good),
            )
            return list(self._last_good)
        self._last_good = targets
        return list(targets)
