from __future__ import annotations

import asyncio
import logging

import httpx

from endpoint_checks.probe import DEFAULT_CONNECT_TIMEOUT_SECONDS, DEFAULT_READ_TIMEOUT_SECONDS, probe_url
from endpoint_checks.results import CheckResult, ProbeOutcome, TargetConfig, evaluate_outcome


LOGGER = logging.getLogger("endpoint-monitor")


async def _safe_probe(
    target: TargetConfig,
    client: httpx.AsyncClient,
    *,
    connect_timeout: float,
    read_timeout: float,
) -> ProbeOutcome:
    try:
        return await probe_url(client, target.url, connect_timeout=connect_timeout, read_timeout=read_timeout)
    except Exception as exc:
        err = f"{type(exc).__name__}: {exc}"
        LOGGER.exception("Probe crashed target=%s error=%s", target.id, err)
        return ProbeOutcome(status_code=0, body="", error_message=err)


async def run_checks(
    targets: list[TargetConfig],
    client: httpx.AsyncClient,
    *,
    timestamp: int,
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
    read_timeout: float = DEFAULT_READ_TIMEOUT_SECONDS,
) -> list[CheckResult]:
    """
    Probe every target concurrently (one task each) and wait for all of them.

    All results share the cycle timestamp. If the caller is cancelled the probes
    keep running to completion; their results are simply never returned.
    """
    if not targets:
        return []

    tasks = [
        asyncio.create_task(
            _safe_probe(target, client, connect_timeout=connect_timeout, read_timeout=read_timeout)
        )
        for target in targets
    ]
    outcomes = await asyncio.shield(asyncio.gather(*tasks))

    results: list[CheckResult] = []
    for target, outcome in zip(targets, outcomes):
        result = evaluate_outcome(target, outcome, timestamp=timestamp)
        LOGGER.debug(
            "Probe result target=%s status_code=%s succeeded=%s error=%s",
            target.id,
            outcome.status_code,
            result.succeeded,
            outcome.error_message,
        )
        results.append(result)
    return results
