from __future__ import annotations

import httpx

from endpoint_checks.results import ProbeOutcome


DEFAULT_CONNECT_TIMEOUT_SECONDS = 30.0
DEFAULT_READ_TIMEOUT_SECONDS = 30.0

# Error statuses that still count as a served response (no error recorded).
NOT_FOUND_STATUS_CODES = frozenset({404, 410})


def _describe_error(exc: BaseException) -> str:
    msg = str(exc or "").strip()
    if not msg:
        return type(exc).__name__
    return f"{type(exc).__name__}: {msg}"


def _decode_body(raw: bytes) -> str:
    return (raw or b"").decode("utf-8", errors="replace")


async def probe_url(
    client: httpx.AsyncClient,
    url: str,
    *,
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
    read_timeout: float = DEFAULT_READ_TIMEOUT_SECONDS,
) -> ProbeOutcome:
    """
    Single GET against url. Never raises: transport failures end up in
    ProbeOutcome.error_message, with status_code=0 when no response arrived.
    """
    timeout = httpx.Timeout(read_timeout, connect=connect_timeout)
    try:
        async with client.stream("GET", url, follow_redirects=True, timeout=timeout) as resp:
            status_code = resp.status_code
            error: str | None = None
            if status_code >= 400 and status_code not in NOT_FOUND_STATUS_CODES:
                error = f"Server returned HTTP response code: {status_code}"
            try:
                body = _decode_body(await resp.aread())
            except httpx.HTTPError as e:
                # Status line arrived but the body did not.
                return ProbeOutcome(status_code=status_code, body="", error_message=_describe_error(e))
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        return ProbeOutcome(status_code=0, body="", error_message=_describe_error(e))

    return ProbeOutcome(status_code=status_code, body=body, error_message=error)
