from __future__ import annotations

import asyncio
import logging
import socket
from typing import Callable


LOGGER = logging.getLogger("endpoint-monitor")

# A UDP connect() only selects a route; no packet leaves the host.
ROUTE_PROBE_ADDRESS = ("192.0.2.1", 9)


def has_network() -> bool:
    """True when the host has a route out (i.e. an active network)."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect(ROUTE_PROBE_ADDRESS)
        return True
    except OSError:
        return False
    finally:
        sock.close()


class NetworkWatcher:
    """
    Polls a network check and calls on_available on every
    unavailable -> available transition.
    """

    def __init__(
        self,
        on_available: Callable[[], None],
        *,
        poll_seconds: float = 30.0,
        check: Callable[[], bool] = has_network,
    ) -> None:
        self.on_available = on_available
        self.poll_seconds = float(poll_seconds)
        self.check = check
        self._last_available: bool | None = None
        self._task: asyncio.Task[None] | None = None

    def poll_once(self) -> bool:
        available = bool(self.check())
        previous = self._last_available
        self._last_available = available
        if available and previous is False:
            LOGGER.info("New network available, triggering check cycle")
            self.on_available()
        elif not available and previous is not False:
            LOGGER.warning("Network unavailable")
        return available

    async def _run(self) -> None:
        while True:
            try:
                self.poll_once()
            except Exception:
                LOGGER.exception("Network check crashed")
            await asyncio.sleep(self.poll_seconds)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
