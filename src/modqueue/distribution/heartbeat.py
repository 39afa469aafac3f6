"""Keepalive enforcement for long-lived client connections.

Clients send ``{"type": "ping"}`` every ``interval`` seconds.  The server
waits at most ``interval`` seconds for each inbound frame; every silent
interval counts as a missed ping, any frame resets the count, and
``max_missed`` consecutive misses raise :exc:`ConnectionTimedOut` so the
caller can close the socket and run the normal disconnect path.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class ConnectionTimedOut(Exception):
    """Raised when a client misses too many consecutive keepalive pings."""


class KeepaliveTracker:
    """Counts consecutive silent intervals on one connection.

    Parameters
    ----------
    interval:
        Seconds to wait for each inbound frame.
    max_missed:
        Consecutive silent intervals tolerated before giving up.
    label:
        Connection identity used in log messages.
    """

    def __init__(self, interval: float = 10.0, max_missed: int = 3, label: str = "client") -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive; got {interval}")
        if max_missed < 1:
            raise ValueError(f"max_missed must be >= 1; got {max_missed}")
        self.interval = interval
        self.max_missed = max_missed
        self.label = label
        self.missed = 0

    async def receive(self, receive: Callable[[], Awaitable[str]]) -> str:
        """Await the next inbound frame from *receive*, enforcing the keepalive.

        Raises
        ------
        ConnectionTimedOut
            After ``max_missed`` consecutive intervals with no frame.
        """
        while True:
            try:
                message = await asyncio.wait_for(receive(), timeout=self.interval)
            except asyncio.TimeoutError:
                self.missed += 1
                logger.debug("%s missed ping %d/%d", self.label, self.missed, self.max_missed)
                if self.missed >= self.max_missed:
                    logger.info("%s missed %d pings; closing", self.label, self.missed)
                    raise ConnectionTimedOut(self.label) from None
                continue
            self.missed = 0
            return message
