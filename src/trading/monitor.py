from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from src.ports.exchange import ExchangeClient

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 5000

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


class OrderMonitorStalled(Exception):
    """Raised when open orders are still present after the configured maximum wait."""

    def __init__(self, market_id: str, waited_seconds: float, open_orders: int):
        super().__init__(
            f"Market {market_id} still has {open_orders} open order(s) after {waited_seconds:.1f}s"
        )
        self.market_id = market_id
        self.waited_seconds = waited_seconds
        self.open_orders = open_orders


class OrderMonitor:
    def __init__(self, exchange: ExchangeClient, *, sleep: Sleep = asyncio.sleep, clock: Clock = time.monotonic):
        self.exchange = exchange
        self._sleep = sleep
        self._clock = clock

    async def await_drain(
        self,
        market_id: str,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        max_wait_seconds: float | None = None,
    ) -> float:
        """
        Suspend until the market has no open orders; return the elapsed seconds.

        The open-order set is queried once per interval, starting one interval after
        the call. There is no backoff. Without `max_wait_seconds` the wait is
        unbounded: an order that never fills blocks here rather than being abandoned
        or duplicated. Query errors propagate to the caller.
        """
        if poll_interval_ms <= 0:
            raise ValueError(f"poll_interval_ms must be positive; got {poll_interval_ms}")

        logger.info("Waiting until order succeeds...")
        started = self._clock()
        interval = poll_interval_ms / 1000.0
        while True:
            await self._sleep(interval)
            orders = await self.exchange.get_open_orders(market_id)
            elapsed = self._clock() - started
            if not orders:
                logger.info("Time passed: %.3f seconds", elapsed)
                return elapsed
            logger.debug("%d open order(s) on %s after %.1fs", len(orders), market_id, elapsed)
            if max_wait_seconds is not None and elapsed >= max_wait_seconds:
                raise OrderMonitorStalled(market_id, elapsed, len(orders))
