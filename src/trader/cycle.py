from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from src.domain.models import ExecutionOutcome, Market, OrderRequest
from src.ports.exchange import ExchangeClient
from src.trading.balances import BalanceReader
from src.trading.monitor import DEFAULT_POLL_INTERVAL_MS, Clock, OrderMonitor, Sleep
from src.trading.orders import DEFAULT_LIMIT_PRICE, OrderSubmissionError, OrderSubmitter, buy_request, sell_request

logger = logging.getLogger(__name__)


class CycleState(str, Enum):
    INIT = "init"
    DRAIN_STALE = "drain_stale"
    BUY = "buy"
    MONITOR_BUY = "monitor_buy"
    SELL = "sell"
    MONITOR_SELL = "monitor_sell"


@dataclass
class CycleResult:
    iteration: int
    quote_before: Decimal
    bought: bool = False
    base_sold: Decimal | None = None
    quote_after: Decimal | None = None
    aborted_at: CycleState | None = None

    @property
    def completed(self) -> bool:
        return self.aborted_at is None and self.quote_after is not None

    @property
    def realized(self) -> Decimal | None:
        """Quote received over the cycle, measured against the pre-buy quote balance."""
        if self.quote_after is None:
            return None
        return self.quote_after - self.quote_before


class CycleController:
    """
    Buy/sell state machine for a single market.

    Every decision is made from balances and open orders read fresh from the exchange;
    the only local state is the current state and an iteration counter.
    """

    def __init__(
        self,
        exchange: ExchangeClient,
        market_id: str,
        *,
        limit_price: Decimal = DEFAULT_LIMIT_PRICE,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        max_wait_seconds: float | None = None,
        failure_backoff_seconds: float = 5.0,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ):
        self.exchange = exchange
        self.market_id = market_id
        self.limit_price = Decimal(str(limit_price))
        self.poll_interval_ms = int(poll_interval_ms)
        self.max_wait_seconds = max_wait_seconds
        self.failure_backoff_seconds = float(failure_backoff_seconds)
        self._sleep = sleep

        self.balances = BalanceReader(exchange)
        self.submitter = OrderSubmitter(exchange, market_id)
        self.monitor = OrderMonitor(exchange, sleep=sleep, clock=clock)

        self.state = CycleState.INIT
        self.iteration = 0
        self.market: Market | None = None

    async def start(self) -> Market:
        """Load market metadata and cancel any orders left over from a previous run."""
        self.state = CycleState.INIT
        self.market = await self.exchange.get_market(self.market_id)
        logger.info(
            "Loaded market %s (base=%s/%d, quote=%s/%d)",
            self.market_id,
            self.market.base_asset,
            self.market.base_decimals,
            self.market.quote_asset,
            self.market.quote_decimals,
        )

        self.state = CycleState.DRAIN_STALE
        orders = await self.exchange.get_open_orders(self.market_id)
        if orders:
            logger.info("Closing previous orders... (%d open)", len(orders))
            await self.exchange.cancel_all_orders(self.market_id)

        self.state = CycleState.BUY
        logger.info("Starting work process!")
        return self.market

    async def run(self, max_cycles: int | None = None) -> None:
        """Run the trading loop. With `max_cycles=None` this never returns on its own."""
        if self.market is None:
            await self.start()
        done = 0
        while max_cycles is None or done < max_cycles:
            await self.run_cycle()
            done += 1

    async def run_cycle(self) -> CycleResult:
        if self.market is None:
            raise RuntimeError("CycleController.start() must be awaited before run_cycle()")
        market = self.market
        self.iteration += 1

        self.state = CycleState.BUY
        amount_buy = await self.balances.get_asset_amount(market.quote_asset, market.quote_decimals)
        result = CycleResult(iteration=self.iteration, quote_before=amount_buy)

        if amount_buy > 0:
            logger.info(
                "[cycle %d] Creating Buy order with amount %s %s...",
                self.iteration,
                amount_buy,
                market.quote_symbol,
            )
            if not await self._submit(buy_request(amount_buy, self.limit_price)):
                return await self._abort(result)
            result.bought = True

            self.state = CycleState.MONITOR_BUY
            await self.monitor.await_drain(self.market_id, self.poll_interval_ms, self.max_wait_seconds)
        else:
            logger.info("[cycle %d] No %s to spend; skipping Buy", self.iteration, market.quote_symbol)

        self.state = CycleState.SELL
        amount_sell = await self.balances.get_asset_amount(market.base_asset, market.base_decimals)
        if amount_sell <= 0:
            # No positive-balance guard on the sell leg; the order is still submitted.
            logger.warning("[cycle %d] Base balance is %s; submitting Sell anyway", self.iteration, amount_sell)
        logger.info(
            "[cycle %d] Creating Sell order with amount %s %s...",
            self.iteration,
            amount_sell,
            market.base_symbol,
        )
        if not await self._submit(sell_request(amount_sell)):
            return await self._abort(result)
        result.base_sold = amount_sell

        self.state = CycleState.MONITOR_SELL
        await self.monitor.await_drain(self.market_id, self.poll_interval_ms, self.max_wait_seconds)

        result.quote_after = await self.balances.get_asset_amount(market.quote_asset, market.quote_decimals)
        logger.info(
            "[cycle %d] Cycle ends! Received: %s %s",
            self.iteration,
            result.realized,
            market.quote_symbol,
        )
        self.state = CycleState.BUY
        return result

    async def _submit(self, request: OrderRequest) -> bool:
        try:
            outcome: ExecutionOutcome = await self.submitter.submit(request)
        except OrderSubmissionError as e:
            logger.error("[cycle %d] Order failed: %s", self.iteration, e)
            return False
        logger.info("[cycle %d] %s", self.iteration, outcome.describe_cost())
        return True

    async def _abort(self, result: CycleResult) -> CycleResult:
        result.aborted_at = self.state
        logger.warning(
            "[cycle %d] Aborted at %s; restarting from fresh balances",
            self.iteration,
            self.state.value,
        )
        if self.failure_backoff_seconds > 0:
            await self._sleep(self.failure_backoff_seconds)
        self.state = CycleState.BUY
        return result
