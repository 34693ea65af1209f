from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import Any

from src.domain.models import ExecutionOutcome, Market, OpenOrderRow, OrderRequest, OrderSide, OrderType

logger = logging.getLogger(__name__)


class PaperExchangeError(Exception):
    """Raised when the simulated exchange rejects a request."""


def to_raw(amount: Decimal, decimals: int) -> int:
    """Convert a decimal quantity to raw integer units, rounding down."""
    scaled = Decimal(amount) * (Decimal(10) ** int(decimals))
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


@dataclass
class _PaperOrder:
    order_id: str
    request: OrderRequest
    reserved_asset: str
    reserved_raw: int
    polls_remaining: int

    def to_row(self) -> OpenOrderRow:
        return OpenOrderRow(
            order_id=self.order_id,
            side=self.request.side,
            order_type=self.request.order_type,
            quantity=self.request.quantity,
            limit_price=self.request.limit_price,
        )


class PaperExchange:
    """
    In-memory single-market exchange for dry runs.

    Orders reserve funds when placed and fill after `fill_after_polls` open-order
    queries, which is enough to exercise the poll-until-drained loop end to end.
    """

    def __init__(
        self,
        market: Market,
        balances: dict[str, int] | None = None,
        *,
        fill_after_polls: int = 1,
        price: Decimal = Decimal("1"),
    ):
        if fill_after_polls < 0:
            raise ValueError("fill_after_polls must be >= 0")
        self.market = market
        self.balances: dict[str, int] = {k: int(v) for k, v in (balances or {}).items()}
        self.fill_after_polls = int(fill_after_polls)
        self.price = Decimal(str(price))
        self.placed: list[OrderRequest] = []
        self.cancel_calls = 0
        self._orders: list[_PaperOrder] = []
        self._ids = itertools.count(1)

    @classmethod
    def from_config(cls, paper_cfg: dict[str, Any], market_id: str) -> "PaperExchange":
        m = paper_cfg.get("market") or {}
        market = Market(
            market_id=market_id,
            base_asset=str(m["base_asset"]),
            quote_asset=str(m["quote_asset"]),
            base_decimals=int(m.get("base_decimals", 6)),
            quote_decimals=int(m.get("quote_decimals", 6)),
        )
        return cls(
            market,
            balances={str(k): int(v) for k, v in (paper_cfg.get("balances") or {}).items()},
            fill_after_polls=int(paper_cfg.get("fill_after_polls", 1)),
            price=Decimal(str(paper_cfg.get("price", "1"))),
        )

    def _check_market(self, market_id: str) -> None:
        if market_id != self.market.market_id:
            raise PaperExchangeError(f"Unknown market: {market_id}")

    async def get_market(self, market_id: str) -> Market:
        self._check_market(market_id)
        return self.market

    async def get_balances(self) -> dict[str, int]:
        return dict(self.balances)

    async def get_open_orders(self, market_id: str) -> list[OpenOrderRow]:
        self._check_market(market_id)
        still_open: list[_PaperOrder] = []
        for order in self._orders:
            order.polls_remaining -= 1
            if order.polls_remaining <= 0:
                self._fill(order)
            else:
                still_open.append(order)
        self._orders = still_open
        return [o.to_row() for o in self._orders]

    async def cancel_all_orders(self, market_id: str) -> None:
        self._check_market(market_id)
        self.cancel_calls += 1
        for order in self._orders:
            self._credit(order.reserved_asset, order.reserved_raw)
            logger.info("Paper: cancelled order %s", order.order_id)
        self._orders = []

    async def place_order(self, market_id: str, request: OrderRequest) -> ExecutionOutcome:
        self._check_market(market_id)
        m = self.market
        if request.side is OrderSide.BUY:
            price = request.limit_price if request.order_type is OrderType.LIMIT else self.price
            reserved_asset = m.quote_asset
            reserved_raw = to_raw(request.quantity * price, m.quote_decimals)
        else:
            reserved_asset = m.base_asset
            reserved_raw = to_raw(request.quantity, m.base_decimals)

        available = self.balances.get(reserved_asset, 0)
        if reserved_raw > available:
            raise PaperExchangeError(
                f"Insufficient {reserved_asset}: need {reserved_raw}, have {available}"
            )

        self.placed.append(request)
        order = _PaperOrder(
            order_id=f"paper-{next(self._ids)}",
            request=request,
            reserved_asset=reserved_asset,
            reserved_raw=reserved_raw,
            polls_remaining=self.fill_after_polls,
        )
        self._credit(reserved_asset, -reserved_raw)
        if request.quantity == 0 or order.polls_remaining <= 0:
            self._fill(order)
        else:
            self._orders.append(order)
        logger.info("Paper: accepted %s", request.to_dict())
        return ExecutionOutcome(order_id=order.order_id, raw={"paper": True, **request.to_dict()})

    async def close(self) -> None:
        return None

    def _credit(self, asset: str, raw: int) -> None:
        self.balances[asset] = self.balances.get(asset, 0) + int(raw)

    def _fill(self, order: _PaperOrder) -> None:
        m = self.market
        req = order.request
        if req.side is OrderSide.BUY:
            self._credit(m.base_asset, to_raw(req.quantity, m.base_decimals))
        else:
            self._credit(m.quote_asset, to_raw(req.quantity * self.price, m.quote_decimals))
        logger.info("Paper: filled order %s", order.order_id)
