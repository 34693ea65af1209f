from __future__ import annotations

import logging
from decimal import ROUND_FLOOR, Decimal
from typing import Any

import ccxt.async_support as ccxt
from ccxt.base.decimal_to_precision import TICK_SIZE

from src.domain.models import ExecutionOutcome, Market, OpenOrderRow, OrderRequest, OrderSide, OrderType

logger = logging.getLogger(__name__)

# Used for assets whose market we have not loaded yet.
DEFAULT_ASSET_DECIMALS = 8

# Request timeout handed to ccxt (ms). The bot itself adds no timeouts on top.
CCXT_REQUEST_TIMEOUT_MS = 30000


def precision_to_decimals(value: Any, precision_mode: int) -> int:
    """
    Turn a ccxt market precision into a number of decimal places.

    Under TICK_SIZE mode ccxt reports a step such as 0.001; otherwise the value is
    already a count of decimal places.
    """
    if value is None:
        return DEFAULT_ASSET_DECIMALS
    if precision_mode == TICK_SIZE:
        step = Decimal(str(value)).normalize()
        if step <= 0:
            return DEFAULT_ASSET_DECIMALS
        exponent = step.as_tuple().exponent
        return max(0, -int(exponent))
    return int(value)


def _to_raw(amount: Any, decimals: int) -> int:
    scaled = Decimal(str(amount or 0)) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def _order_fee(order: dict[str, Any]) -> tuple[Decimal | None, str | None]:
    """Fee charged for an order, from ccxt's `fee` or summed `fees` entries."""
    fee = order.get("fee") or {}
    if fee.get("cost") is not None:
        return Decimal(str(fee["cost"])), fee.get("currency")
    entries = [f for f in order.get("fees") or [] if f and f.get("cost") is not None]
    if not entries:
        return None, None
    total = sum((Decimal(str(f["cost"])) for f in entries), Decimal(0))
    return total, entries[0].get("currency")


def _order_row(order: dict[str, Any]) -> OpenOrderRow:
    remaining = order.get("remaining")
    quantity = remaining if remaining is not None else order.get("amount")
    price = order.get("price")
    order_type = OrderType.LIMIT if str(order.get("type") or "").lower() == "limit" else OrderType.MARKET
    return OpenOrderRow(
        order_id=str(order.get("id")),
        side=OrderSide.BUY if str(order.get("side") or "").lower() == "buy" else OrderSide.SELL,
        order_type=order_type,
        quantity=Decimal(str(quantity or 0)),
        limit_price=Decimal(str(price)) if (order_type is OrderType.LIMIT and price is not None) else None,
    )


class CcxtExchange:
    """Exchange port backed by a ccxt async exchange instance."""

    def __init__(
        self,
        exchange_id: str | None = None,
        *,
        api_key: str = "",
        api_secret: str = "",
        sandbox: bool = False,
        exchange: Any = None,
    ):
        if exchange is None:
            if not exchange_id or not hasattr(ccxt, exchange_id):
                raise ValueError(f"Exchange {exchange_id!r} not available in ccxt")
            exchange_class = getattr(ccxt, exchange_id)
            exchange = exchange_class(
                {
                    "apiKey": api_key,
                    "secret": api_secret,
                    "enableRateLimit": True,
                    "timeout": CCXT_REQUEST_TIMEOUT_MS,
                }
            )
            if sandbox:
                exchange.set_sandbox_mode(True)
            logger.info("Created ccxt %s client (sandbox=%s)", exchange_id, sandbox)
        self._exchange = exchange
        self._asset_decimals: dict[str, int] = {}

    async def get_market(self, market_id: str) -> Market:
        markets = await self._exchange.load_markets()
        if market_id not in markets:
            raise KeyError(f"Market {market_id} not listed on {getattr(self._exchange, 'id', 'exchange')}")
        m = markets[market_id]
        precision = m.get("precision") or {}
        mode = getattr(self._exchange, "precisionMode", TICK_SIZE)
        currencies = getattr(self._exchange, "currencies", None) or {}

        def asset_precision(side: str, code: str) -> Any:
            # Balance precision of the asset itself; price ticks say nothing about it.
            if precision.get(side) is not None:
                return precision[side]
            return (currencies.get(code) or {}).get("precision")

        base_raw = asset_precision("base", m["base"])
        base_decimals = precision_to_decimals(base_raw if base_raw is not None else precision.get("amount"), mode)
        quote_decimals = precision_to_decimals(asset_precision("quote", m["quote"]), mode)
        market = Market(
            market_id=market_id,
            base_asset=str(m["base"]),
            quote_asset=str(m["quote"]),
            base_decimals=base_decimals,
            quote_decimals=quote_decimals,
        )
        self._asset_decimals[market.base_asset] = base_decimals
        self._asset_decimals[market.quote_asset] = quote_decimals
        return market

    async def get_open_orders(self, market_id: str) -> list[OpenOrderRow]:
        orders = await self._exchange.fetch_open_orders(market_id)
        return [_order_row(o) for o in orders or []]

    async def cancel_all_orders(self, market_id: str) -> None:
        if (getattr(self._exchange, "has", None) or {}).get("cancelAllOrders"):
            await self._exchange.cancel_all_orders(market_id)
            logger.info("Cancelled all orders on %s", market_id)
            return

        for order in await self._exchange.fetch_open_orders(market_id) or []:
            await self._exchange.cancel_order(order["id"], market_id)
            logger.info("Cancelled order %s on %s", order["id"], market_id)

    async def get_balances(self) -> dict[str, int]:
        balance = await self._exchange.fetch_balance()
        totals = balance.get("total") or {}
        return {
            asset: _to_raw(amount, self._asset_decimals.get(asset, DEFAULT_ASSET_DECIMALS))
            for asset, amount in totals.items()
            if amount is not None
        }

    async def place_order(self, market_id: str, request: OrderRequest) -> ExecutionOutcome:
        price = float(request.limit_price) if request.limit_price is not None else None
        order = await self._exchange.create_order(
            market_id,
            request.order_type.value.lower(),
            request.side.value.lower(),
            float(request.quantity),
            price,
        )
        fee_cost, fee_currency = _order_fee(order)
        return ExecutionOutcome(
            order_id=str(order.get("id")) if order.get("id") is not None else None,
            fee=fee_cost,
            fee_currency=fee_currency,
            raw=order,
        )

    async def close(self) -> None:
        await self._exchange.close()
        logger.info("Closed ccxt client")
