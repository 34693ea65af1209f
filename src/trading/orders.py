from __future__ import annotations

import logging
from decimal import Decimal

from src.domain.models import ExecutionOutcome, OrderRequest, OrderSide, OrderType
from src.ports.exchange import ExchangeClient

logger = logging.getLogger(__name__)

DEFAULT_LIMIT_PRICE = Decimal("0.9999")


class OrderSubmissionError(Exception):
    """Raised when the exchange did not accept an order."""

    def __init__(self, message: str, request: OrderRequest):
        super().__init__(message)
        self.request = request


def buy_request(quantity: Decimal, limit_price: Decimal = DEFAULT_LIMIT_PRICE) -> OrderRequest:
    """Limit buy for the full quote balance at a near-parity price."""
    return OrderRequest(
        side=OrderSide.BUY,
        order_type=OrderType.LIMIT,
        quantity=quantity,
        limit_price=limit_price,
    )


def sell_request(quantity: Decimal) -> OrderRequest:
    """Market sell for the full base balance."""
    return OrderRequest(side=OrderSide.SELL, order_type=OrderType.MARKET, quantity=quantity)


class OrderSubmitter:
    def __init__(self, exchange: ExchangeClient, market_id: str):
        self.exchange = exchange
        self.market_id = market_id

    async def submit(self, request: OrderRequest) -> ExecutionOutcome:
        """
        Send a single order to the exchange.

        Any adapter failure is re-raised as OrderSubmissionError. The request is never
        retried here; whether anything changed must be re-observed on the exchange.
        """
        logger.info("Sending transaction...")
        try:
            outcome = await self.exchange.place_order(self.market_id, request)
        except Exception as e:
            raise OrderSubmissionError(
                f"{request.order_type.value} {request.side.value} order for {request.quantity} failed: "
                f"{type(e).__name__}: {e}",
                request,
            ) from e
        logger.info("Order accepted (id=%s)", outcome.order_id)
        return outcome
