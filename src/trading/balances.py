from __future__ import annotations

import logging
from decimal import Decimal

from src.ports.exchange import ExchangeClient

logger = logging.getLogger(__name__)


def to_units(raw_amount: int, decimals: int) -> Decimal:
    """Convert a raw integer exchange amount to a decimal quantity."""
    return Decimal(int(raw_amount)) / (Decimal(10) ** int(decimals))


class BalanceReader:
    def __init__(self, exchange: ExchangeClient):
        self.exchange = exchange

    async def get_asset_amount(self, asset_id: str, decimals: int) -> Decimal:
        """
        Read the account's current holding of `asset_id` in decimal units.

        Balances are fetched fresh on every call. Query errors are not caught here:
        sizing an order from a balance we could not read is worse than stopping.
        """
        balances = await self.exchange.get_balances()
        raw = int(balances.get(asset_id, 0) or 0)
        if raw < 0:
            raise ValueError(f"Exchange reported a negative balance for {asset_id}: {raw}")
        amount = to_units(raw, decimals)
        logger.debug("Balance %s: raw=%s amount=%s", asset_id, raw, amount)
        return amount
