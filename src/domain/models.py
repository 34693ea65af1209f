from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

TERA_GAS = 10**12


class OrderSide(str, Enum):
    BUY = "Buy"
    SELL = "Sell"


class OrderType(str, Enum):
    LIMIT = "Limit"
    MARKET = "Market"


def _display_symbol(asset_id: str) -> str:
    # NEAR-style token ids ("usdc.fakes.testnet") read better by their first segment.
    return asset_id.split(".")[0]


@dataclass(frozen=True)
class Market:
    market_id: str
    base_asset: str
    quote_asset: str
    base_decimals: int
    quote_decimals: int

    @property
    def base_symbol(self) -> str:
        return _display_symbol(self.base_asset)

    @property
    def quote_symbol(self) -> str:
        return _display_symbol(self.quote_asset)

    def to_dict(self) -> dict[str, Any]:
        return {
            "market_id": self.market_id,
            "base_asset": self.base_asset,
            "quote_asset": self.quote_asset,
            "base_decimals": int(self.base_decimals),
            "quote_decimals": int(self.quote_decimals),
        }


@dataclass(frozen=True)
class OrderRequest:
    side: OrderSide
    order_type: OrderType
    quantity: Decimal
    limit_price: Decimal | None = None

    def __post_init__(self) -> None:
        if self.quantity < 0:
            raise ValueError(f"Order quantity must be non-negative; got {self.quantity}")
        if self.order_type is OrderType.LIMIT:
            if self.limit_price is None or self.limit_price <= 0:
                raise ValueError("Limit orders require a positive limit_price")
        elif self.limit_price is not None:
            raise ValueError("Market orders must not carry a limit_price")

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "side": self.side.value,
            "order_type": self.order_type.value,
            "quantity": str(self.quantity),
        }
        if self.limit_price is not None:
            out["limit_price"] = str(self.limit_price)
        return out


@dataclass(frozen=True)
class ExecutionOutcome:
    """
    Result of an accepted order submission. Cost figures are for logging only.

    On-chain venues report gas (transaction plus receipts); order-book APIs report a
    trading fee instead.
    """

    order_id: str | None = None
    transaction_gas_burnt: int = 0
    receipts_gas_burnt: tuple[int, ...] = ()
    fee: Decimal | None = None
    fee_currency: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def total_gas(self) -> int:
        return int(self.transaction_gas_burnt) + sum(int(g) for g in self.receipts_gas_burnt)

    def format_gas_usage(self) -> str:
        return f"{self.total_gas / TERA_GAS:.2f} TGas"

    def describe_cost(self) -> str:
        if self.fee is not None:
            return f"Fee: {self.fee} {self.fee_currency or ''}".rstrip()
        return f"Gas usage: {self.format_gas_usage()}"


@dataclass(frozen=True)
class OpenOrderRow:
    order_id: str
    side: OrderSide
    order_type: OrderType
    quantity: Decimal
    limit_price: Decimal | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "side": self.side.value,
            "order_type": self.order_type.value,
            "quantity": str(self.quantity),
            "limit_price": None if self.limit_price is None else str(self.limit_price),
        }
