from decimal import Decimal

import pytest

from src.domain.models import ExecutionOutcome, Market, OpenOrderRow, OrderSide, OrderType


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedExchange:
    """
    Exchange double driven by scripts.

    - balances: list of balance dicts; each get_balances() pops the next one and the
      last one repeats.
    - open_orders: list of open-order lists; each get_open_orders() pops the next one,
      returning [] once exhausted.
    - failures: per place_order() call, an exception to raise or None.
    Every call is appended to `calls` as (name, detail).
    """

    def __init__(self, market, balances, open_orders=None, failures=None):
        self.market = market
        self.balance_script = list(balances)
        self.open_orders_script = list(open_orders or [])
        self.failures = list(failures or [])
        self.calls: list[tuple[str, object]] = []
        self.placed = []

    async def get_market(self, market_id):
        self.calls.append(("get_market", market_id))
        return self.market

    async def get_balances(self):
        bal = self.balance_script.pop(0) if len(self.balance_script) > 1 else self.balance_script[0]
        if isinstance(bal, Exception):
            self.calls.append(("get_balances", "error"))
            raise bal
        self.calls.append(("get_balances", dict(bal)))
        return dict(bal)

    async def get_open_orders(self, market_id):
        orders = self.open_orders_script.pop(0) if self.open_orders_script else []
        if isinstance(orders, Exception):
            self.calls.append(("get_open_orders", "error"))
            raise orders
        self.calls.append(("get_open_orders", len(orders)))
        return list(orders)

    async def cancel_all_orders(self, market_id):
        self.calls.append(("cancel_all_orders", market_id))

    async def place_order(self, market_id, request):
        failure = self.failures.pop(0) if self.failures else None
        self.calls.append(("place_order", request))
        if failure is not None:
            raise failure
        self.placed.append(request)
        return ExecutionOutcome(
            order_id=f"o-{len(self.placed)}",
            transaction_gas_burnt=2_500_000_000_000,
            receipts_gas_burnt=(1_000_000_000_000, 500_000_000_000),
        )

    async def close(self):
        self.calls.append(("close", None))

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


def open_order(order_id="o-1", side=OrderSide.BUY) -> OpenOrderRow:
    return OpenOrderRow(
        order_id=order_id,
        side=side,
        order_type=OrderType.LIMIT,
        quantity=Decimal("1"),
        limit_price=Decimal("0.9999"),
    )


@pytest.fixture
def market() -> Market:
    return Market(
        market_id="usdt-usdc",
        base_asset="usdt.fakes.testnet",
        quote_asset="usdc.fakes.testnet",
        base_decimals=6,
        quote_decimals=6,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_exchange(market):
    def _make(balances, open_orders=None, failures=None) -> ScriptedExchange:
        return ScriptedExchange(market, balances, open_orders=open_orders, failures=failures)

    return _make


@pytest.fixture
def stale_order() -> OpenOrderRow:
    return open_order("stale-1")
