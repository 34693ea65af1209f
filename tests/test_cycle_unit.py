import asyncio
from decimal import Decimal

import pytest

from src.domain.models import Market, OrderSide, OrderType
from src.exchange.paper import PaperExchange
from src.trader.cycle import CycleController, CycleState
from src.trading.monitor import OrderMonitorStalled
from src.trading.orders import buy_request, sell_request

from conftest import open_order

QUOTE = "usdc.fakes.testnet"
BASE = "usdt.fakes.testnet"


def _controller(exchange, clock, **kwargs) -> CycleController:
    kwargs.setdefault("failure_backoff_seconds", 1.0)
    return CycleController(exchange, "usdt-usdc", sleep=clock.sleep, clock=clock, **kwargs)


async def _start_and_cycle(controller, cycles=1):
    await controller.start()
    return [await controller.run_cycle() for _ in range(cycles)]


def test_buy_then_sell_scenario(make_exchange, clock):
    ex = make_exchange(
        [
            {QUOTE: 500000, BASE: 0},
            {QUOTE: 50, BASE: 500000},
            {QUOTE: 500050, BASE: 0},
        ],
        open_orders=[[], [open_order()], [], []],
    )
    controller = _controller(ex, clock)
    (result,) = asyncio.run(_start_and_cycle(controller))

    assert ex.placed == [
        buy_request(Decimal("0.5"), Decimal("0.9999")),
        sell_request(Decimal("0.5")),
    ]
    assert ex.placed[0].side is OrderSide.BUY and ex.placed[0].order_type is OrderType.LIMIT
    assert ex.placed[1].side is OrderSide.SELL and ex.placed[1].order_type is OrderType.MARKET
    assert result.completed
    assert result.bought is True
    assert result.base_sold == Decimal("0.5")
    assert result.realized == Decimal("0.00005")
    assert controller.state is CycleState.BUY


def test_sell_only_submitted_after_buy_monitor_drains(make_exchange, clock):
    ex = make_exchange(
        [{QUOTE: 1_000_000, BASE: 0}, {QUOTE: 0, BASE: 1_000_000}, {QUOTE: 1_000_000, BASE: 0}],
        open_orders=[[], [open_order()], [open_order()], [], []],
    )
    asyncio.run(_start_and_cycle(_controller(ex, clock)))

    place_idx = [i for i, (name, _) in enumerate(ex.calls) if name == "place_order"]
    buy_idx, sell_idx = place_idx
    between = ex.calls[buy_idx + 1 : sell_idx]
    polls = [detail for name, detail in between if name == "get_open_orders"]
    assert polls == [1, 1, 0]
    # The sell is sized from a balance read taken after the drain.
    assert between[-1][0] == "get_balances"


def test_zero_quote_skips_buy_and_sells_base(make_exchange, clock):
    ex = make_exchange(
        [{QUOTE: 0, BASE: 2_000_000}, {QUOTE: 0, BASE: 2_000_000}, {QUOTE: 2_000_000, BASE: 0}],
        open_orders=[[], []],
    )
    (result,) = asyncio.run(_start_and_cycle(_controller(ex, clock)))

    assert ex.placed == [sell_request(Decimal("2"))]
    assert result.bought is False
    # No monitoring between the two balance reads when the buy is skipped.
    assert ex.names()[:5] == ["get_market", "get_open_orders", "get_balances", "get_balances", "place_order"]


def test_zero_base_still_submits_zero_quantity_sell(make_exchange, clock):
    ex = make_exchange([{QUOTE: 0, BASE: 0}], open_orders=[[], []])
    (result,) = asyncio.run(_start_and_cycle(_controller(ex, clock)))

    assert ex.placed == [sell_request(Decimal("0"))]
    assert result.base_sold == Decimal("0")
    assert result.completed


def test_startup_cancels_stale_orders_once_before_trading(make_exchange, clock, stale_order):
    ex = make_exchange(
        [{QUOTE: 1_000_000, BASE: 0}, {QUOTE: 0, BASE: 1_000_000}, {QUOTE: 1_000_000, BASE: 0}],
        open_orders=[[stale_order], [], []],
    )
    asyncio.run(_start_and_cycle(_controller(ex, clock)))

    names = ex.names()
    assert names.count("cancel_all_orders") == 1
    assert names.index("cancel_all_orders") < names.index("place_order")


def test_startup_without_stale_orders_does_not_cancel(make_exchange, clock):
    ex = make_exchange([{QUOTE: 0, BASE: 0}], open_orders=[[]])
    controller = _controller(ex, clock)
    market = asyncio.run(controller.start())
    assert market.market_id == "usdt-usdc"
    assert "cancel_all_orders" not in ex.names()
    assert controller.state is CycleState.BUY


def test_buy_failure_restarts_from_balance_read(make_exchange, clock):
    ex = make_exchange(
        [
            {QUOTE: 1_000_000, BASE: 0},
            {QUOTE: 1_000_000, BASE: 0},
            {QUOTE: 0, BASE: 1_000_000},
            {QUOTE: 1_000_000, BASE: 0},
        ],
        open_orders=[[], [], []],
        failures=[RuntimeError("gas shortfall")],
    )
    controller = _controller(ex, clock)
    first, second = asyncio.run(_start_and_cycle(controller, cycles=2))

    assert first.aborted_at is CycleState.BUY
    assert not first.completed
    assert second.completed
    assert clock.sleeps[0] == 1.0

    failed_idx = ex.names().index("place_order")
    assert ex.names()[failed_idx + 1] == "get_balances"
    # The failed request is not resubmitted verbatim within the same iteration.
    assert ex.names().count("place_order") == 3
    assert controller.iteration == 2


def test_sell_failure_aborts_without_monitoring(make_exchange, clock):
    ex = make_exchange(
        [{QUOTE: 0, BASE: 3_000_000}],
        open_orders=[[]],
        failures=[RuntimeError("rejected")],
    )
    controller = _controller(ex, clock)
    (result,) = asyncio.run(_start_and_cycle(controller))

    assert result.aborted_at is CycleState.SELL
    assert result.realized is None
    assert ex.names()[-1] == "place_order"
    assert controller.state is CycleState.BUY


def test_query_failure_is_fatal(make_exchange, clock):
    ex = make_exchange([ConnectionError("balances unavailable")], open_orders=[[]])
    controller = _controller(ex, clock)
    with pytest.raises(ConnectionError):
        asyncio.run(_start_and_cycle(controller))
    assert "place_order" not in ex.names()


def test_stalled_monitor_is_fatal(make_exchange, clock):
    ex = make_exchange(
        [{QUOTE: 1_000_000, BASE: 0}],
        open_orders=[[]] + [[open_order()]] * 10,
    )
    controller = _controller(ex, clock, poll_interval_ms=1000, max_wait_seconds=2)
    with pytest.raises(OrderMonitorStalled):
        asyncio.run(_start_and_cycle(controller))
    assert controller.state is CycleState.MONITOR_BUY
    assert ex.names().count("place_order") == 1


def test_run_cycle_requires_start(make_exchange, clock):
    controller = _controller(make_exchange([{}]), clock)
    with pytest.raises(RuntimeError):
        asyncio.run(controller.run_cycle())


def test_run_against_paper_exchange(clock):
    market = Market("USDT/USDC", base_asset="USDT", quote_asset="USDC", base_decimals=6, quote_decimals=6)
    paper = PaperExchange(market, {"USDC": 100_000_000, "USDT": 0}, fill_after_polls=2)
    controller = CycleController(paper, "USDT/USDC", sleep=clock.sleep, clock=clock, poll_interval_ms=500)

    asyncio.run(controller.run(max_cycles=2))

    assert paper.placed[:2] == [
        buy_request(Decimal("100"), Decimal("0.9999")),
        sell_request(Decimal("100")),
    ]
    assert len(paper.placed) == 4
    assert paper.cancel_calls == 0
    assert controller.iteration == 2
    # Every poll used the configured interval.
    assert set(clock.sleeps) == {0.5}
    assert paper.balances["USDT"] == 0
