from __future__ import annotations

from typing import Protocol

from src.domain.models import ExecutionOutcome, Market, OpenOrderRow, OrderRequest


class ExchangeClient(Protocol):
    async def get_market(self, market_id: str) -> Market: ...

    async def get_open_orders(self, market_id: str) -> list[OpenOrderRow]: ...

    async def cancel_all_orders(self, market_id: str) -> None: ...

    async def get_balances(self) -> dict[str, int]: ...

    async def place_order(self, market_id: str, request: OrderRequest) -> ExecutionOutcome: ...

    async def close(self) -> None: ...
