from __future__ import annotations

from dataclasses import replace
from typing import Sequence

from swap_engine.trading.types import ExecutionOrder, Wallet, now_iso

from .errors import DuplicateWalletError
from .helpers import unique_wallet_ids


class InMemoryJobStore:
    """Process-local job store for dry runs and tests.

    None of the methods await between reading and writing state, so each one
    is atomic with respect to other tasks on the same event loop.
    """

    def __init__(self) -> None:
        self._orders: dict[int, ExecutionOrder] = {}
        self._wallets: dict[int, Wallet] = {}
        self._sequence = 0

    async def create_order(self, wallet_ids: Sequence[int]) -> ExecutionOrder:
        self._sequence += 1
        order = ExecutionOrder(
            order_id=self._sequence,
            wallet_ids=tuple(int(wallet_id) for wallet_id in wallet_ids),
            created_at=now_iso(),
        )
        self._orders[order.order_id] = order
        return order

    async def claim_oldest_pending(self) -> ExecutionOrder | None:
        for order_id in sorted(self._orders):
            order = self._orders[order_id]
            if order.started_at is None:
                claimed = replace(order, started_at=now_iso())
                self._orders[order_id] = claimed
                return claimed
        return None

    async def mark_finished(self, order_id: int) -> bool:
        order = self._orders.get(order_id)
        if order is None or order.started_at is None or order.finished_at is not None:
            return False
        self._orders[order_id] = replace(order, finished_at=now_iso())
        return True

    async def get_order(self, order_id: int) -> ExecutionOrder | None:
        return self._orders.get(order_id)

    async def get_wallet(self, wallet_id: int) -> Wallet | None:
        return self._wallets.get(wallet_id)

    async def register_wallets(self, wallets: Sequence[Wallet]) -> int:
        unique_wallet_ids([wallet.wallet_id for wallet in wallets])
        for wallet in wallets:
            if wallet.wallet_id in self._wallets:
                raise DuplicateWalletError(wallet.wallet_id)
        for wallet in wallets:
            self._wallets[wallet.wallet_id] = wallet
        return len(wallets)

    async def wallet_id_bounds(self) -> tuple[int, int] | None:
        if not self._wallets:
            return None
        return min(self._wallets), max(self._wallets)

    async def list_wallet_ids(self) -> list[int]:
        return sorted(self._wallets)
