from __future__ import annotations

import asyncio
import logging
import os
import random
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Literal, Sequence

from swap_engine.common import guarded_call, log_event

from .errors import InvalidWalletError, WalletNotFoundError
from .pools import PoolResolver
from .scheduler import DEFAULT_BATCH_SIZE, DEFAULT_INTER_BATCH_DELAY_SECONDS, BatchScheduler
from .types import (
    RAY_TOKEN,
    SOL_TOKEN,
    BatchReport,
    ExecutionOrder,
    JobStore,
    ResolvedPool,
    SwapRequest,
    SwapResult,
    Token,
    WalletRef,
    to_decimal,
)

SamplingPolicy = Literal["range", "registered"]
SAMPLING_POLICIES: tuple[str, ...] = ("range", "registered")
ReportSink = Callable[[ExecutionOrder, BatchReport], Awaitable[None]]


def normalize_sampling_policy(value: str | None) -> SamplingPolicy:
    normalized = (value or "").strip().lower()
    if normalized == "range":
        return "range"
    return "registered"


@dataclass(slots=True, frozen=True)
class SwapPolicy:
    """Token pair, amount and slippage applied to every sampled wallet."""

    input_token: Token
    output_token: Token
    amount: Decimal
    slippage_percent: Decimal

    @classmethod
    def from_env(cls) -> "SwapPolicy":
        amount = to_decimal(os.getenv("DEFAULT_SWAP_AMOUNT", "0.0001"))
        slippage = to_decimal(os.getenv("DEFAULT_SLIPPAGE_PERCENT", "0.5"))
        if slippage < 0 or slippage > 100:
            raise ValueError("DEFAULT_SLIPPAGE_PERCENT must be between 0 and 100.")
        return cls(
            input_token=Token.from_env("DEFAULT_INPUT", default=SOL_TOKEN),
            output_token=Token.from_env("DEFAULT_OUTPUT", default=RAY_TOKEN),
            amount=amount,
            slippage_percent=slippage,
        )

    def to_request(self, wallet: WalletRef) -> SwapRequest:
        return SwapRequest(
            wallet=wallet,
            input_token=self.input_token,
            output_token=self.output_token,
            amount=self.amount,
            slippage_percent=self.slippage_percent,
        )


class OrderProcessor:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        store: JobStore,
        scheduler: BatchScheduler,
        pool_resolver: PoolResolver,
        policy: SwapPolicy,
        sample_size: int = 2,
        sampling_policy: str = "registered",
        batch_size: int = DEFAULT_BATCH_SIZE,
        inter_batch_delay: float = DEFAULT_INTER_BATCH_DELAY_SECONDS,
        report_sink: ReportSink | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._logger = logger
        self._store = store
        self._scheduler = scheduler
        self._pool_resolver = pool_resolver
        self._policy = policy
        self._sample_size = max(0, int(sample_size))
        self._sampling_policy = normalize_sampling_policy(sampling_policy)
        self._batch_size = batch_size
        self._inter_batch_delay = max(0.0, float(inter_batch_delay))
        self._report_sink = report_sink
        self._rng = rng or random.SystemRandom()

    @property
    def sampling_policy(self) -> SamplingPolicy:
        return self._sampling_policy

    async def resolve_pool(self, request: SwapRequest) -> ResolvedPool:
        return await self._pool_resolver.find_pool(request.input_token, request.output_token)

    async def sample_wallet_batch(self, n: int) -> list[int]:
        """Draw ``n`` wallet ids uniformly, with replacement.

        ``range`` draws from ``[min_id, max_id]`` and may return ids that were
        never registered when the id space is sparse. ``registered`` draws
        from the ids that exist.
        """
        if n <= 0:
            return []

        if self._sampling_policy == "range":
            bounds = await self._store.wallet_id_bounds()
            if bounds is None:
                return []
            low, high = bounds
            return [self._rng.randint(low, high) for _ in range(n)]

        wallet_ids = await self._store.list_wallet_ids()
        if not wallet_ids:
            return []
        return [self._rng.choice(wallet_ids) for _ in range(n)]

    async def create_order_from_sample(self, n: int | None = None) -> ExecutionOrder | None:
        wallet_ids = await self.sample_wallet_batch(self._sample_size if n is None else n)
        if not wallet_ids:
            log_event(
                self._logger,
                level="warning",
                event="order_sample_empty",
                message="No registered wallets to sample; order not created",
                sampling_policy=self._sampling_policy,
            )
            return None

        order = await self._store.create_order(wallet_ids)
        log_event(
            self._logger,
            level="info",
            event="order_created",
            message="Execution order created",
            order_id=order.order_id,
            wallet_ids=list(order.wallet_ids),
        )
        return order

    async def _wallet_request(self, wallet_id: int) -> SwapRequest | SwapResult:
        wallet = await self._store.get_wallet(wallet_id)
        if wallet is None:
            error = WalletNotFoundError(f"Wallet {wallet_id} is not registered")
            return SwapResult.failed(wallet=f"wallet:{wallet_id}", error=str(error), error_code=error.code)
        try:
            wallet_ref = WalletRef.from_wallet(wallet)
        except InvalidWalletError as error:
            return SwapResult.failed(wallet=f"wallet:{wallet_id}", error=str(error), error_code=error.code)
        return self._policy.to_request(wallet_ref)

    async def process_order(self, order: ExecutionOrder) -> BatchReport:
        prepared = await asyncio.gather(*(self._wallet_request(wallet_id) for wallet_id in order.wallet_ids))
        requests = [item for item in prepared if isinstance(item, SwapRequest)]

        swap_report = await self.execute_swap_requests(requests)
        swap_results = iter(swap_report.details)
        results = [item if isinstance(item, SwapResult) else next(swap_results) for item in prepared]
        report = BatchReport.from_results(results, duration_ms=swap_report.duration_ms)

        log_event(
            self._logger,
            level="info",
            event="order_processed",
            message="Execution order processed",
            order_id=order.order_id,
            total_processed=report.total_processed,
            successful=report.successful,
            failed=report.failed,
            duration_ms=report.duration_ms,
        )

        if self._report_sink is not None:
            await guarded_call(
                lambda: self._report_sink(order, report),
                logger=self._logger,
                event="batch_report_sink_failed",
                message="Failed to archive batch report",
                order_id=order.order_id,
            )

        finished = await self._store.mark_finished(order.order_id)
        if not finished:
            log_event(
                self._logger,
                level="warning",
                event="order_finish_skipped",
                message="Order was not in started state; finish not recorded",
                order_id=order.order_id,
            )
        return report

    async def on_scheduler_tick(self) -> BatchReport | None:
        order = await self._store.claim_oldest_pending()
        if order is None:
            log_event(
                self._logger,
                level="debug",
                event="order_queue_empty",
                message="No pending execution order",
            )
            return None

        log_event(
            self._logger,
            level="info",
            event="order_claimed",
            message="Execution order claimed",
            order_id=order.order_id,
            wallet_count=len(order.wallet_ids),
        )
        return await self.process_order(order)

    async def on_order_created(self) -> BatchReport | None:
        return await self.on_scheduler_tick()

    async def execute_swap_requests(self, requests: Sequence[SwapRequest]) -> BatchReport:
        return await self._scheduler.execute_parallel(
            requests,
            self.resolve_pool,
            batch_size=self._batch_size,
            inter_batch_delay=self._inter_batch_delay,
        )
