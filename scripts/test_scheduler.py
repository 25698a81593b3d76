from __future__ import annotations

import asyncio
import logging
import time
import unittest
from decimal import Decimal

from solders.keypair import Keypair

from swap_engine.trading.errors import PoolNotFoundError
from swap_engine.trading.scheduler import BatchScheduler, chunked
from swap_engine.trading.types import (
    RAY_MINT,
    RAY_TOKEN,
    SOL_TOKEN,
    WSOL_MINT,
    ResolvedPool,
    SwapRequest,
    SwapResult,
    WalletRef,
)

POOL = ResolvedPool(
    pool_id="pool-1",
    program_id="675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8",
    mint_a=WSOL_MINT,
    mint_b=RAY_MINT,
    decimals_a=9,
    decimals_b=6,
)


def make_request(wallet_id: int) -> SwapRequest:
    return SwapRequest(
        wallet=WalletRef(wallet_id=wallet_id, keypair=Keypair()),
        input_token=SOL_TOKEN,
        output_token=RAY_TOKEN,
        amount=Decimal("0.0001"),
        slippage_percent=Decimal("0.5"),
    )


class RecordingExecutor:
    """Executes instantly and records concurrency and start times."""

    def __init__(self, *, delay: float = 0.01, failing_wallets: set[str] | None = None) -> None:
        self.delay = delay
        self.failing_wallets = failing_wallets or set()
        self.started_at: list[float] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def execute(self, request: SwapRequest, pool: ResolvedPool) -> SwapResult:
        wallet = request.wallet.public_key
        self.started_at.append(time.monotonic())
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        if wallet in self.failing_wallets:
            return SwapResult.failed(wallet=wallet, error="boom", error_code="SubmissionFailed")
        return SwapResult.succeeded(wallet=wallet, signature=f"sig-{wallet}", amount_in="0.0001", amount_out="1")


async def resolve_always(_request: SwapRequest) -> ResolvedPool:
    return POOL


class ChunkedTests(unittest.TestCase):
    def test_chunked_splits_in_order(self) -> None:
        self.assertEqual(chunked([1, 2, 3, 4, 5, 6, 7], 3), [[1, 2, 3], [4, 5, 6], [7]])
        self.assertEqual(chunked([], 5), [])


class BatchSchedulerTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.executor = RecordingExecutor()
        self.scheduler = BatchScheduler(logger=logging.getLogger("test.scheduler"), executor=self.executor)

    async def test_empty_input_returns_empty_report(self) -> None:
        report = await self.scheduler.execute_parallel([], resolve_always)

        self.assertEqual((report.total_processed, report.successful, report.failed), (0, 0, 0))
        self.assertEqual(report.details, ())

    async def test_invalid_batch_size_is_rejected(self) -> None:
        for batch_size in (0, -1, True):
            with self.assertRaises(ValueError):
                await self.scheduler.execute_parallel([make_request(1)], resolve_always, batch_size=batch_size)

    async def test_six_requests_run_in_two_delayed_batches(self) -> None:
        requests = [make_request(index) for index in range(6)]

        started = time.monotonic()
        report = await self.scheduler.execute_parallel(
            requests, resolve_always, batch_size=5, inter_batch_delay=0.5
        )
        elapsed = time.monotonic() - started

        self.assertEqual(report.total_processed, 6)
        self.assertEqual(report.successful, 6)
        self.assertLessEqual(self.executor.max_in_flight, 5)
        self.assertGreaterEqual(elapsed, 0.5)
        self.assertGreaterEqual(self.executor.started_at[5] - self.executor.started_at[4], 0.5)

    async def test_results_keep_input_order(self) -> None:
        requests = [make_request(index) for index in range(7)]

        report = await self.scheduler.execute_parallel(requests, resolve_always, batch_size=3, inter_batch_delay=0)

        self.assertEqual(
            [result.wallet for result in report.details],
            [request.wallet.public_key for request in requests],
        )

    async def test_counts_add_up_with_mixed_outcomes(self) -> None:
        requests = [make_request(index) for index in range(4)]
        self.executor.failing_wallets = {requests[1].wallet.public_key, requests[3].wallet.public_key}

        report = await self.scheduler.execute_parallel(requests, resolve_always, inter_batch_delay=0)

        self.assertEqual(report.total_processed, 4)
        self.assertEqual(report.successful, 2)
        self.assertEqual(report.failed, 2)
        self.assertEqual(report.successful + report.failed, len(report.details))

    async def test_pool_resolution_failure_is_isolated(self) -> None:
        requests = [make_request(index) for index in range(3)]
        unlucky = requests[1].wallet.public_key

        async def resolve(request: SwapRequest) -> ResolvedPool:
            if request.wallet.public_key == unlucky:
                raise PoolNotFoundError("No standard liquidity pool found for token pair SOL/RAY")
            return POOL

        report = await self.scheduler.execute_parallel(requests, resolve, inter_batch_delay=0)

        self.assertEqual(report.total_processed, 3)
        self.assertEqual(report.successful, 2)
        failed = report.details[1]
        self.assertFalse(failed.success)
        self.assertEqual(failed.wallet, unlucky)
        self.assertEqual(failed.error_code, "PoolNotFound")
        self.assertEqual(len(self.executor.started_at), 2)


if __name__ == "__main__":
    unittest.main()
