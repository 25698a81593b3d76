from __future__ import annotations

import logging
import random
import unittest
from decimal import Decimal
from unittest.mock import AsyncMock

from solders.keypair import Keypair

from swap_engine.storage import InMemoryJobStore, StoreUnavailableError
from swap_engine.trading.orders import OrderProcessor, SwapPolicy, normalize_sampling_policy
from swap_engine.trading.pools import PoolResolver
from swap_engine.trading.scheduler import BatchScheduler
from swap_engine.trading.types import (
    RAY_MINT,
    RAY_TOKEN,
    SOL_TOKEN,
    WSOL_MINT,
    PoolSummary,
    ResolvedPool,
    SwapRequest,
    SwapResult,
    Wallet,
)

AMM_V4 = "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"

POLICY = SwapPolicy(
    input_token=SOL_TOKEN,
    output_token=RAY_TOKEN,
    amount=Decimal("0.0001"),
    slippage_percent=Decimal("0.5"),
)


class StubExecutor:
    def __init__(self) -> None:
        self.requests: list[SwapRequest] = []

    async def execute(self, request: SwapRequest, pool: ResolvedPool) -> SwapResult:
        self.requests.append(request)
        return SwapResult.succeeded(
            wallet=request.wallet.public_key,
            signature=f"sig-{request.wallet.wallet_id}",
            amount_in="0.0001",
            amount_out="0.01",
        )


class OrderProcessorTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.logger = logging.getLogger("test.orders")
        self.store = InMemoryJobStore()
        self.executor = StubExecutor()
        self.liquidity = AsyncMock()
        self.liquidity.find_pools_by_mint_pair.return_value = [
            PoolSummary(
                pool_id="pool-1",
                program_id=AMM_V4,
                pool_type="Standard",
                mint_a=WSOL_MINT,
                mint_b=RAY_MINT,
                decimals_a=9,
                decimals_b=6,
            )
        ]
        self.report_sink = AsyncMock()

    def make_processor(self, *, sampling_policy: str = "registered", seed: int = 7) -> OrderProcessor:
        return OrderProcessor(
            logger=self.logger,
            store=self.store,
            scheduler=BatchScheduler(logger=self.logger, executor=self.executor),
            pool_resolver=PoolResolver(logger=self.logger, liquidity=self.liquidity, allowed_program_ids=[AMM_V4]),
            policy=POLICY,
            sample_size=2,
            sampling_policy=sampling_policy,
            inter_batch_delay=0,
            report_sink=self.report_sink,
            rng=random.Random(seed),
        )

    async def register(self, *wallet_ids: int) -> dict[int, Keypair]:
        keypairs = {wallet_id: Keypair() for wallet_id in wallet_ids}
        await self.store.register_wallets(
            [Wallet(wallet_id=wallet_id, secret=str(keypair)) for wallet_id, keypair in keypairs.items()]
        )
        return keypairs

    def test_unknown_sampling_policy_falls_back_to_registered(self) -> None:
        self.assertEqual(normalize_sampling_policy("RANGE"), "range")
        self.assertEqual(normalize_sampling_policy("whatever"), "registered")
        self.assertEqual(normalize_sampling_policy(None), "registered")

    async def test_registered_sampling_only_returns_known_ids(self) -> None:
        await self.register(2, 40, 900)
        processor = self.make_processor()

        sample = await processor.sample_wallet_batch(25)

        self.assertEqual(len(sample), 25)
        self.assertTrue(set(sample) <= {2, 40, 900})

    async def test_range_sampling_stays_within_bounds(self) -> None:
        await self.register(10, 20)
        processor = self.make_processor(sampling_policy="range")

        sample = await processor.sample_wallet_batch(50)

        self.assertEqual(len(sample), 50)
        self.assertTrue(all(10 <= wallet_id <= 20 for wallet_id in sample))

    async def test_empty_registry_creates_no_order(self) -> None:
        processor = self.make_processor()

        self.assertEqual(await processor.sample_wallet_batch(3), [])
        self.assertIsNone(await processor.create_order_from_sample())
        self.assertIsNone(await self.store.claim_oldest_pending())

    async def test_tick_without_pending_order_returns_none(self) -> None:
        processor = self.make_processor()

        self.assertIsNone(await processor.on_scheduler_tick())
        self.assertEqual(self.executor.requests, [])
        self.report_sink.assert_not_awaited()

    async def test_tick_processes_and_finishes_oldest_order(self) -> None:
        keypairs = await self.register(1, 2)
        processor = self.make_processor()
        order = await self.store.create_order([2, 1])

        report = await processor.on_scheduler_tick()

        self.assertEqual(report.total_processed, 2)
        self.assertEqual(report.successful, 2)
        self.assertEqual(
            [result.wallet for result in report.details],
            [str(keypairs[2].pubkey()), str(keypairs[1].pubkey())],
        )
        self.assertEqual([request.amount for request in self.executor.requests], [Decimal("0.0001")] * 2)
        finished = await self.store.get_order(order.order_id)
        self.assertEqual(finished.status, "finished")
        self.report_sink.assert_awaited_once()
        archived_order, archived_report = self.report_sink.await_args.args
        self.assertEqual(archived_order.order_id, order.order_id)
        self.assertIs(archived_report, report)

    async def test_missing_and_invalid_wallets_become_failed_results(self) -> None:
        await self.register(1)
        await self.store.register_wallets([Wallet(wallet_id=3, secret="not-a-keypair")])
        processor = self.make_processor()
        await self.store.create_order([1, 2, 3])

        report = await processor.on_scheduler_tick()

        self.assertEqual(report.total_processed, 3)
        self.assertEqual(report.successful, 1)
        self.assertEqual(report.details[1].wallet, "wallet:2")
        self.assertEqual(report.details[1].error_code, "WalletNotFound")
        self.assertEqual(report.details[2].error_code, "InvalidWallet")
        self.assertEqual(len(self.executor.requests), 1)

    async def test_report_sink_failure_does_not_block_finish(self) -> None:
        await self.register(1)
        self.report_sink.side_effect = RuntimeError("firestore down")
        processor = self.make_processor()
        order = await self.store.create_order([1])

        report = await processor.on_scheduler_tick()

        self.assertEqual(report.successful, 1)
        finished = await self.store.get_order(order.order_id)
        self.assertEqual(finished.status, "finished")

    async def test_store_errors_propagate_instead_of_becoming_results(self) -> None:
        await self.register(1)
        processor = self.make_processor()
        order = await self.store.create_order([1])
        self.store.get_wallet = AsyncMock(side_effect=StoreUnavailableError("redis down"))

        with self.assertRaises(StoreUnavailableError):
            await processor.on_scheduler_tick()

        self.assertEqual(self.executor.requests, [])
        self.report_sink.assert_not_awaited()
        claimed = await self.store.get_order(order.order_id)
        self.assertEqual(claimed.status, "started")

    async def test_finish_errors_propagate_after_processing(self) -> None:
        await self.register(1)
        processor = self.make_processor()
        await self.store.create_order([1])
        self.store.mark_finished = AsyncMock(side_effect=StoreUnavailableError("redis down"))

        with self.assertRaises(StoreUnavailableError):
            await processor.on_scheduler_tick()

        self.assertEqual(len(self.executor.requests), 1)

    async def test_direct_swap_requests_use_the_scheduler(self) -> None:
        processor = self.make_processor()
        payload = {
            "userKeypair": str(Keypair()),
            "inputToken": {"programId": SOL_TOKEN.program_id, "mint": WSOL_MINT, "decimals": 9},
            "outputToken": {"programId": RAY_TOKEN.program_id, "mint": RAY_MINT, "decimals": 6},
            "amount": "0.001",
            "slippage": 1,
        }

        report = await processor.execute_swap_requests([SwapRequest.from_payload(payload)])

        self.assertEqual(report.total_processed, 1)
        self.assertEqual(self.executor.requests[0].slippage_percent, Decimal("1"))
        self.liquidity.find_pools_by_mint_pair.assert_awaited_once()


if __name__ == "__main__":
    unittest.main()
