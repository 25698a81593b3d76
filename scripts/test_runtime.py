from __future__ import annotations

import asyncio
import logging
import os
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from swap_engine.runtime.loop import close_components, run_periodic
from swap_engine.runtime.settings import AppSettings
from swap_engine.trading.types import AMM_PROGRAM_IDS_BY_NETWORK


class AppSettingsTests(unittest.TestCase):
    def test_defaults_target_devnet_dry_run(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            settings = AppSettings.from_env()

        self.assertEqual(settings.network, "devnet")
        self.assertEqual(settings.rpc_url, "https://api.devnet.solana.com")
        self.assertEqual(settings.amm_program_ids, AMM_PROGRAM_IDS_BY_NETWORK["devnet"])
        self.assertEqual(settings.batch_size, 5)
        self.assertEqual(settings.inter_batch_delay_seconds, 0.5)
        self.assertEqual(settings.wallet_sampling_policy, "registered")
        self.assertEqual(settings.job_store_backend, "redis")
        self.assertTrue(settings.dry_run)

    def test_mainnet_overrides(self) -> None:
        env = {
            "SOLANA_NETWORK": "mainnet-beta",
            "MAIN_RPC_URL": "https://rpc.example.com",
            "RAYDIUM_AMM_PROGRAM_IDS": "ProgA, ProgB",
            "SWAP_BATCH_SIZE": "not-a-number",
            "JOB_STORE_BACKEND": "memory",
            "DRY_RUN": "false",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = AppSettings.from_env()

        self.assertEqual(settings.network, "mainnet-beta")
        self.assertEqual(settings.rpc_url, "https://rpc.example.com")
        self.assertEqual(settings.amm_program_ids, ("ProgA", "ProgB"))
        self.assertEqual(settings.batch_size, 5)
        self.assertEqual(settings.job_store_backend, "memory")
        self.assertFalse(settings.dry_run)


class RunPeriodicTests(unittest.IsolatedAsyncioTestCase):
    async def test_failed_tick_is_logged_and_retried(self) -> None:
        stop_event = asyncio.Event()
        calls = 0

        async def action() -> None:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("store unavailable")
            stop_event.set()

        with self.assertLogs("test.runtime", level="ERROR") as captured:
            await asyncio.wait_for(
                run_periodic(
                    logger=logging.getLogger("test.runtime"),
                    stop_event=stop_event,
                    name="swap_tick",
                    interval_seconds=0.01,
                    error_backoff_seconds=0.01,
                    action=action,
                ),
                timeout=2,
            )

        self.assertEqual(calls, 2)
        self.assertEqual(captured.records[0].event, "swap_tick_error")

    async def test_close_components_continues_after_failure(self) -> None:
        broken = MagicMock()
        broken.close = AsyncMock(side_effect=RuntimeError("already closed"))
        healthy = MagicMock()
        healthy.close = AsyncMock()

        await close_components(
            logger=logging.getLogger("test.runtime"),
            phase="shutdown",
            components=[("ledger", broken), ("storage", healthy)],
        )

        healthy.close.assert_awaited_once()


if __name__ == "__main__":
    unittest.main()
