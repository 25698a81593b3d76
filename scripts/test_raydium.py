from __future__ import annotations

import logging
import struct
import unittest
from decimal import Decimal
from unittest.mock import AsyncMock

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from swap_engine.trading.errors import PoolNotFoundError, SwapError, UnsupportedPoolError
from swap_engine.trading.raydium import (
    SWAP_BASE_IN_INSTRUCTION,
    AmmPoolKeys,
    RaydiumLiquidityClient,
    _pool_summary,
    apply_slippage,
    constant_product_out,
)
from swap_engine.trading.types import RAY_MINT, TOKEN_PROGRAM_ID, WSOL_MINT, ResolvedPool

AMM_V4 = "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"
STABLE = "5quBtoiQqxF9Jv6KYKctB59NT3gtJD2Y65kdnB1Uev3h"


def unique() -> str:
    return str(Pubkey.new_unique())


def make_keys_payload(pool_id: str, program_id: str = AMM_V4) -> dict[str, object]:
    return {
        "id": pool_id,
        "programId": program_id,
        "authority": unique(),
        "openOrders": unique(),
        "targetOrders": unique(),
        "vault": {"A": unique(), "B": unique()},
        "mintA": {"address": WSOL_MINT, "programId": TOKEN_PROGRAM_ID},
        "mintB": {"address": RAY_MINT, "programId": TOKEN_PROGRAM_ID},
        "marketProgramId": unique(),
        "marketId": unique(),
        "marketAuthority": unique(),
        "marketBaseVault": unique(),
        "marketQuoteVault": unique(),
        "marketBids": unique(),
        "marketAsks": unique(),
        "marketEventQueue": unique(),
    }


def make_pool(pool_id: str, *, base_reserve: int = 0, quote_reserve: int = 0) -> ResolvedPool:
    return ResolvedPool(
        pool_id=pool_id,
        program_id=AMM_V4,
        mint_a=WSOL_MINT,
        mint_b=RAY_MINT,
        decimals_a=9,
        decimals_b=6,
        base_reserve=base_reserve,
        quote_reserve=quote_reserve,
    )


class PricingTests(unittest.TestCase):
    def test_constant_product_applies_fee_and_floors(self) -> None:
        # 1000 in, 25 bps fee -> 997 effective; 1_000_000 * 997 // 1_000_997
        self.assertEqual(constant_product_out(1_000, 1_000_000, 1_000_000, 25), 996)
        self.assertEqual(constant_product_out(1_000, 1_000_000, 1_000_000, 0), 999)

    def test_constant_product_with_empty_inputs(self) -> None:
        self.assertEqual(constant_product_out(0, 1_000, 1_000, 25), 0)
        self.assertEqual(constant_product_out(10, 0, 1_000, 25), 0)

    def test_apply_slippage_rounds_down(self) -> None:
        self.assertEqual(apply_slippage(1_000, Decimal("0.5")), 995)
        self.assertEqual(apply_slippage(999, Decimal("0.5")), 994)
        self.assertEqual(apply_slippage(1_000, Decimal("0")), 1_000)
        self.assertEqual(apply_slippage(1_000, Decimal("100")), 0)

    def test_pool_summary_from_api_item(self) -> None:
        summary = _pool_summary(
            {
                "id": "pool",
                "programId": AMM_V4,
                "type": "Standard",
                "mintA": {"address": WSOL_MINT, "decimals": 9, "symbol": "WSOL"},
                "mintB": {"address": RAY_MINT, "decimals": 6, "symbol": "RAY"},
            }
        )

        self.assertEqual(summary.pool_type, "Standard")
        self.assertEqual((summary.decimals_a, summary.decimals_b), (9, 6))
        self.assertEqual(summary.symbol_b, "RAY")

    def test_pool_keys_missing_field_is_unsupported(self) -> None:
        payload = make_keys_payload("pool")
        del payload["marketBids"]

        with self.assertRaises(UnsupportedPoolError):
            AmmPoolKeys.from_payload(payload)


class RaydiumLiquidityClientTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.ledger = AsyncMock()
        self.ledger.get_latest_blockhash.return_value = str(Hash.default())
        self.client = RaydiumLiquidityClient(
            logger=logging.getLogger("test.raydium"),
            api_url="https://api-v3-devnet.raydium.io/",
            ledger=self.ledger,
        )
        self.pool_id = unique()
        self.keys = AmmPoolKeys.from_payload(make_keys_payload(self.pool_id))
        self.client._pool_keys[self.pool_id] = self.keys

    async def test_quote_in_both_directions(self) -> None:
        pool = make_pool(self.pool_id, base_reserve=1_000_000, quote_reserve=4_000_000)

        forward = await self.client.quote_swap(pool, 1_000, WSOL_MINT, RAY_MINT, Decimal("1"))
        backward = await self.client.quote_swap(pool, 4_000, RAY_MINT, WSOL_MINT, Decimal("1"))

        self.assertEqual(forward.amount_out, constant_product_out(1_000, 1_000_000, 4_000_000, 25))
        self.assertEqual(forward.min_amount_out, apply_slippage(forward.amount_out, Decimal("1")))
        self.assertEqual(backward.amount_out, constant_product_out(4_000, 4_000_000, 1_000_000, 25))

    async def test_quote_rejects_foreign_mints_and_zero_output(self) -> None:
        pool = make_pool(self.pool_id, base_reserve=1_000_000, quote_reserve=10)

        with self.assertRaises(SwapError):
            await self.client.quote_swap(pool, 1_000, WSOL_MINT, WSOL_MINT, Decimal("1"))
        with self.assertRaises(SwapError):
            await self.client.quote_swap(pool, 1, WSOL_MINT, RAY_MINT, Decimal("1"))

    async def test_pool_lookups_parse_api_payloads(self) -> None:
        item = {
            "id": self.pool_id,
            "programId": AMM_V4,
            "type": "Standard",
            "mintA": {"address": WSOL_MINT, "decimals": 9},
            "mintB": {"address": RAY_MINT, "decimals": 6},
        }
        self.client._get_json = AsyncMock(side_effect=[{"count": 1, "data": [item]}, [item], []])

        pools = await self.client.find_pools_by_mint_pair(WSOL_MINT, RAY_MINT, "standard")
        pool = await self.client.get_pool_by_id(self.pool_id)

        self.assertEqual([summary.pool_id for summary in pools], [self.pool_id])
        self.assertEqual(pool.decimals_b, 6)
        path, params = self.client._get_json.await_args_list[0].args
        self.assertEqual(path, "/pools/info/mint")
        self.assertEqual(params["poolType"], "standard")
        with self.assertRaises(PoolNotFoundError):
            await self.client.get_pool_by_id("missing")

    async def test_live_state_reads_vaults_and_status(self) -> None:
        self.ledger.get_token_account_balance.side_effect = [5_000, 7_000]
        self.ledger.get_account_info.return_value = {"data": (6).to_bytes(8, "little") + b"\x00" * 16}

        state = await self.client.get_live_pool_state(self.pool_id)

        self.assertEqual((state.base_reserve, state.quote_reserve, state.status), (5_000, 7_000, 6))
        vaults = [call.args[0] for call in self.ledger.get_token_account_balance.await_args_list]
        self.assertEqual(vaults, [self.keys.vault_a, self.keys.vault_b])

    def test_amm_v4_swap_instruction_layout(self) -> None:
        owner = Pubkey.new_unique()
        instruction = self.client._swap_instruction(
            self.keys,
            amount_in=100_000,
            min_amount_out=995,
            user_source=Pubkey.new_unique(),
            user_destination=Pubkey.new_unique(),
            owner=owner,
        )

        self.assertEqual(bytes(instruction.data), struct.pack("<BQQ", SWAP_BASE_IN_INSTRUCTION, 100_000, 995))
        self.assertEqual(len(instruction.accounts), 18)
        self.assertEqual(str(instruction.accounts[4].pubkey), self.keys.target_orders)
        self.assertEqual(instruction.accounts[-1].pubkey, owner)
        self.assertTrue(instruction.accounts[-1].is_signer)

    def test_stable_swap_instruction_uses_model_data(self) -> None:
        keys = AmmPoolKeys.from_payload(make_keys_payload(unique(), program_id=STABLE))

        instruction = self.client._swap_instruction(
            keys,
            amount_in=1,
            min_amount_out=1,
            user_source=Pubkey.new_unique(),
            user_destination=Pubkey.new_unique(),
            owner=Pubkey.new_unique(),
        )

        self.assertEqual(len(instruction.accounts), 18)
        self.assertEqual(str(instruction.accounts[6].pubkey), "CDSr3ssLcRB6XYPJwAfFt18MZvEZp4LjHcvzBVZ45duo")

    async def test_build_wraps_sol_and_creates_output_account(self) -> None:
        owner = Keypair()
        pool = make_pool(self.pool_id, base_reserve=1_000_000, quote_reserve=4_000_000)

        transaction = await self.client.build_swap_transaction(pool, 1_000, 990, "A", owner, {})

        # create WSOL ATA, transfer, sync native, create output ATA, swap, close WSOL
        self.assertEqual(len(transaction.message.instructions), 6)
        self.assertEqual(transaction.message.account_keys[0], owner.pubkey())
        self.ledger.get_latest_blockhash.assert_awaited_once()

    async def test_build_reuses_known_output_account(self) -> None:
        owner = Keypair()
        pool = make_pool(self.pool_id, base_reserve=1_000_000, quote_reserve=4_000_000)
        existing = unique()

        transaction = await self.client.build_swap_transaction(pool, 1_000, 990, "A", owner, {RAY_MINT: existing})

        self.assertEqual(len(transaction.message.instructions), 5)
        self.assertIn(Pubkey.from_string(existing), transaction.message.account_keys)


if __name__ == "__main__":
    unittest.main()
