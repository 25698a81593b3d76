from __future__ import annotations

import asyncio
import json
import logging
import struct
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Any, Mapping

import aiohttp
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction
from spl.token.instructions import (
    CloseAccountParams,
    SyncNativeParams,
    close_account,
    create_idempotent_associated_token_account,
    get_associated_token_address,
    sync_native,
)

from swap_engine.common import log_event

from .errors import PoolNotFoundError, SwapError, UnsupportedPoolError
from .types import (
    TOKEN_PROGRAM_ID,
    WSOL_MINT,
    LedgerClient,
    LivePoolState,
    PoolSide,
    PoolSummary,
    ResolvedPool,
    SwapQuote,
    opposite_side,
    to_int,
)

RAYDIUM_API_URL_BY_NETWORK: dict[str, str] = {
    "mainnet-beta": "https://api-v3.raydium.io",
    "devnet": "https://api-v3-devnet.raydium.io",
}

SWAP_BASE_IN_INSTRUCTION = 9
DEFAULT_POOL_FEE_BPS = 25
DEFAULT_COMPUTE_UNIT_LIMIT = 300_000

# Stable pools read the curve from a shared model-data account.
STABLE_MODEL_DATA_BY_PROGRAM: dict[str, str] = {
    "5quBtoiQqxF9Jv6KYKctB59NT3gtJD2Y65kdnB1Uev3h": "CDSr3ssLcRB6XYPJwAfFt18MZvEZp4LjHcvzBVZ45duo",
}
STABLE_PROGRAM_IDS = frozenset(
    {
        "5quBtoiQqxF9Jv6KYKctB59NT3gtJD2Y65kdnB1Uev3h",
        "DRayDdXc1NZQ9C3hRWmoSf8zK4iapgMnjdNZWrfwsP8m",
    }
)


class RaydiumApiError(RuntimeError):
    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


@dataclass(slots=True, frozen=True)
class AmmPoolKeys:
    pool_id: str
    program_id: str
    authority: str
    open_orders: str
    target_orders: str
    vault_a: str
    vault_b: str
    mint_a_program_id: str
    mint_b_program_id: str
    market_program_id: str
    market_id: str
    market_authority: str
    market_base_vault: str
    market_quote_vault: str
    market_bids: str
    market_asks: str
    market_event_queue: str

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AmmPoolKeys":
        vault = payload.get("vault") or {}
        mint_a = payload.get("mintA") or {}
        mint_b = payload.get("mintB") or {}
        try:
            return cls(
                pool_id=str(payload["id"]),
                program_id=str(payload["programId"]),
                authority=str(payload["authority"]),
                open_orders=str(payload["openOrders"]),
                target_orders=str(payload.get("targetOrders") or ""),
                vault_a=str(vault["A"]),
                vault_b=str(vault["B"]),
                mint_a_program_id=str(mint_a.get("programId") or TOKEN_PROGRAM_ID),
                mint_b_program_id=str(mint_b.get("programId") or TOKEN_PROGRAM_ID),
                market_program_id=str(payload["marketProgramId"]),
                market_id=str(payload["marketId"]),
                market_authority=str(payload["marketAuthority"]),
                market_base_vault=str(payload["marketBaseVault"]),
                market_quote_vault=str(payload["marketQuoteVault"]),
                market_bids=str(payload["marketBids"]),
                market_asks=str(payload["marketAsks"]),
                market_event_queue=str(payload["marketEventQueue"]),
            )
        except KeyError as error:
            raise UnsupportedPoolError(f"Pool keys are missing field {error.args[0]!r}") from error

    def token_program_of(self, side: PoolSide) -> str:
        return self.mint_a_program_id if side == "A" else self.mint_b_program_id


def _pool_summary(item: dict[str, Any]) -> PoolSummary:
    mint_a = item.get("mintA") or {}
    mint_b = item.get("mintB") or {}
    return PoolSummary(
        pool_id=str(item.get("id") or ""),
        program_id=str(item.get("programId") or ""),
        pool_type=str(item.get("type") or ""),
        mint_a=str(mint_a.get("address") or ""),
        mint_b=str(mint_b.get("address") or ""),
        decimals_a=to_int(mint_a.get("decimals"), 0),
        decimals_b=to_int(mint_b.get("decimals"), 0),
        symbol_a=str(mint_a.get("symbol") or ""),
        symbol_b=str(mint_b.get("symbol") or ""),
    )


def constant_product_out(amount_in: int, reserve_in: int, reserve_out: int, fee_bps: int) -> int:
    if amount_in <= 0 or reserve_in <= 0 or reserve_out <= 0:
        return 0
    amount_in_after_fee = amount_in * (10_000 - fee_bps) // 10_000
    return reserve_out * amount_in_after_fee // (reserve_in + amount_in_after_fee)


def apply_slippage(amount_out: int, slippage_percent: Decimal) -> int:
    floor = Decimal(amount_out) * (Decimal(100) - slippage_percent) / Decimal(100)
    return max(0, int(floor.to_integral_value(rounding=ROUND_DOWN)))


class RaydiumLiquidityClient:
    """Raydium AMM v4 and stable pools via API v3 plus on-chain vault balances."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        api_url: str,
        ledger: LedgerClient,
        fee_bps: int = DEFAULT_POOL_FEE_BPS,
        compute_unit_price_micro_lamports: int = 0,
        compute_unit_limit: int = DEFAULT_COMPUTE_UNIT_LIMIT,
        http_timeout_seconds: float = 10.0,
        max_attempts: int = 3,
        retry_backoff_seconds: float = 0.5,
    ) -> None:
        self._logger = logger
        self._api_url = api_url.rstrip("/")
        self._ledger = ledger
        self._fee_bps = max(0, int(fee_bps))
        self._compute_unit_price_micro_lamports = max(0, int(compute_unit_price_micro_lamports))
        self._compute_unit_limit = max(1, int(compute_unit_limit))
        self._http_timeout_seconds = max(1.0, float(http_timeout_seconds))
        self._max_attempts = max(1, int(max_attempts))
        self._retry_backoff_seconds = max(0.0, float(retry_backoff_seconds))
        self._session: aiohttp.ClientSession | None = None
        self._pool_keys: dict[str, AmmPoolKeys] = {}

    async def connect(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._http_timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _get_json(self, path: str, params: dict[str, str]) -> Any:
        if self._session is None:
            await self.connect()
        if self._session is None:
            raise RuntimeError("HTTP session is not initialized.")

        endpoint = f"{self._api_url}{path}"
        last_error: Exception | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                async with self._session.get(endpoint, params=params) as response:
                    status = response.status
                    body = await response.text()
            except aiohttp.ClientError as error:
                last_error = error
                if attempt < self._max_attempts:
                    log_event(
                        self._logger,
                        level="warning",
                        event="raydium_api_network_retry",
                        message="Raydium API request failed; retrying",
                        path=path,
                        attempt=attempt,
                        max_attempts=self._max_attempts,
                        error=str(error),
                    )
                    await asyncio.sleep(self._retry_backoff_seconds * attempt)
                    continue
                raise RaydiumApiError(f"Raydium API request failed: {error}") from error

            try:
                parsed = json.loads(body) if body else {}
            except json.JSONDecodeError as error:
                raise RaydiumApiError(f"Raydium API returned non-JSON body: status={status}", status=status) from error

            if status >= 400 or not isinstance(parsed, dict) or not parsed.get("success", False):
                message = parsed.get("msg") if isinstance(parsed, dict) else None
                raise RaydiumApiError(
                    f"Raydium API request failed: path={path} status={status} error={message or parsed}",
                    status=status,
                )
            return parsed.get("data")

        raise RaydiumApiError(f"Raydium API request failed: {last_error}")

    async def find_pools_by_mint_pair(self, mint_a: str, mint_b: str, pool_type: str) -> list[PoolSummary]:
        data = await self._get_json(
            "/pools/info/mint",
            {
                "mint1": mint_a,
                "mint2": mint_b,
                "poolType": pool_type,
                "poolSortField": "default",
                "sortType": "desc",
                "pageSize": "100",
                "page": "1",
            },
        )
        items = data.get("data") if isinstance(data, dict) else data
        return [_pool_summary(item) for item in items or [] if isinstance(item, dict)]

    async def get_pool_by_id(self, pool_id: str) -> PoolSummary:
        data = await self._get_json("/pools/info/ids", {"ids": pool_id})
        items = [item for item in data or [] if isinstance(item, dict)]
        if not items:
            raise PoolNotFoundError(f"Pool {pool_id} not found")
        return _pool_summary(items[0])

    async def get_pool_keys(self, pool_id: str) -> AmmPoolKeys:
        cached = self._pool_keys.get(pool_id)
        if cached is not None:
            return cached

        data = await self._get_json("/pools/key/ids", {"ids": pool_id})
        items = [item for item in data or [] if isinstance(item, dict)]
        if not items:
            raise PoolNotFoundError(f"Pool keys for {pool_id} not found")
        keys = AmmPoolKeys.from_payload(items[0])
        self._pool_keys[pool_id] = keys
        return keys

    async def get_live_pool_state(self, pool_id: str) -> LivePoolState:
        keys = await self.get_pool_keys(pool_id)
        base_reserve, quote_reserve, amm_account = await asyncio.gather(
            self._ledger.get_token_account_balance(keys.vault_a),
            self._ledger.get_token_account_balance(keys.vault_b),
            self._ledger.get_account_info(pool_id),
        )
        if amm_account is None:
            raise PoolNotFoundError(f"AMM account {pool_id} not found on chain")

        data = amm_account.get("data") or b""
        status = int.from_bytes(data[:8], "little") if len(data) >= 8 else 0
        return LivePoolState(base_reserve=base_reserve, quote_reserve=quote_reserve, status=status)

    async def quote_swap(
        self,
        pool: ResolvedPool,
        amount_in: int,
        mint_in: str,
        mint_out: str,
        slippage_percent: Decimal,
    ) -> SwapQuote:
        if mint_in == pool.mint_a and mint_out == pool.mint_b:
            reserve_in, reserve_out = pool.base_reserve, pool.quote_reserve
        elif mint_in == pool.mint_b and mint_out == pool.mint_a:
            reserve_in, reserve_out = pool.quote_reserve, pool.base_reserve
        else:
            raise SwapError(f"Mints {mint_in}/{mint_out} do not match pool {pool.pool_id}")

        amount_out = constant_product_out(amount_in, reserve_in, reserve_out, self._fee_bps)
        if amount_out <= 0:
            raise SwapError(f"Swap of {amount_in} base units quotes zero output from pool {pool.pool_id}")

        min_amount_out = apply_slippage(amount_out, slippage_percent)
        log_event(
            self._logger,
            level="debug",
            event="swap_quoted",
            message="Swap quoted",
            pool_id=pool.pool_id,
            amount_in=str(amount_in),
            amount_out=str(amount_out),
            min_amount_out=str(min_amount_out),
            slippage_percent=str(slippage_percent),
        )
        return SwapQuote(amount_out=amount_out, min_amount_out=min_amount_out)

    def _swap_instruction(
        self,
        keys: AmmPoolKeys,
        *,
        amount_in: int,
        min_amount_out: int,
        user_source: Pubkey,
        user_destination: Pubkey,
        owner: Pubkey,
    ) -> Instruction:
        def meta(address: str, *, writable: bool = True) -> AccountMeta:
            return AccountMeta(Pubkey.from_string(address), is_signer=False, is_writable=writable)

        accounts = [
            meta(TOKEN_PROGRAM_ID, writable=False),
            meta(keys.pool_id),
            meta(keys.authority, writable=False),
            meta(keys.open_orders),
        ]
        if keys.program_id in STABLE_PROGRAM_IDS:
            model_data = STABLE_MODEL_DATA_BY_PROGRAM.get(keys.program_id)
            if model_data is None:
                raise UnsupportedPoolError(f"No model data account known for stable program {keys.program_id}")
            accounts.extend([meta(keys.vault_a), meta(keys.vault_b), meta(model_data, writable=False)])
        else:
            accounts.extend([meta(keys.target_orders), meta(keys.vault_a), meta(keys.vault_b)])

        accounts.extend(
            [
                meta(keys.market_program_id, writable=False),
                meta(keys.market_id),
                meta(keys.market_bids),
                meta(keys.market_asks),
                meta(keys.market_event_queue),
                meta(keys.market_base_vault),
                meta(keys.market_quote_vault),
                meta(keys.market_authority, writable=False),
                AccountMeta(user_source, is_signer=False, is_writable=True),
                AccountMeta(user_destination, is_signer=False, is_writable=True),
                AccountMeta(owner, is_signer=True, is_writable=False),
            ]
        )
        data = struct.pack("<BQQ", SWAP_BASE_IN_INSTRUCTION, amount_in, min_amount_out)
        return Instruction(Pubkey.from_string(keys.program_id), data, accounts)

    async def build_swap_transaction(
        self,
        pool: ResolvedPool,
        amount_in: int,
        min_amount_out: int,
        side: PoolSide,
        owner: Keypair,
        token_accounts: Mapping[str, str] | None = None,
    ) -> VersionedTransaction:
        keys = await self.get_pool_keys(pool.pool_id)
        owner_pubkey = owner.pubkey()
        known_accounts = dict(token_accounts or {})
        out_side = opposite_side(side)
        mint_in = pool.mint_of(side)
        mint_out = pool.mint_of(out_side)

        instructions: list[Instruction] = []
        cleanup: list[Instruction] = []
        if self._compute_unit_price_micro_lamports > 0:
            instructions.append(set_compute_unit_limit(self._compute_unit_limit))
            instructions.append(set_compute_unit_price(self._compute_unit_price_micro_lamports))

        def wsol_account() -> Pubkey:
            wsol_program = Pubkey.from_string(TOKEN_PROGRAM_ID)
            account = get_associated_token_address(owner_pubkey, Pubkey.from_string(WSOL_MINT), wsol_program)
            instructions.append(
                create_idempotent_associated_token_account(
                    owner_pubkey,
                    owner_pubkey,
                    Pubkey.from_string(WSOL_MINT),
                    wsol_program,
                )
            )
            cleanup.append(
                close_account(
                    CloseAccountParams(
                        program_id=wsol_program,
                        account=account,
                        dest=owner_pubkey,
                        owner=owner_pubkey,
                    )
                )
            )
            return account

        if mint_in == WSOL_MINT:
            user_source = wsol_account()
            instructions.append(
                transfer(TransferParams(from_pubkey=owner_pubkey, to_pubkey=user_source, lamports=amount_in))
            )
            instructions.append(
                sync_native(SyncNativeParams(program_id=Pubkey.from_string(TOKEN_PROGRAM_ID), account=user_source))
            )
        elif mint_in in known_accounts:
            user_source = Pubkey.from_string(known_accounts[mint_in])
        else:
            user_source = get_associated_token_address(
                owner_pubkey,
                Pubkey.from_string(mint_in),
                Pubkey.from_string(keys.token_program_of(side)),
            )

        if mint_out == WSOL_MINT:
            user_destination = wsol_account()
        elif mint_out in known_accounts:
            user_destination = Pubkey.from_string(known_accounts[mint_out])
        else:
            out_program = Pubkey.from_string(keys.token_program_of(out_side))
            mint_out_pubkey = Pubkey.from_string(mint_out)
            user_destination = get_associated_token_address(owner_pubkey, mint_out_pubkey, out_program)
            instructions.append(
                create_idempotent_associated_token_account(owner_pubkey, owner_pubkey, mint_out_pubkey, out_program)
            )

        instructions.append(
            self._swap_instruction(
                keys,
                amount_in=amount_in,
                min_amount_out=min_amount_out,
                user_source=user_source,
                user_destination=user_destination,
                owner=owner_pubkey,
            )
        )
        instructions.extend(cleanup)

        blockhash = await self._ledger.get_latest_blockhash()
        message = MessageV0.try_compile(owner_pubkey, instructions, [], Hash.from_string(blockhash))
        transaction = VersionedTransaction(message, [owner])
        log_event(
            self._logger,
            level="debug",
            event="swap_transaction_built",
            message="Swap transaction built",
            pool_id=pool.pool_id,
            wallet=str(owner_pubkey),
            instruction_count=len(instructions),
            blockhash=blockhash,
        )
        return transaction

    async def submit(self, transaction: VersionedTransaction) -> str:
        return await self._ledger.send_raw_transaction(transaction, skip_preflight=False)
