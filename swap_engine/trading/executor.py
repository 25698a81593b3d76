from __future__ import annotations

import asyncio
import logging
from typing import Any

from swap_engine.common import log_event, with_timeout

from .amounts import AmountConverter
from .errors import ConfirmationTimeoutError, MintMismatchError, SubmissionFailedError, error_code
from .pools import PoolResolver
from .sessions import WalletSession, WalletSessionPool
from .types import (
    LedgerClient,
    LiquidityClient,
    PoolSide,
    ResolvedPool,
    SwapRequest,
    SwapResult,
    SwapState,
    opposite_side,
)


class SwapExecutor:
    """Drives one swap request from quote to confirmation.

    ``execute`` never raises for swap-path problems: every failure, including
    timeouts of external calls, comes back as a failed ``SwapResult`` carrying
    the wallet public key. Only task cancellation propagates.

    A submitted transaction is never re-sent. A retry is a new economic event
    and belongs to whoever issues a new request.
    """

    def __init__(
        self,
        *,
        logger: logging.Logger,
        liquidity: LiquidityClient,
        ledger: LedgerClient,
        pool_resolver: PoolResolver,
        amounts: AmountConverter,
        sessions: WalletSessionPool,
        call_timeout_seconds: float = 30.0,
        confirm_timeout_seconds: float = 60.0,
        dry_run: bool = False,
    ) -> None:
        self._logger = logger
        self._liquidity = liquidity
        self._ledger = ledger
        self._pools = pool_resolver
        self._amounts = amounts
        self._sessions = sessions
        self._call_timeout_seconds = max(0.001, float(call_timeout_seconds))
        self._confirm_timeout_seconds = max(0.001, float(confirm_timeout_seconds))
        self._dry_run = dry_run

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    def _log_state(self, state: SwapState | str, *, wallet: str, pool_id: str, level: str = "debug", **fields: Any) -> None:
        log_event(
            self._logger,
            level=level,
            event="swap_state",
            message=f"Swap {state}",
            state=state,
            wallet=wallet,
            pool_id=pool_id,
            **fields,
        )

    async def execute(self, request: SwapRequest, pool: ResolvedPool) -> SwapResult:
        wallet = request.wallet.public_key
        try:
            return await self._execute(request, pool)
        except asyncio.CancelledError:
            raise
        except Exception as error:
            code = error_code(error)
            message = str(error) or type(error).__name__
            self._log_state(
                "failed",
                wallet=wallet,
                pool_id=pool.pool_id,
                level="warning",
                error_code=code,
                error=message,
            )
            return SwapResult.failed(
                wallet=wallet,
                error=message,
                error_code=code,
                signature=getattr(error, "signature", None),
            )

    async def _execute(self, request: SwapRequest, pool: ResolvedPool) -> SwapResult:
        wallet = request.wallet.public_key
        input_token = request.input_token
        output_token = request.output_token

        self._log_state("quoting", wallet=wallet, pool_id=pool.pool_id)
        side = self._pools.side_of(pool, input_token.mint)
        if pool.mint_of(opposite_side(side)) != output_token.mint:
            raise MintMismatchError(f"Output mint {output_token.mint} does not match pool {pool.pool_id}")
        self._pools.validate_program(pool)

        live_pool = await self._pools.load_live_state(pool)

        self._amounts.validate_swap_amount(request.amount, input_token.decimals)
        amount_in = self._amounts.to_base_units(request.amount, input_token.decimals)
        self._amounts.validate_against_reserves(amount_in, live_pool.reserve_of(side))

        quote = await with_timeout(
            self._liquidity.quote_swap(
                live_pool,
                amount_in,
                input_token.mint,
                output_token.mint,
                request.slippage_percent,
            ),
            timeout_seconds=self._call_timeout_seconds,
            operation="quote_swap",
        )
        amount_in_text = self._amounts.format_base_units(amount_in, input_token.decimals)
        amount_out_text = self._amounts.format_base_units(quote.amount_out, output_token.decimals)

        if self._dry_run:
            self._log_state(
                "dry_run",
                wallet=wallet,
                pool_id=pool.pool_id,
                level="info",
                amount_in=amount_in_text,
                amount_out=amount_out_text,
                min_amount_out=str(quote.min_amount_out),
            )
            return SwapResult.succeeded(
                wallet=wallet,
                signature=None,
                amount_in=amount_in_text,
                amount_out=amount_out_text,
            )

        self._log_state("building", wallet=wallet, pool_id=pool.pool_id)
        session = self._sessions.acquire(request.wallet)
        try:
            signature = await self._submit_and_confirm(
                request, live_pool, session, amount_in, quote.min_amount_out, side
            )
        finally:
            self._sessions.release(request.wallet)

        self._log_state("confirmed", wallet=wallet, pool_id=pool.pool_id, signature=signature)
        log_event(
            self._logger,
            level="info",
            event="swap_completed",
            message=(
                f"Swapped {amount_in_text} {input_token.label} "
                f"for {amount_out_text} {output_token.label}"
            ),
            wallet=wallet,
            signature=signature,
            amount_in=amount_in_text,
            amount_out=amount_out_text,
        )
        return SwapResult.succeeded(
            wallet=wallet,
            signature=signature,
            amount_in=amount_in_text,
            amount_out=amount_out_text,
        )

    async def _submit_and_confirm(
        self,
        request: SwapRequest,
        pool: ResolvedPool,
        session: WalletSession,
        amount_in: int,
        min_amount_out: int,
        side: PoolSide,
    ) -> str:
        wallet = request.wallet.public_key
        snapshot = await session.refresh_token_accounts()
        transaction = await with_timeout(
            self._liquidity.build_swap_transaction(
                pool,
                amount_in,
                min_amount_out,
                side,
                session.keypair,
                snapshot.token_accounts,
            ),
            timeout_seconds=self._call_timeout_seconds,
            operation="build_swap_transaction",
        )

        self._log_state("submitting", wallet=wallet, pool_id=pool.pool_id)
        try:
            signature = await with_timeout(
                self._liquidity.submit(transaction),
                timeout_seconds=self._call_timeout_seconds,
                operation="submit",
            )
        except asyncio.CancelledError:
            raise
        except SubmissionFailedError:
            raise
        except Exception as error:
            raise SubmissionFailedError(f"Swap transaction submission failed: {error}") from error

        try:
            await with_timeout(
                self._ledger.confirm_transaction(signature),
                timeout_seconds=self._confirm_timeout_seconds,
                operation="confirm_transaction",
            )
        except TimeoutError as error:
            raise ConfirmationTimeoutError(
                f"Transaction {signature} was not confirmed within {self._confirm_timeout_seconds:g}s",
                signature=signature,
            ) from error
        return signature
