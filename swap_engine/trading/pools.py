from __future__ import annotations

import logging
from typing import Iterable

from swap_engine.common import log_event, with_timeout

from .errors import MintMismatchError, PoolNotFoundError, UnsupportedPoolError
from .types import LiquidityClient, PoolSide, ResolvedPool, Token

STANDARD_POOL_TYPE = "standard"


class PoolResolver:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        liquidity: LiquidityClient,
        allowed_program_ids: Iterable[str],
        call_timeout_seconds: float = 30.0,
    ) -> None:
        self._logger = logger
        self._liquidity = liquidity
        self._allowed_program_ids = frozenset(
            program_id.strip() for program_id in allowed_program_ids if program_id and program_id.strip()
        )
        self._call_timeout_seconds = call_timeout_seconds

    @property
    def allowed_program_ids(self) -> frozenset[str]:
        return self._allowed_program_ids

    async def find_pool(self, input_token: Token, output_token: Token) -> ResolvedPool:
        candidates = await with_timeout(
            self._liquidity.find_pools_by_mint_pair(input_token.mint, output_token.mint, STANDARD_POOL_TYPE),
            timeout_seconds=self._call_timeout_seconds,
            operation="find_pools_by_mint_pair",
        )
        pair = {input_token.mint, output_token.mint}
        standard = [
            candidate
            for candidate in candidates
            if candidate.pool_type.strip().lower() == STANDARD_POOL_TYPE
            and {candidate.mint_a, candidate.mint_b} == pair
        ]
        if not standard:
            raise PoolNotFoundError(
                "No standard liquidity pool found for token pair "
                f"{input_token.label}/{output_token.label}"
            )

        summary = standard[0]
        log_event(
            self._logger,
            level="debug",
            event="pool_found",
            message="Found pool",
            pool_id=summary.pool_id,
            pool_type=summary.pool_type,
            program_id=summary.program_id,
            input_mint=input_token.mint,
            output_mint=output_token.mint,
            pool_mint_a=summary.mint_a,
            pool_mint_b=summary.mint_b,
            candidate_count=len(candidates),
        )
        return ResolvedPool.from_summary(summary)

    def validate_program(self, pool: ResolvedPool) -> None:
        valid = pool.program_id in self._allowed_program_ids
        log_event(
            self._logger,
            level="debug",
            event="pool_program_checked",
            message="Checking AMM validity",
            pool_id=pool.pool_id,
            program_id=pool.program_id,
            valid=valid,
        )
        if not valid:
            raise UnsupportedPoolError(f"Target pool is not an AMM pool. Pool program ID: {pool.program_id}")

    async def load_live_state(self, pool: ResolvedPool) -> ResolvedPool:
        state = await with_timeout(
            self._liquidity.get_live_pool_state(pool.pool_id),
            timeout_seconds=self._call_timeout_seconds,
            operation="get_live_pool_state",
        )
        return pool.with_live_state(state)

    @staticmethod
    def side_of(pool: ResolvedPool, mint: str) -> PoolSide:
        if mint == pool.mint_a:
            return "A"
        if mint == pool.mint_b:
            return "B"
        raise MintMismatchError(f"Input mint {mint} does not match pool {pool.pool_id}")
