from __future__ import annotations

import asyncio
import logging
import time
from typing import Sequence

from swap_engine.common import log_event

from .errors import error_code
from .executor import SwapExecutor
from .types import BatchReport, ResolvedPool, ResolvePoolFn, SwapRequest, SwapResult

DEFAULT_BATCH_SIZE = 5
DEFAULT_INTER_BATCH_DELAY_SECONDS = 0.5


def chunked(items: Sequence[int], size: int) -> list[list[int]]:
    return [list(items[start : start + size]) for start in range(0, len(items), size)]


class BatchScheduler:
    """Runs swap requests in rate-limited batches.

    Every request's pool is resolved once up front. Requests whose pool could
    be resolved then run in consecutive groups of ``batch_size``: a group fans
    out fully and settles before the next one starts, with
    ``inter_batch_delay`` seconds between groups. Results keep input order.
    """

    def __init__(self, *, logger: logging.Logger, executor: SwapExecutor) -> None:
        self._logger = logger
        self._executor = executor

    async def _resolve(
        self,
        request: SwapRequest,
        resolve_pool: ResolvePoolFn,
    ) -> ResolvedPool | SwapResult:
        try:
            return await resolve_pool(request)
        except asyncio.CancelledError:
            raise
        except Exception as error:
            code = error_code(error)
            message = str(error) or type(error).__name__
            log_event(
                self._logger,
                level="warning",
                event="pool_resolution_failed",
                message="Pool resolution failed",
                wallet=request.wallet.public_key,
                input_mint=request.input_token.mint,
                output_mint=request.output_token.mint,
                error_code=code,
                error=message,
            )
            return SwapResult.failed(wallet=request.wallet.public_key, error=message, error_code=code)

    async def execute_parallel(
        self,
        requests: Sequence[SwapRequest],
        resolve_pool: ResolvePoolFn,
        batch_size: int = DEFAULT_BATCH_SIZE,
        inter_batch_delay: float = DEFAULT_INTER_BATCH_DELAY_SECONDS,
    ) -> BatchReport:
        if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
            raise ValueError(f"batch_size must be a positive integer, got {batch_size!r}")
        if not requests:
            return BatchReport.empty()

        started = time.monotonic()
        resolved = await asyncio.gather(*(self._resolve(request, resolve_pool) for request in requests))

        results: list[SwapResult | None] = [None] * len(requests)
        runnable: list[int] = []
        pools: dict[int, ResolvedPool] = {}
        for index, outcome in enumerate(resolved):
            if isinstance(outcome, SwapResult):
                results[index] = outcome
            else:
                pools[index] = outcome
                runnable.append(index)

        batches = chunked(runnable, batch_size)
        for batch_number, batch in enumerate(batches, start=1):
            if batch_number > 1 and inter_batch_delay > 0:
                await asyncio.sleep(inter_batch_delay)

            log_event(
                self._logger,
                level="debug",
                event="swap_batch_started",
                message="Executing swap batch",
                batch_number=batch_number,
                batch_count=len(batches),
                batch_size=len(batch),
            )
            outcomes = await asyncio.gather(
                *(self._executor.execute(requests[index], pools[index]) for index in batch)
            )
            for index, outcome in zip(batch, outcomes):
                results[index] = outcome

        report = BatchReport.from_results(
            [result for result in results if result is not None],
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        log_event(
            self._logger,
            level="info",
            event="swap_batch_report",
            message="Swap batch finished",
            total_processed=report.total_processed,
            successful=report.successful,
            failed=report.failed,
            batch_count=len(batches),
            duration_ms=report.duration_ms,
        )
        return report
