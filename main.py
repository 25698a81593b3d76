from __future__ import annotations

import asyncio
import contextlib
import signal
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from swap_engine.common import log_event
from swap_engine.runtime import (
    AppSettings,
    bootstrap_dependencies,
    close_components,
    run_order_creation_loop,
    run_swap_tick_loop,
    setup_logger,
)
from swap_engine.storage import InMemoryJobStore, StorageGateway, StorageSettings, read_wallets_file
from swap_engine.trading import (
    AmountConverter,
    BatchScheduler,
    JobStore,
    OrderProcessor,
    PoolResolver,
    RaydiumLiquidityClient,
    SolanaLedgerClient,
    SwapExecutor,
    SwapPolicy,
    WalletSessionPool,
)


async def main() -> None:
    load_dotenv()
    app_settings = AppSettings.from_env()
    logger = setup_logger(app_settings.log_level)

    storage_settings = StorageSettings.from_env()
    policy = SwapPolicy.from_env()

    storage: StorageGateway | None = None
    if app_settings.job_store_backend == "redis":
        storage = StorageGateway(storage_settings, logger)
        store: JobStore = storage
    else:
        store = InMemoryJobStore()
        if app_settings.wallets_file:
            registered = await store.register_wallets(read_wallets_file(Path(app_settings.wallets_file)))
            log_event(
                logger,
                level="info",
                event="wallets_loaded",
                message="Wallets loaded into in-memory job store",
                count=registered,
            )

    ledger = SolanaLedgerClient(
        logger=logger,
        rpc_url=app_settings.rpc_url,
        http_timeout_seconds=app_settings.call_timeout_seconds,
    )
    liquidity = RaydiumLiquidityClient(
        logger=logger,
        api_url=app_settings.raydium_api_url,
        ledger=ledger,
        compute_unit_price_micro_lamports=app_settings.compute_unit_price_micro_lamports,
        http_timeout_seconds=app_settings.call_timeout_seconds,
    )
    pool_resolver = PoolResolver(
        logger=logger,
        liquidity=liquidity,
        allowed_program_ids=app_settings.amm_program_ids,
        call_timeout_seconds=app_settings.call_timeout_seconds,
    )
    sessions = WalletSessionPool(
        logger=logger,
        ledger=ledger,
        call_timeout_seconds=app_settings.call_timeout_seconds,
    )
    executor = SwapExecutor(
        logger=logger,
        liquidity=liquidity,
        ledger=ledger,
        pool_resolver=pool_resolver,
        amounts=AmountConverter(logger=logger, max_percent_of_reserve=app_settings.max_percent_of_reserve),
        sessions=sessions,
        call_timeout_seconds=app_settings.call_timeout_seconds,
        confirm_timeout_seconds=app_settings.confirm_timeout_seconds,
        dry_run=app_settings.dry_run,
    )
    processor = OrderProcessor(
        logger=logger,
        store=store,
        scheduler=BatchScheduler(logger=logger, executor=executor),
        pool_resolver=pool_resolver,
        policy=policy,
        sample_size=app_settings.order_wallet_sample_size,
        sampling_policy=app_settings.wallet_sampling_policy,
        batch_size=app_settings.batch_size,
        inter_batch_delay=app_settings.inter_batch_delay_seconds,
        report_sink=storage.record_batch_report if storage is not None else None,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def request_shutdown(sig: signal.Signals) -> None:
        log_event(
            logger,
            level="info",
            event="shutdown_signal_received",
            message="Shutdown signal received",
            signal=sig.name,
        )
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, request_shutdown, sig)

    await bootstrap_dependencies(
        logger=logger,
        stop_event=stop_event,
        app_settings=app_settings,
        storage=storage,
        ledger=ledger,
        liquidity=liquidity,
    )

    log_event(
        logger,
        level="info",
        event="engine_started",
        message="Swap engine started",
        network=app_settings.network,
        dry_run=app_settings.dry_run,
        job_store_backend=app_settings.job_store_backend,
        batch_size=app_settings.batch_size,
        inter_batch_delay_seconds=app_settings.inter_batch_delay_seconds,
        input_mint=policy.input_token.mint,
        output_mint=policy.output_token.mint,
        amount=str(policy.amount),
    )

    try:
        await asyncio.gather(
            run_order_creation_loop(
                logger=logger,
                stop_event=stop_event,
                app_settings=app_settings,
                processor=processor,
            ),
            run_swap_tick_loop(
                logger=logger,
                stop_event=stop_event,
                app_settings=app_settings,
                processor=processor,
            ),
        )
    finally:
        sessions.close()
        components: list[tuple[str, Any]] = [("liquidity", liquidity), ("ledger", ledger)]
        if storage is not None:
            components.append(("storage", storage))
        await close_components(logger=logger, phase="shutdown", components=components)

        log_event(logger, level="info", event="shutdown_completed", message="Shutdown completed")


if __name__ == "__main__":
    asyncio.run(main())
