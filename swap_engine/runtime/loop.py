from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from swap_engine.common import guarded_call, log_event
from swap_engine.storage import StorageGateway
from swap_engine.trading import OrderProcessor, RaydiumLiquidityClient, SolanaLedgerClient

from .settings import AppSettings

T = TypeVar("T")


async def wait_with_stop(stop_event: asyncio.Event, timeout_seconds: float) -> None:
    if timeout_seconds <= 0:
        return

    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        pass


async def close_components(
    *,
    logger: logging.Logger,
    phase: str,
    components: Sequence[tuple[str, Any]],
) -> None:
    """Close each ``(name, client)`` pair; one failing close does not skip the rest."""
    for name, component in components:
        await guarded_call(
            component.close,
            logger=logger,
            event=f"{phase}_close_failed",
            message=f"Failed to close {name} during {phase}",
            component=name,
        )


async def bootstrap_dependencies(
    *,
    logger: logging.Logger,
    stop_event: asyncio.Event,
    app_settings: AppSettings,
    storage: StorageGateway | None,
    ledger: SolanaLedgerClient,
    liquidity: RaydiumLiquidityClient,
) -> None:
    """Connect and health-check every client, retrying until it works or shutdown starts."""
    components: list[tuple[str, Any]] = [("ledger", ledger), ("liquidity", liquidity)]
    if storage is not None:
        components.insert(0, ("storage", storage))

    attempt = 0
    while not stop_event.is_set():
        attempt += 1
        try:
            for _name, component in components:
                await component.connect()
            for _name, component in components:
                healthcheck = getattr(component, "healthcheck", None)
                if healthcheck is not None:
                    await healthcheck()
            return
        except Exception as error:
            log_event(
                logger,
                level="exception",
                event="bootstrap_error",
                message="Dependency bootstrap failed; retrying",
                attempt=attempt,
                error=str(error),
            )
            await close_components(logger=logger, phase="bootstrap_retry", components=components)
            await wait_with_stop(stop_event, app_settings.error_backoff_seconds)

    raise RuntimeError("Shutdown requested before dependencies were initialized.")


async def run_periodic(
    *,
    logger: logging.Logger,
    stop_event: asyncio.Event,
    name: str,
    interval_seconds: float,
    error_backoff_seconds: float,
    action: Callable[[], Awaitable[T]],
) -> None:
    """Call ``action`` every ``interval_seconds`` until ``stop_event`` is set.

    A failing tick is logged and followed by at least ``error_backoff_seconds``
    of quiet; the next tick retries from scratch.
    """
    loop = asyncio.get_running_loop()
    next_tick = loop.time()

    while not stop_event.is_set():
        failed = False
        try:
            await action()
        except asyncio.CancelledError:
            raise
        except Exception as error:
            failed = True
            log_event(
                logger,
                level="exception",
                event=f"{name}_error",
                message=f"{name.replace('_', ' ').capitalize()} tick failed",
                error=str(error),
                error_type=type(error).__name__,
            )
        finally:
            next_tick += interval_seconds
            now = loop.time()
            if next_tick <= now:
                missed_cycles = int((now - next_tick) / interval_seconds) + 1
                next_tick += missed_cycles * interval_seconds

            delay_seconds = max(0.0, next_tick - now)
            if failed:
                delay_seconds = max(delay_seconds, error_backoff_seconds)

        await wait_with_stop(stop_event, delay_seconds)


async def run_order_creation_loop(
    *,
    logger: logging.Logger,
    stop_event: asyncio.Event,
    app_settings: AppSettings,
    processor: OrderProcessor,
) -> None:
    """Sample a new order every interval and hand it straight to the processor.

    The swap tick loop drains whatever this loop leaves pending; the atomic
    claim keeps the two from processing the same order.
    """

    async def create_and_dispatch() -> None:
        order = await processor.create_order_from_sample(app_settings.order_wallet_sample_size)
        if order is not None:
            await processor.on_order_created()

    await run_periodic(
        logger=logger,
        stop_event=stop_event,
        name="order_creation",
        interval_seconds=app_settings.order_create_interval_seconds,
        error_backoff_seconds=app_settings.error_backoff_seconds,
        action=create_and_dispatch,
    )


async def run_swap_tick_loop(
    *,
    logger: logging.Logger,
    stop_event: asyncio.Event,
    app_settings: AppSettings,
    processor: OrderProcessor,
) -> None:
    await run_periodic(
        logger=logger,
        stop_event=stop_event,
        name="swap_tick",
        interval_seconds=app_settings.swap_tick_interval_seconds,
        error_backoff_seconds=app_settings.error_backoff_seconds,
        action=processor.on_scheduler_tick,
    )
