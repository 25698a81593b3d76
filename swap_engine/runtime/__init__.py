from .logging import setup_logger
from .loop import (
    bootstrap_dependencies,
    close_components,
    run_order_creation_loop,
    run_swap_tick_loop,
    wait_with_stop,
)
from .settings import AppSettings

__all__ = [
    "AppSettings",
    "bootstrap_dependencies",
    "close_components",
    "run_order_creation_loop",
    "run_swap_tick_loop",
    "setup_logger",
    "wait_with_stop",
]
