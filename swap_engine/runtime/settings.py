from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from swap_engine.trading import AMM_PROGRAM_IDS_BY_NETWORK, RAYDIUM_API_URL_BY_NETWORK

DEFAULT_RPC_URL_BY_NETWORK: dict[str, str] = {
    "mainnet-beta": "https://api.mainnet-beta.solana.com",
    "devnet": "https://api.devnet.solana.com",
}


def to_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def to_int(value: Any, default: int) -> int:
    try:
        if value is None or str(value).strip() == "":
            return default
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def to_float(value: Any, default: float) -> float:
    try:
        if value is None or str(value).strip() == "":
            return default
        return float(str(value).strip())
    except (TypeError, ValueError):
        return default


def normalize_network(value: str | None) -> str:
    network = (value or "").strip().lower()
    if network in {"mainnet", "mainnet-beta"}:
        return "mainnet-beta"
    return "devnet"


def normalize_store_backend(value: str | None) -> str:
    backend = (value or "").strip().lower()
    if backend == "memory":
        return "memory"
    return "redis"


def _split_csv(value: str | None) -> tuple[str, ...]:
    return tuple(part.strip() for part in (value or "").split(",") if part.strip())


@dataclass(slots=True)
class AppSettings:
    network: str
    rpc_url: str
    raydium_api_url: str
    amm_program_ids: tuple[str, ...]
    batch_size: int
    inter_batch_delay_seconds: float
    call_timeout_seconds: float
    confirm_timeout_seconds: float
    max_percent_of_reserve: int
    compute_unit_price_micro_lamports: int
    order_wallet_sample_size: int
    order_create_interval_seconds: float
    swap_tick_interval_seconds: float
    wallet_sampling_policy: str
    job_store_backend: str
    wallets_file: str
    error_backoff_seconds: float
    log_level: str
    dry_run: bool

    @classmethod
    def from_env(cls) -> "AppSettings":
        network = normalize_network(os.getenv("SOLANA_NETWORK", "devnet"))
        rpc_env = "MAIN_RPC_URL" if network == "mainnet-beta" else "DEV_RPC_URL"
        sampling_policy = (os.getenv("WALLET_SAMPLING_POLICY", "registered") or "").strip().lower()

        return cls(
            network=network,
            rpc_url=(os.getenv(rpc_env) or DEFAULT_RPC_URL_BY_NETWORK[network]).strip(),
            raydium_api_url=(os.getenv("RAYDIUM_API_URL") or RAYDIUM_API_URL_BY_NETWORK[network]).strip(),
            amm_program_ids=_split_csv(os.getenv("RAYDIUM_AMM_PROGRAM_IDS"))
            or AMM_PROGRAM_IDS_BY_NETWORK[network],
            batch_size=max(1, to_int(os.getenv("SWAP_BATCH_SIZE"), 5)),
            inter_batch_delay_seconds=max(0.0, to_float(os.getenv("SWAP_INTER_BATCH_DELAY_SECONDS"), 0.5)),
            call_timeout_seconds=max(1.0, to_float(os.getenv("SWAP_CALL_TIMEOUT_SECONDS"), 30.0)),
            confirm_timeout_seconds=max(1.0, to_float(os.getenv("SWAP_CONFIRM_TIMEOUT_SECONDS"), 60.0)),
            max_percent_of_reserve=max(0, to_int(os.getenv("SWAP_MAX_PERCENT_OF_RESERVE"), 25)),
            compute_unit_price_micro_lamports=max(
                0,
                to_int(os.getenv("SWAP_COMPUTE_UNIT_PRICE_MICRO_LAMPORTS"), 0),
            ),
            order_wallet_sample_size=max(1, to_int(os.getenv("ORDER_WALLET_SAMPLE_SIZE"), 2)),
            order_create_interval_seconds=max(0.1, to_float(os.getenv("ORDER_CREATE_INTERVAL_SECONDS"), 10.0)),
            swap_tick_interval_seconds=max(0.1, to_float(os.getenv("SWAP_TICK_INTERVAL_SECONDS"), 10.0)),
            wallet_sampling_policy=sampling_policy if sampling_policy in {"range", "registered"} else "registered",
            job_store_backend=normalize_store_backend(os.getenv("JOB_STORE_BACKEND", "redis")),
            wallets_file=os.getenv("WALLETS_FILE", "").strip(),
            error_backoff_seconds=max(0.2, to_float(os.getenv("ERROR_BACKOFF_SECONDS"), 2.0)),
            log_level=(os.getenv("LOG_LEVEL", "INFO") or "INFO").strip().upper(),
            dry_run=to_bool(os.getenv("DRY_RUN"), True),
        )
