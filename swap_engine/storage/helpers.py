from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from swap_engine.trading.types import Wallet


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def utc_day_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d")


def to_int(value: Any, default: int) -> int:
    try:
        if value is None or value == "":
            return default
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def to_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def encode_wallet_ids(wallet_ids: Sequence[int]) -> str:
    return json.dumps([int(wallet_id) for wallet_id in wallet_ids], separators=(",", ":"))


def decode_wallet_ids(raw: str | None) -> tuple[int, ...]:
    if not raw:
        return ()
    parsed = json.loads(raw)
    if not isinstance(parsed, list):
        raise ValueError(f"Stored wallet ids are not a list: {raw!r}")
    return tuple(int(wallet_id) for wallet_id in parsed)


def unique_wallet_ids(wallet_ids: Sequence[int]) -> None:
    seen: set[int] = set()
    for wallet_id in wallet_ids:
        if wallet_id in seen:
            raise ValueError(f"Wallet id {wallet_id} appears more than once")
        seen.add(wallet_id)


def read_wallets_file(path: Path) -> list[Wallet]:
    """Parse a JSON list of ``{"wallet_id": int, "secret": str}`` entries."""
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError(f"{path} must contain a JSON list of wallets")

    wallets: list[Wallet] = []
    for index, item in enumerate(payload):
        if not isinstance(item, dict):
            raise ValueError(f"Wallet entry #{index} must be an object")
        wallet_id = item.get("wallet_id", item.get("id"))
        secret = item.get("secret")
        if isinstance(wallet_id, bool) or not isinstance(wallet_id, int):
            raise ValueError(f"Wallet entry #{index} has no integer wallet_id")
        if not isinstance(secret, str) or not secret.strip():
            raise ValueError(f"Wallet entry #{index} has no secret")
        wallets.append(Wallet(wallet_id=wallet_id, secret=secret.strip()))

    unique_wallet_ids([wallet.wallet_id for wallet in wallets])
    return wallets
