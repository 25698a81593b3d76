from __future__ import annotations

import os
from dataclasses import dataclass

from .helpers import to_bool


def _sanitize_bot_id(value: str, default: str) -> str:
    normalized = (value.strip() or default).replace("/", "-")
    return normalized or default


@dataclass(slots=True)
class StorageSettings:
    redis_url: str
    order_prefix: str
    wallet_prefix: str
    firestore_enabled: bool
    firestore_project_id: str | None
    bot_collection: str
    bot_id: str
    bot_batches_collection: str
    bot_metrics_collection: str
    bot_metrics_doc_id: str
    dry_run: bool

    @classmethod
    def from_env(cls) -> "StorageSettings":
        dry_run = to_bool(os.getenv("DRY_RUN"), True)
        bot_id = _sanitize_bot_id(os.getenv("BOT_ID", "swap-engine"), "swap-engine")
        if dry_run:
            bot_id = _sanitize_bot_id(f"{bot_id}-dryrun", bot_id)

        return cls(
            redis_url=os.getenv("REDIS_URL", "redis://redis:6379/0"),
            order_prefix=(os.getenv("REDIS_ORDER_PREFIX", "swap:orders").strip(":") or "swap:orders"),
            wallet_prefix=(os.getenv("REDIS_WALLET_PREFIX", "swap:wallets").strip(":") or "swap:wallets"),
            firestore_enabled=to_bool(os.getenv("FIRESTORE_ENABLED"), False),
            firestore_project_id=os.getenv("FIRESTORE_PROJECT_ID") or None,
            bot_collection=(os.getenv("BOT_COLLECTION", "bots").strip("/") or "bots"),
            bot_id=bot_id,
            bot_batches_collection=os.getenv("BOT_BATCHES_COLLECTION", "batches"),
            bot_metrics_collection=os.getenv("BOT_METRICS_COLLECTION", "metrics"),
            bot_metrics_doc_id=os.getenv("BOT_METRICS_DOC_ID", "runtime"),
            dry_run=dry_run,
        )
