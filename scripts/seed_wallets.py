#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from swap_engine.storage import StorageGateway, StorageSettings, read_wallets_file
from swap_engine.trading import WalletRef

REPO_ROOT = Path(__file__).resolve().parents[1]


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Register pre-funded wallets in the Redis job store.",
    )
    parser.add_argument(
        "wallets_file",
        help='JSON file with a list of {"wallet_id": int, "secret": "<base58 or JSON array>"} entries.',
    )
    parser.add_argument(
        "--redis-url",
        default=os.getenv("REDIS_URL", ""),
        help="Redis URL. Defaults to REDIS_URL from env.",
    )
    parser.add_argument(
        "--print-only",
        action="store_true",
        help="Validate the file and print the public keys without writing to Redis.",
    )
    return parser.parse_args()


async def seed(args: argparse.Namespace) -> None:
    wallets = read_wallets_file(Path(args.wallets_file))
    for wallet in wallets:
        public_key = WalletRef.from_wallet(wallet).public_key
        print(f"[info] wallet_id={wallet.wallet_id} public_key={public_key}")

    if args.print_only:
        print("[info] print-only mode: skipped Redis write")
        return

    settings = StorageSettings.from_env()
    if args.redis_url:
        settings.redis_url = args.redis_url

    gateway = StorageGateway(settings, logging.getLogger("swap_engine.seed_wallets"))
    await gateway.connect()
    try:
        registered = await gateway.register_wallets(wallets)
        bounds = await gateway.wallet_id_bounds()
    finally:
        await gateway.close()

    print(f"[ok] registered {registered} wallets; id range now {bounds}")


def main() -> None:
    load_dotenv(REPO_ROOT / ".env")
    asyncio.run(seed(parse_args()))


if __name__ == "__main__":
    main()
