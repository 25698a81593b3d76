from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from solders.keypair import Keypair

from swap_engine.common import log_event, with_timeout

from .types import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID, LedgerClient, WalletRef, to_int


@dataclass(slots=True, frozen=True)
class TokenAccountSnapshot:
    lamports: int
    token_accounts: dict[str, str] = field(default_factory=dict)


class WalletSession:
    """Account state of one wallet, refreshed before each swap it builds."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        wallet: WalletRef,
        ledger: LedgerClient,
        call_timeout_seconds: float,
    ) -> None:
        self._logger = logger
        self._wallet = wallet
        self._ledger = ledger
        self._call_timeout_seconds = call_timeout_seconds
        self._snapshot: TokenAccountSnapshot | None = None
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def keypair(self) -> Keypair:
        return self._wallet.keypair

    @property
    def public_key(self) -> str:
        return self._wallet.public_key

    @property
    def snapshot(self) -> TokenAccountSnapshot | None:
        return self._snapshot

    @property
    def closed(self) -> bool:
        return self._closed

    async def refresh_token_accounts(self) -> TokenAccountSnapshot:
        if self._closed:
            raise RuntimeError(f"Wallet session for {self.public_key} is closed.")

        async with self._lock:
            owner = self.public_key
            lamports, legacy_accounts, token2022_accounts = await asyncio.gather(
                with_timeout(
                    self._ledger.get_balance(owner),
                    timeout_seconds=self._call_timeout_seconds,
                    operation="get_balance",
                ),
                with_timeout(
                    self._ledger.get_token_accounts_by_owner(owner, TOKEN_PROGRAM_ID),
                    timeout_seconds=self._call_timeout_seconds,
                    operation="get_token_accounts_by_owner",
                ),
                with_timeout(
                    self._ledger.get_token_accounts_by_owner(owner, TOKEN_2022_PROGRAM_ID),
                    timeout_seconds=self._call_timeout_seconds,
                    operation="get_token_accounts_by_owner",
                ),
            )

            token_accounts: dict[str, str] = {}
            balances: dict[str, int] = {}
            for account in [*legacy_accounts, *token2022_accounts]:
                mint = str(account.get("mint") or "")
                pubkey = str(account.get("pubkey") or "")
                if not mint or not pubkey:
                    continue
                amount = to_int(account.get("amount"), 0)
                # Several accounts per mint are possible; keep the richest one.
                if mint not in token_accounts or amount > balances.get(mint, 0):
                    token_accounts[mint] = pubkey
                    balances[mint] = amount

            self._snapshot = TokenAccountSnapshot(lamports=lamports, token_accounts=token_accounts)
            log_event(
                self._logger,
                level="debug",
                event="wallet_token_accounts_refreshed",
                message="Wallet token accounts refreshed",
                wallet=owner,
                lamports=lamports,
                token_account_count=len(token_accounts),
            )
            return self._snapshot

    def close(self) -> None:
        self._closed = True
        self._snapshot = None


class WalletSessionPool:
    """Per-wallet sessions keyed by public key.

    Sessions are never shared between different wallets; the ledger transport
    they use is stateless and may be shared. A session lives while at least
    one swap holds a lease on it and is evicted, keypair included, when the
    last lease is released.
    """

    def __init__(
        self,
        *,
        logger: logging.Logger,
        ledger: LedgerClient,
        call_timeout_seconds: float = 30.0,
    ) -> None:
        self._logger = logger
        self._ledger = ledger
        self._call_timeout_seconds = call_timeout_seconds
        self._sessions: dict[str, WalletSession] = {}
        self._leases: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def acquire(self, wallet: WalletRef) -> WalletSession:
        key = wallet.public_key
        session = self._sessions.get(key)
        if session is None or session.closed:
            session = WalletSession(
                logger=self._logger,
                wallet=wallet,
                ledger=self._ledger,
                call_timeout_seconds=self._call_timeout_seconds,
            )
            self._sessions[key] = session
        self._leases[key] = self._leases.get(key, 0) + 1
        return session

    def release(self, wallet: WalletRef) -> None:
        key = wallet.public_key
        remaining = self._leases.get(key, 0) - 1
        if remaining > 0:
            self._leases[key] = remaining
            return

        self._leases.pop(key, None)
        session = self._sessions.pop(key, None)
        if session is not None:
            session.close()

    def close(self) -> None:
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()
        self._leases.clear()
