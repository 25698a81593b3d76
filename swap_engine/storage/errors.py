from __future__ import annotations


class StoreUnavailableError(RuntimeError):
    """The job store could not be reached; the caller retries on its next tick."""


class DuplicateWalletError(RuntimeError):
    def __init__(self, wallet_id: int) -> None:
        super().__init__(f"Wallet {wallet_id} is already registered")
        self.wallet_id = wallet_id
