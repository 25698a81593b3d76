from __future__ import annotations

import contextlib
import json
import os
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Literal, Mapping, Protocol, Sequence

from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from .errors import InvalidAmountError, InvalidWalletError

WSOL_MINT = "So11111111111111111111111111111111111111112"
RAY_MINT = "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"

AMM_PROGRAM_IDS_BY_NETWORK: dict[str, tuple[str, ...]] = {
    "mainnet-beta": (
        "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8",
        "5quBtoiQqxF9Jv6KYKctB59NT3gtJD2Y65kdnB1Uev3h",
    ),
    "devnet": (
        "DRaya7Kj3aMWQSy19kSjvmuwq9docCHofyP9kanQGaav",
        "DRayDdXc1NZQ9C3hRWmoSf8zK4iapgMnjdNZWrfwsP8m",
    ),
}

PoolSide = Literal["A", "B"]
OrderStatus = Literal["pending", "started", "finished"]
SwapState = Literal["quoting", "building", "submitting", "confirmed", "failed", "dry_run"]


def to_int(value: Any, default: int) -> int:
    try:
        if value is None or str(value).strip() == "":
            return default
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def to_decimal(value: Any) -> Decimal:
    """Convert user input to ``Decimal`` without passing through binary floats."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise InvalidAmountError(f"Amount must be numeric, got {value!r}")
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as error:
            raise InvalidAmountError(f"Amount is not a decimal number: {value!r}") from error
    else:
        raise InvalidAmountError(f"Amount must be numeric, got {type(value).__name__}")

    if not result.is_finite():
        raise InvalidAmountError(f"Amount must be finite, got {value!r}")
    return result


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_keypair(raw: str) -> Keypair:
    value = (raw or "").strip()
    if not value:
        raise InvalidWalletError("Wallet secret is missing.")

    if value.startswith("["):
        try:
            arr = json.loads(value)
        except json.JSONDecodeError as error:
            raise InvalidWalletError("Wallet secret JSON is malformed.") from error
        if not isinstance(arr, list):
            raise InvalidWalletError("Wallet secret JSON must be an integer array.")
        try:
            return Keypair.from_bytes(bytes(arr))
        except (TypeError, ValueError) as error:
            raise InvalidWalletError("Wallet secret bytes are not a valid keypair.") from error

    with contextlib.suppress(Exception):
        return Keypair.from_base58_string(value)

    raise InvalidWalletError("Unsupported wallet secret format.")


@dataclass(slots=True, frozen=True)
class Token:
    program_id: str
    mint: str
    decimals: int
    symbol: str = ""
    name: str = ""

    @property
    def label(self) -> str:
        return self.symbol or self.mint

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Token":
        program_id = str(payload.get("programId") or payload.get("program_id") or "").strip()
        mint = str(payload.get("mint") or "").strip()
        if not program_id or not mint:
            raise ValueError("Token programId and mint are required.")

        decimals_raw = payload.get("decimals")
        if isinstance(decimals_raw, bool) or not isinstance(decimals_raw, int):
            raise ValueError(f"Token decimals must be an integer, got {decimals_raw!r}")
        if decimals_raw < 0:
            raise ValueError("Token decimals must not be negative.")

        return cls(
            program_id=program_id,
            mint=mint,
            decimals=decimals_raw,
            symbol=str(payload.get("symbol") or ""),
            name=str(payload.get("name") or ""),
        )

    @classmethod
    def from_env(cls, prefix: str, *, default: "Token") -> "Token":
        return cls(
            program_id=os.getenv(f"{prefix}_PROGRAM_ID", default.program_id),
            mint=os.getenv(f"{prefix}_MINT", default.mint),
            decimals=max(0, to_int(os.getenv(f"{prefix}_DECIMALS"), default.decimals)),
            symbol=os.getenv(f"{prefix}_SYMBOL", default.symbol),
            name=os.getenv(f"{prefix}_NAME", default.name),
        )


SOL_TOKEN = Token(program_id=TOKEN_PROGRAM_ID, mint=WSOL_MINT, decimals=9, symbol="SOL", name="Solana")
RAY_TOKEN = Token(program_id=TOKEN_PROGRAM_ID, mint=RAY_MINT, decimals=6, symbol="RAY", name="Raydium")


@dataclass(slots=True, frozen=True)
class Wallet:
    wallet_id: int
    secret: str = field(repr=False)


@dataclass(slots=True, frozen=True)
class WalletRef:
    wallet_id: int | None
    keypair: Keypair = field(repr=False)

    @property
    def public_key(self) -> str:
        return str(self.keypair.pubkey())

    @classmethod
    def from_wallet(cls, wallet: Wallet) -> "WalletRef":
        return cls(wallet_id=wallet.wallet_id, keypair=parse_keypair(wallet.secret))


@dataclass(slots=True, frozen=True)
class ExecutionOrder:
    order_id: int
    wallet_ids: tuple[int, ...]
    created_at: str
    started_at: str | None = None
    finished_at: str | None = None

    @property
    def status(self) -> OrderStatus:
        if self.finished_at:
            return "finished"
        if self.started_at:
            return "started"
        return "pending"

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["wallet_ids"] = list(self.wallet_ids)
        payload["status"] = self.status
        return payload


@dataclass(slots=True, frozen=True)
class SwapRequest:
    wallet: WalletRef
    input_token: Token
    output_token: Token
    amount: Decimal
    slippage_percent: Decimal

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "SwapRequest":
        """Build a request from the HTTP batch shape.

        ``userKeypair`` is the base58 secret, ``slippage`` a percentage.
        """
        amount = to_decimal(payload.get("amount"))
        if amount < 0:
            raise ValueError("amount must not be negative.")

        slippage = to_decimal(payload.get("slippage"))
        if slippage < 0 or slippage > 100:
            raise ValueError("slippage must be between 0 and 100.")

        return cls(
            wallet=WalletRef(wallet_id=None, keypair=parse_keypair(str(payload.get("userKeypair") or ""))),
            input_token=Token.from_payload(dict(payload.get("inputToken") or {})),
            output_token=Token.from_payload(dict(payload.get("outputToken") or {})),
            amount=amount,
            slippage_percent=slippage,
        )


@dataclass(slots=True, frozen=True)
class PoolSummary:
    pool_id: str
    program_id: str
    pool_type: str
    mint_a: str
    mint_b: str
    decimals_a: int
    decimals_b: int
    symbol_a: str = ""
    symbol_b: str = ""


@dataclass(slots=True, frozen=True)
class LivePoolState:
    base_reserve: int
    quote_reserve: int
    status: int


@dataclass(slots=True, frozen=True)
class ResolvedPool:
    pool_id: str
    program_id: str
    mint_a: str
    mint_b: str
    decimals_a: int
    decimals_b: int
    base_reserve: int = 0
    quote_reserve: int = 0
    status: int = 0
    symbol_a: str = ""
    symbol_b: str = ""
    state_loaded_at: str | None = None

    @classmethod
    def from_summary(cls, summary: PoolSummary) -> "ResolvedPool":
        return cls(
            pool_id=summary.pool_id,
            program_id=summary.program_id,
            mint_a=summary.mint_a,
            mint_b=summary.mint_b,
            decimals_a=summary.decimals_a,
            decimals_b=summary.decimals_b,
            symbol_a=summary.symbol_a,
            symbol_b=summary.symbol_b,
        )

    def with_live_state(self, state: LivePoolState) -> "ResolvedPool":
        return replace(
            self,
            base_reserve=state.base_reserve,
            quote_reserve=state.quote_reserve,
            status=state.status,
            state_loaded_at=now_iso(),
        )

    def mint_of(self, side: PoolSide) -> str:
        return self.mint_a if side == "A" else self.mint_b

    def reserve_of(self, side: PoolSide) -> int:
        return self.base_reserve if side == "A" else self.quote_reserve


def opposite_side(side: PoolSide) -> PoolSide:
    return "B" if side == "A" else "A"


@dataclass(slots=True, frozen=True)
class SwapQuote:
    amount_out: int
    min_amount_out: int


@dataclass(slots=True, frozen=True)
class SwapResult:
    success: bool
    wallet: str
    signature: str | None = None
    amount_in: str | None = None
    amount_out: str | None = None
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def succeeded(
        cls,
        *,
        wallet: str,
        signature: str | None,
        amount_in: str,
        amount_out: str,
    ) -> "SwapResult":
        return cls(
            success=True,
            wallet=wallet,
            signature=signature,
            amount_in=amount_in,
            amount_out=amount_out,
        )

    @classmethod
    def failed(cls, *, wallet: str, error: str, error_code: str, signature: str | None = None) -> "SwapResult":
        return cls(success=False, wallet=wallet, signature=signature, error=error, error_code=error_code)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class BatchReport:
    total_processed: int
    successful: int
    failed: int
    details: tuple[SwapResult, ...]
    duration_ms: int = 0

    @classmethod
    def from_results(cls, results: Sequence[SwapResult], *, duration_ms: int = 0) -> "BatchReport":
        details = tuple(results)
        successful = sum(1 for result in details if result.success)
        return cls(
            total_processed=len(details),
            successful=successful,
            failed=len(details) - successful,
            details=details,
            duration_ms=max(0, int(duration_ms)),
        )

    @classmethod
    def empty(cls) -> "BatchReport":
        return cls.from_results(())

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "successful": self.successful,
            "failed": self.failed,
            "duration_ms": self.duration_ms,
            "details": [result.to_dict() for result in self.details],
        }


ResolvePoolFn = Callable[[SwapRequest], Awaitable[ResolvedPool]]


class LedgerClient(Protocol):
    async def get_account_info(self, pubkey: str) -> dict[str, Any] | None:
        ...

    async def get_token_accounts_by_owner(self, owner: str, program_id: str) -> list[dict[str, Any]]:
        ...

    async def get_balance(self, pubkey: str) -> int:
        ...

    async def get_token_account_balance(self, pubkey: str) -> int:
        ...

    async def get_latest_blockhash(self) -> str:
        ...

    async def send_raw_transaction(self, transaction: VersionedTransaction, *, skip_preflight: bool) -> str:
        ...

    async def confirm_transaction(self, signature: str) -> None:
        ...


class LiquidityClient(Protocol):
    async def find_pools_by_mint_pair(self, mint_a: str, mint_b: str, pool_type: str) -> list[PoolSummary]:
        ...

    async def get_pool_by_id(self, pool_id: str) -> PoolSummary:
        ...

    async def get_live_pool_state(self, pool_id: str) -> LivePoolState:
        ...

    async def quote_swap(
        self,
        pool: ResolvedPool,
        amount_in: int,
        mint_in: str,
        mint_out: str,
        slippage_percent: Decimal,
    ) -> SwapQuote:
        ...

    async def build_swap_transaction(
        self,
        pool: ResolvedPool,
        amount_in: int,
        min_amount_out: int,
        side: PoolSide,
        owner: Keypair,
        token_accounts: Mapping[str, str] | None = None,
    ) -> VersionedTransaction:
        ...

    async def submit(self, transaction: VersionedTransaction) -> str:
        ...


class JobStore(Protocol):
    async def create_order(self, wallet_ids: Sequence[int]) -> ExecutionOrder:
        ...

    async def claim_oldest_pending(self) -> ExecutionOrder | None:
        ...

    async def mark_finished(self, order_id: int) -> bool:
        ...

    async def get_order(self, order_id: int) -> ExecutionOrder | None:
        ...

    async def get_wallet(self, wallet_id: int) -> Wallet | None:
        ...

    async def register_wallets(self, wallets: Sequence[Wallet]) -> int:
        ...

    async def wallet_id_bounds(self) -> tuple[int, int] | None:
        ...

    async def list_wallet_ids(self) -> list[int]:
        ...
