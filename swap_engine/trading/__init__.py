from .amounts import AmountConverter
from .errors import (
    AmountTooLargeError,
    AmountTooSmallError,
    ConfirmationTimeoutError,
    InvalidAmountError,
    InvalidWalletError,
    MintMismatchError,
    PoolNotFoundError,
    SubmissionFailedError,
    SwapError,
    UnsupportedPoolError,
    WalletNotFoundError,
)
from .executor import SwapExecutor
from .ledger import SolanaLedgerClient
from .orders import OrderProcessor, SwapPolicy
from .pools import PoolResolver
from .raydium import RAYDIUM_API_URL_BY_NETWORK, RaydiumLiquidityClient
from .scheduler import BatchScheduler
from .sessions import WalletSessionPool
from .types import (
    AMM_PROGRAM_IDS_BY_NETWORK,
    BatchReport,
    ExecutionOrder,
    JobStore,
    ResolvedPool,
    SwapRequest,
    SwapResult,
    Token,
    Wallet,
    WalletRef,
)

__all__ = [
    "AMM_PROGRAM_IDS_BY_NETWORK",
    "AmountConverter",
    "AmountTooLargeError",
    "AmountTooSmallError",
    "BatchReport",
    "BatchScheduler",
    "ConfirmationTimeoutError",
    "ExecutionOrder",
    "InvalidAmountError",
    "InvalidWalletError",
    "JobStore",
    "MintMismatchError",
    "OrderProcessor",
    "PoolNotFoundError",
    "PoolResolver",
    "RAYDIUM_API_URL_BY_NETWORK",
    "RaydiumLiquidityClient",
    "ResolvedPool",
    "SolanaLedgerClient",
    "SubmissionFailedError",
    "SwapError",
    "SwapExecutor",
    "SwapPolicy",
    "SwapRequest",
    "SwapResult",
    "Token",
    "UnsupportedPoolError",
    "Wallet",
    "WalletRef",
    "WalletNotFoundError",
    "WalletSessionPool",
]
