from __future__ import annotations


class SwapError(RuntimeError):
    """Failure on the single-swap path.

    Raised anywhere between pool resolution and confirmation and always
    converted into a failed ``SwapResult`` at the swap boundary.
    """

    code = "SwapFailed"

    def __init__(self, message: str, *, signature: str | None = None) -> None:
        super().__init__(message)
        self.signature = signature


class InvalidAmountError(SwapError):
    code = "InvalidAmount"


class AmountTooSmallError(SwapError):
    code = "AmountTooSmall"


class AmountTooLargeError(SwapError):
    code = "AmountTooLarge"


class PoolNotFoundError(SwapError):
    code = "PoolNotFound"


class MintMismatchError(SwapError):
    code = "MintMismatch"


class UnsupportedPoolError(SwapError):
    code = "UnsupportedPool"


class SubmissionFailedError(SwapError):
    code = "SubmissionFailed"


class ConfirmationTimeoutError(SwapError):
    code = "ConfirmationTimeout"


class WalletNotFoundError(SwapError):
    code = "WalletNotFound"


class InvalidWalletError(SwapError):
    code = "InvalidWallet"


def error_code(error: BaseException) -> str:
    if isinstance(error, SwapError):
        return error.code
    if isinstance(error, TimeoutError):
        return "Timeout"
    return type(error).__name__
