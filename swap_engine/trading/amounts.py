from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from swap_engine.common import log_event

from .errors import AmountTooLargeError, AmountTooSmallError, InvalidAmountError
from .types import to_decimal

MIN_SWAP_DECIMALS = 5
DEFAULT_MAX_PERCENT_OF_RESERVE = 25


class AmountConverter:
    """Fixed-point conversion between human token amounts and base units.

    Every conversion goes through the decimal text of the amount, so values
    such as ``0.1`` never pick up binary floating point error on their way to
    an integer amount.
    """

    def __init__(
        self,
        *,
        logger: logging.Logger | None = None,
        max_percent_of_reserve: int = DEFAULT_MAX_PERCENT_OF_RESERVE,
    ) -> None:
        self._logger = logger or logging.getLogger("swap_engine.amounts")
        self._max_percent_of_reserve = max(0, int(max_percent_of_reserve))

    @property
    def max_percent_of_reserve(self) -> int:
        return self._max_percent_of_reserve

    @staticmethod
    def _check_decimals(decimals: int) -> int:
        if isinstance(decimals, bool) or not isinstance(decimals, int) or decimals < 0:
            raise ValueError(f"decimals must be a non-negative integer, got {decimals!r}")
        return decimals

    def to_base_units(self, amount: Any, decimals: int) -> int:
        decimals = self._check_decimals(decimals)
        value = to_decimal(amount)

        text = format(value, "f")
        negative = text.startswith("-")
        whole, _, fraction = text.lstrip("-").partition(".")
        fraction = (fraction + "0" * decimals)[:decimals]
        digits = f"{whole}{fraction}".lstrip("0") or "0"
        base_units = int(digits)

        log_event(
            self._logger,
            level="debug",
            event="amount_to_base_units",
            message="Converted amount to base units",
            amount=text,
            decimals=decimals,
            base_units=str(base_units),
        )
        return -base_units if negative else base_units

    def minimum_base_units(self, decimals: int) -> int:
        decimals = self._check_decimals(decimals)
        return 10 ** min(MIN_SWAP_DECIMALS, decimals)

    def validate_swap_amount(self, amount: Any, decimals: int) -> None:
        value = to_decimal(amount)
        if value <= 0:
            raise InvalidAmountError("Swap amount must be greater than 0")

        base_units = self.to_base_units(value, decimals)
        minimum = self.minimum_base_units(decimals)
        if base_units < minimum:
            raise AmountTooSmallError(
                f"Swap amount ({format(value, 'f')}) too small. "
                f"Minimum is {self.format_base_units(minimum, decimals)} tokens ({minimum} base units)"
            )

    def validate_against_reserves(
        self,
        amount_base_units: int,
        base_reserve: int,
        max_percent: int | None = None,
    ) -> None:
        percent = self._max_percent_of_reserve if max_percent is None else int(max_percent)
        max_amount = int(base_reserve) * percent // 100
        if int(amount_base_units) > max_amount:
            raise AmountTooLargeError(
                "Swap amount too large compared to pool reserves. "
                f"Maximum is {percent}% of reserves ({max_amount} base units)"
            )

    def format_base_units(self, base_units: int, decimals: int, round_to: int | None = None) -> str:
        decimals = self._check_decimals(decimals)
        value = Decimal(int(base_units)).scaleb(-decimals)

        if round_to is not None:
            quantum = Decimal(1).scaleb(-max(0, int(round_to)))
            return format(value.quantize(quantum, rounding=ROUND_HALF_UP), "f")

        text = format(value, "f")
        if "." in text:
            text = text.rstrip("0").rstrip(".")
        return text or "0"
