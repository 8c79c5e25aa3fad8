"""
Daily cash math: opening balance plus the day's entries gives the expected
closing balance, per currency. Nothing here touches the backend.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from .config import CLOSING_TOLERANCE_USD
from .transactions import Credit, Payment, Sale, Withdrawal

ZERO = Decimal("0")


@dataclass(frozen=True)
class Balance:
    usd: Decimal = ZERO
    lbp: Decimal = ZERO

    def as_dict(self) -> dict:
        return {"usd": self.usd, "lbp": self.lbp}


@dataclass(frozen=True)
class OpeningBalance(Balance):
    date: Optional[date] = None

    def as_dict(self) -> dict:
        return {"usd": self.usd, "lbp": self.lbp, "date": self.date}


@dataclass(frozen=True)
class Totals(Balance):
    # Same sum as usd/lbp but without the day's withdrawals.
    before_withdrawals: Balance = field(default_factory=Balance)
    # Withdrawn money minus the payments funded from it.
    daniel: Balance = field(default_factory=Balance)

    def as_dict(self) -> dict:
        return {
            "usd": self.usd,
            "lbp": self.lbp,
            "before_withdrawals": self.before_withdrawals.as_dict(),
            "daniel": self.daniel.as_dict(),
        }


# (kind, deduction source) -> (sign applied to cash, sign applied to the daniel bucket)
SIGNS = {
    ("credit", None): (-1, 0),
    ("payment", "current"): (-1, 0),
    ("payment", "daniel"): (0, -1),
    ("sale", None): (1, 0),
    ("withdrawal", None): (-1, 1),
}


def sign_of(entry) -> tuple[int, int]:
    if isinstance(entry, Credit):
        return SIGNS[("credit", None)]
    if isinstance(entry, Payment):
        return SIGNS[("payment", entry.deduction_source)]
    if isinstance(entry, Sale):
        return SIGNS[("sale", None)]
    if isinstance(entry, Withdrawal):
        return SIGNS[("withdrawal", None)]
    raise TypeError(f"unsupported transaction: {type(entry).__name__}")


def compute_totals(
    opening: Balance,
    credits: Iterable[Credit],
    payments: Iterable[Payment],
    sales: Iterable[Sale],
    withdrawals: Iterable[Withdrawal],
) -> Totals:
    cash_usd = Decimal(str(opening.usd or 0))
    cash_lbp = Decimal(str(opening.lbp or 0))
    kept_usd = cash_usd
    kept_lbp = cash_lbp
    daniel_usd = ZERO
    daniel_lbp = ZERO

    for entries in (credits, payments, sales, withdrawals):
        for entry in entries:
            cash_sign, daniel_sign = sign_of(entry)
            cash_usd += cash_sign * entry.amount_usd
            cash_lbp += cash_sign * entry.amount_lbp
            if not isinstance(entry, Withdrawal):
                kept_usd += cash_sign * entry.amount_usd
                kept_lbp += cash_sign * entry.amount_lbp
            daniel_usd += daniel_sign * entry.amount_usd
            daniel_lbp += daniel_sign * entry.amount_lbp

    return Totals(
        usd=cash_usd,
        lbp=cash_lbp,
        before_withdrawals=Balance(usd=kept_usd, lbp=kept_lbp),
        daniel=Balance(usd=daniel_usd, lbp=daniel_lbp),
    )


def usd_equivalent(usd: Decimal, lbp: Decimal, exchange_rate: Decimal) -> Decimal:
    """Display-only combined figure; never written back into stored totals."""
    rate = Decimal(str(exchange_rate))
    if rate <= 0:
        raise ValueError("exchange rate must be > 0")
    return Decimal(str(usd or 0)) + Decimal(str(lbp or 0)) / rate


def discrepancy_usd(closing_input: Balance, computed: Balance, exchange_rate: Decimal) -> Decimal:
    """Counted minus computed, in USD equivalent."""
    return usd_equivalent(closing_input.usd, closing_input.lbp, exchange_rate) - usd_equivalent(
        computed.usd, computed.lbp, exchange_rate
    )


def is_close_allowed(
    closing_input: Balance,
    computed_totals: Balance,
    exchange_rate: Decimal,
    tolerance: Decimal = CLOSING_TOLERANCE_USD,
) -> bool:
    return abs(discrepancy_usd(closing_input, computed_totals, exchange_rate)) <= Decimal(str(tolerance))
