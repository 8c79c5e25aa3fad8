from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated, Literal

from pydantic import AfterValidator, BeforeValidator, Field, StringConstraints

# Money columns are numeric(18, 2) for both currencies.
MONEY_Q = Decimal("0.01")


def q_money(v) -> Decimal:
    return Decimal(str(v or 0)).quantize(MONEY_Q, rounding=ROUND_HALF_UP)


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _blank_to_zero(v):
    if v is None or (isinstance(v, str) and not v.strip()):
        return Decimal("0")
    return v


# Canonical codes mirror the check constraints in `backend/db/migrations/001_init.sql`.
DeductionSource = Annotated[Literal["current", "daniel"], BeforeValidator(_to_lower_str)]

# Operator-entered amounts, rounded to cents. Sign flips happen after validation, never in the input.
Amount = Annotated[Decimal, BeforeValidator(_blank_to_zero), Field(ge=0), AfterValidator(q_money)]
ExchangeRate = Annotated[Decimal, Field(gt=0)]

PersonName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=120)]
