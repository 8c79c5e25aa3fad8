"""
The four kinds of cash entries an operator records during a business day.

Entries are a tagged union on `kind`. Input models (`*In`) carry the
operator's non-negative amounts; `entry_from_input` turns them into stored
entries, which is where a paid credit gets its sign flipped.
"""
from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from fastapi import HTTPException
from pydantic import BaseModel, Field, TypeAdapter

from .validation import Amount, DeductionSource, PersonName, q_money


def _new_key() -> str:
    return uuid.uuid4().hex


class _Entry(BaseModel):
    key: str = Field(default_factory=_new_key)
    amount_usd: Decimal = Decimal("0")
    amount_lbp: Decimal = Decimal("0")

    def to_row(self) -> dict:
        return self.model_dump(exclude={"kind", "settles_id"})


class Credit(_Entry):
    kind: Literal["credit"] = "credit"
    person: str
    status: bool = False
    # Id of an earlier persisted unpaid credit that this entry pays off.
    settles_id: Optional[Union[int, str]] = None


class Payment(_Entry):
    kind: Literal["payment"] = "payment"
    reference_number: Optional[str] = None
    cause: Optional[str] = None
    deduction_source: DeductionSource = "current"


class Sale(_Entry):
    kind: Literal["sale"] = "sale"


class Withdrawal(_Entry):
    kind: Literal["withdrawal"] = "withdrawal"


Transaction = Annotated[Union[Credit, Payment, Sale, Withdrawal], Field(discriminator="kind")]
TRANSACTION_ADAPTER = TypeAdapter(Transaction)


class _EntryIn(BaseModel):
    amount_usd: Amount = Decimal("0")
    amount_lbp: Amount = Decimal("0")


class CreditIn(_EntryIn):
    kind: Literal["credit"] = "credit"
    person: PersonName
    status: bool = False


class PaymentIn(_EntryIn):
    kind: Literal["payment"] = "payment"
    reference_number: Optional[str] = None
    cause: Optional[str] = None
    deduction_source: DeductionSource = "current"


class SaleIn(_EntryIn):
    kind: Literal["sale"] = "sale"


class WithdrawalIn(_EntryIn):
    kind: Literal["withdrawal"] = "withdrawal"


TransactionIn = Annotated[Union[CreditIn, PaymentIn, SaleIn, WithdrawalIn], Field(discriminator="kind")]


def assert_amount_present(data: _EntryIn) -> None:
    if data.amount_usd == 0 and data.amount_lbp == 0:
        raise HTTPException(status_code=400, detail="amount is required")


def entry_from_input(data, key: Optional[str] = None):
    """Build a stored entry from operator input, keeping `key` when editing."""
    assert_amount_present(data)
    fields = data.model_dump()
    if key:
        fields["key"] = key
    if isinstance(data, CreditIn):
        if data.status:
            # A paid credit is money coming back into the till.
            fields["amount_usd"] = -data.amount_usd
            fields["amount_lbp"] = -data.amount_lbp
        return Credit(**fields)
    if isinstance(data, PaymentIn):
        return Payment(**fields)
    if isinstance(data, SaleIn):
        return Sale(**fields)
    if isinstance(data, WithdrawalIn):
        return Withdrawal(**fields)
    raise TypeError(f"unsupported transaction input: {type(data).__name__}")


def settlement_for(credit_row: dict) -> Credit:
    """A paid credit entry that pays off a persisted unpaid credit row."""
    usd = q_money(credit_row.get("amount_usd"))
    lbp = q_money(credit_row.get("amount_lbp"))
    return Credit(
        person=str(credit_row.get("person") or ""),
        status=True,
        amount_usd=-abs(usd),
        amount_lbp=-abs(lbp),
        settles_id=credit_row.get("id"),
    )
