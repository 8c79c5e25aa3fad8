from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from datetime import timedelta
from decimal import Decimal
from typing import Optional
import random

from .. import balances
from ..config import settings
from ..day_close import close_day
from ..deps import get_tables, require_admin
from ..drafts import DraftBook
from ..reconciliation import OpeningBalance, compute_totals
from ..session import utc_today
from ..tables import TableClient
from ..validation import q_money
from ..transactions import Credit, Payment, Sale, Withdrawal

router = APIRouter(prefix="/devtools", tags=["devtools"])


class MockHistoryIn(BaseModel):
    branch_id: int
    days: int = Field(default=30, ge=1, le=365)
    seed: Optional[int] = None
    opening_usd: Decimal = Decimal("1000")
    opening_lbp: Decimal = Decimal("1500000")


def _usd(rng: random.Random) -> Decimal:
    return Decimal(str(round(rng.uniform(50, 100), 2)))


def _lbp(rng: random.Random) -> Decimal:
    return Decimal(rng.randint(500_000, 1_000_000))


def _mock_day(rng: random.Random) -> DraftBook:
    book = DraftBook()
    for i in range(3):
        book.add(Credit(person=f"Person {i + 1}", amount_usd=_usd(rng), amount_lbp=_lbp(rng)))
        book.add(
            Payment(
                reference_number=f"REF-{i + 1}",
                cause=f"Payment cause {i + 1}",
                amount_usd=_usd(rng),
                amount_lbp=_lbp(rng),
            )
        )
        book.add(Sale(amount_usd=_usd(rng) * 4, amount_lbp=_lbp(rng) * 4))
        book.add(Withdrawal(amount_usd=_usd(rng), amount_lbp=_lbp(rng)))
    return book


@router.post("/mock-history")
def generate_mock_history(data: MockHistoryIn, tables: TableClient = Depends(get_tables), user=Depends(require_admin)):
    """
    Local/dev utility: close `days` consecutive random days for a branch, ending today.
    Days that are already closed are skipped. Disabled in non-local environments.
    """
    if settings.env not in {"local", "dev"}:
        # Act like it doesn't exist in production to avoid accidental exposure.
        raise HTTPException(status_code=404, detail="not found")
    if not balances.get_branch(tables, data.branch_id):
        raise HTTPException(status_code=404, detail="branch not found")

    rng = random.Random(data.seed)
    closed = set(balances.list_closed_dates(tables, data.branch_id))
    opening = OpeningBalance(usd=q_money(data.opening_usd), lbp=q_money(data.opening_lbp))
    today = utc_today()
    created = []
    for offset in range(data.days - 1, -1, -1):
        day = today - timedelta(days=offset)
        if day in closed:
            continue
        book = _mock_day(rng)
        totals = compute_totals(opening, book.credits, book.payments, book.sales, book.withdrawals)
        close_day(
            tables,
            opening=opening,
            totals=totals,
            draft=book,
            close_date=day,
            user_id=user["user_id"],
            branch_id=data.branch_id,
            withdrawals_table=settings.withdrawals_table,
        )
        created.append(day)
        opening = OpeningBalance(usd=totals.usd, lbp=totals.lbp, date=day)
    return {"ok": True, "created": created, "skipped": data.days - len(created)}
