from fastapi import APIRouter, Depends, HTTPException, Query
from datetime import date
from decimal import Decimal
from typing import Optional

from ..config import settings
from ..deps import get_tables, require_admin
from ..reconciliation import usd_equivalent
from ..tables import TableClient
from ..validation import ExchangeRate

router = APIRouter(prefix="/reports", tags=["reports"], dependencies=[Depends(require_admin)])


@router.get("/daily-balances")
def list_daily_balances(
    branch_id: int,
    limit: int = 60,
    exchange_rate: Optional[ExchangeRate] = Query(default=None),
    tables: TableClient = Depends(get_tables),
):
    """
    Closed days for a branch, newest first, plus an oldest-first series of
    closing balances for charting. `closing_in_usd` uses the given rate and is
    computed on read only.
    """
    if limit < 1 or limit > 1000:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 1000")
    rate = Decimal(str(exchange_rate or settings.default_exchange_rate))
    rows = tables.select(
        "dailybalances",
        filters={"branch_id": branch_id},
        order_by="date",
        descending=True,
        limit=limit,
    )
    series = [
        {
            "date": r.get("date"),
            "closing_usd": r.get("closing_usd"),
            "closing_lbp": r.get("closing_lbp"),
            "closing_in_usd": usd_equivalent(r.get("closing_usd"), r.get("closing_lbp"), rate),
        }
        for r in reversed(rows)
    ]
    return {"daily_balances": rows, "series": series, "exchange_rate": rate}


@router.get("/daily-balances/{day}/transactions")
def day_transactions(day: date, branch_id: int, tables: TableClient = Depends(get_tables)):
    rows = tables.select("dailybalances", filters={"branch_id": branch_id, "date": day}, limit=1)
    balance = rows[0] if rows else None
    if not balance:
        raise HTTPException(status_code=404, detail="day not closed")

    out = {"daily_balance": balance}
    for name, table in (
        ("credits", "credits"),
        ("payments", "payments"),
        ("sales", "sales"),
        ("withdrawals", settings.withdrawals_table),
    ):
        out[name] = tables.select(table, filters={"branch_id": branch_id, "date": day})
    return out
