"""
Persisting a closed day: one `dailybalances` row, then every entry of the
day, written one call at a time. The first failure stops the batch and
nothing already written is undone.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from .drafts import DraftBook
from .logs import json_log
from .reconciliation import Balance, Totals
from .tables import RemoteError, TableClient


class DayCloseError(Exception):
    def __init__(self, message: str, *, table: str, written: list[dict], conflict: bool = False):
        super().__init__(message)
        self.message = message
        self.table = table
        self.written = written
        self.conflict = conflict


@dataclass
class CloseResult:
    daily_balance: dict
    written: list[dict] = field(default_factory=list)

    def counts(self) -> dict:
        out: dict[str, int] = {}
        for w in self.written:
            out[w["table"]] = out.get(w["table"], 0) + 1
        return out


def close_day(
    client: TableClient,
    *,
    opening: Balance,
    totals: Totals,
    draft: DraftBook,
    close_date: date,
    user_id: Any,
    branch_id: Any,
    withdrawals_table: str = "withdrawals",
) -> CloseResult:
    written: list[dict] = []
    stamp = {"date": close_date, "user_id": user_id, "branch_id": branch_id}

    def _write(table: str, op: str, call, ref: Optional[Any] = None):
        try:
            row = call()
        except RemoteError as exc:
            json_log(
                "error",
                "day_close.write_failed",
                branch_id=branch_id,
                date=close_date,
                table=table,
                op=op,
                written=len(written),
                error=exc.message,
            )
            raise DayCloseError(exc.message, table=table, written=list(written), conflict=exc.conflict) from exc
        written.append({"table": table, "op": op, "ref": ref})
        return row

    json_log("info", "day_close.start", branch_id=branch_id, date=close_date, user_id=user_id, **draft.counts())

    balance_row = _write(
        "dailybalances",
        "insert",
        lambda: client.insert(
            "dailybalances",
            {
                "date": close_date,
                "opening_usd": opening.usd,
                "opening_lbp": opening.lbp,
                "closing_usd": totals.usd,
                "closing_lbp": totals.lbp,
                "user_id": user_id,
                "branch_id": branch_id,
            },
        ),
    )

    for credit in draft.credits:
        _write(
            "credits",
            "upsert",
            lambda c=credit: client.upsert("credits", {**c.to_row(), **stamp}, on_conflict="key"),
            credit.key,
        )
        if credit.settles_id is not None:
            _write(
                "credits",
                "update",
                lambda c=credit: client.update("credits", {"status": True}, filters={"id": c.settles_id}),
                credit.settles_id,
            )

    for payment in draft.payments:
        _write("payments", "insert", lambda p=payment: client.insert("payments", {**p.to_row(), **stamp}), payment.key)

    for sale in draft.sales:
        _write("sales", "insert", lambda s=sale: client.insert("sales", {**s.to_row(), **stamp}), sale.key)

    for withdrawal in draft.withdrawals:
        _write(
            withdrawals_table,
            "insert",
            lambda w=withdrawal: client.insert(withdrawals_table, {**w.to_row(), **stamp}),
            withdrawal.key,
        )

    result = CloseResult(daily_balance=balance_row, written=written)
    json_log("info", "day_close.done", branch_id=branch_id, date=close_date, **result.counts())
    return result
