from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import Optional
from datetime import date
from decimal import Decimal

from ..deps import get_sessions
from ..session import SessionRegistry
from ..transactions import TransactionIn
from ..validation import Amount, ExchangeRate

router = APIRouter(prefix="/daily", tags=["daily"])


class BranchSelectIn(BaseModel):
    branch_id: int


class ExchangeRateIn(BaseModel):
    exchange_rate: ExchangeRate


class ManualDateIn(BaseModel):
    # None goes back to today's date.
    close_date: Optional[date] = None


class CloseRequestIn(BaseModel):
    user_id: Optional[int] = None
    closing_usd: Amount = Decimal("0")
    closing_lbp: Amount = Decimal("0")


@router.post("/sessions")
def create_session(sessions: SessionRegistry = Depends(get_sessions)):
    sess = sessions.create()
    return {"session": sess.snapshot()}


@router.get("/sessions/{session_id}")
def get_session(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    return {"session": sessions.get(session_id).snapshot()}


@router.delete("/sessions/{session_id}")
def end_session(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    sessions.get(session_id)
    sessions.drop(session_id)
    return {"ok": True}


@router.post("/sessions/{session_id}/branch")
def select_branch(session_id: str, data: BranchSelectIn, sessions: SessionRegistry = Depends(get_sessions)):
    sess = sessions.get(session_id)
    opening = sess.select_branch(data.branch_id)
    return {"opening": opening.as_dict(), "session": sess.snapshot()}


@router.post("/sessions/{session_id}/opening/confirm")
def confirm_opening(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    sess = sessions.get(session_id)
    sess.confirm_opening()
    return {"session": sess.snapshot()}


@router.post("/sessions/{session_id}/transactions")
def add_transaction(session_id: str, data: TransactionIn, sessions: SessionRegistry = Depends(get_sessions)):
    sess = sessions.get(session_id)
    entry = sess.add(data)
    return {"transaction": entry.model_dump(), "totals": sess.totals.as_dict()}


@router.patch("/sessions/{session_id}/transactions/{key}")
def update_transaction(
    session_id: str,
    key: str,
    data: TransactionIn,
    sessions: SessionRegistry = Depends(get_sessions),
):
    sess = sessions.get(session_id)
    entry = sess.update(key, data)
    return {"transaction": entry.model_dump(), "totals": sess.totals.as_dict()}


@router.delete("/sessions/{session_id}/transactions/{key}")
def delete_transaction(session_id: str, key: str, sessions: SessionRegistry = Depends(get_sessions)):
    sess = sessions.get(session_id)
    sess.remove(key)
    return {"ok": True, "totals": sess.totals.as_dict()}


@router.get("/sessions/{session_id}/unpaid-credits")
def list_unpaid_credits(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    sess = sessions.get(session_id)
    return {"credits": sess.unpaid_credits()}


@router.post("/sessions/{session_id}/unpaid-credits/{credit_id}/settle")
def settle_credit(session_id: str, credit_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    sess = sessions.get(session_id)
    entry = sess.settle_credit(credit_id)
    return {"transaction": entry.model_dump(), "totals": sess.totals.as_dict()}


@router.put("/sessions/{session_id}/exchange-rate")
def set_exchange_rate(session_id: str, data: ExchangeRateIn, sessions: SessionRegistry = Depends(get_sessions)):
    sess = sessions.get(session_id)
    sess.set_exchange_rate(data.exchange_rate)
    return {"session": sess.snapshot()}


@router.put("/sessions/{session_id}/date")
def set_close_date(session_id: str, data: ManualDateIn, sessions: SessionRegistry = Depends(get_sessions)):
    sess = sessions.get(session_id)
    sess.set_manual_date(data.close_date)
    return {"date": sess.close_date, "manual_date": sess.manual_date}


@router.post("/sessions/{session_id}/close")
def request_close(session_id: str, data: CloseRequestIn, sessions: SessionRegistry = Depends(get_sessions)):
    """
    Validate the day and open the confirmation step. Nothing is written yet:
    the summary returned here is what the operator confirms.
    """
    sess = sessions.get(session_id)
    summary = sess.request_close(data.user_id, data.closing_usd, data.closing_lbp)
    return {"summary": summary, "session": sess.snapshot()}


@router.post("/sessions/{session_id}/close/cancel")
def cancel_close(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    sess = sessions.get(session_id)
    sess.cancel_close()
    return {"session": sess.snapshot()}


@router.post("/sessions/{session_id}/close/confirm")
def confirm_close(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    sess = sessions.get(session_id)
    result = sess.confirm_close()
    return {
        "ok": True,
        "daily_balance": result.daily_balance,
        "counts": result.counts(),
        "next_opening": (sess.opening.as_dict() if sess.opening else None),
    }


@router.post("/sessions/{session_id}/next-day")
def start_next_day(session_id: str, sessions: SessionRegistry = Depends(get_sessions)):
    sess = sessions.get(session_id)
    opening = sess.start_next_day()
    return {"opening": opening.as_dict(), "session": sess.snapshot()}
