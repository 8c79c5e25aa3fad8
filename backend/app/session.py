"""
One operator's pass over a branch-day.

    selecting_branch -> awaiting_opening_confirmation -> editing
        -> pending_close -> closed -> awaiting_opening_confirmation (next day)

Entries live in the session's DraftBook and are mirrored to a key-value
store after every change, so an unfinished day survives a restart.
"""
from __future__ import annotations

import functools
import threading
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional

from fastapi import HTTPException

from . import balances
from .config import settings
from .day_close import CloseResult, DayCloseError, close_day
from .drafts import DraftBook, KeyValueStore, discard_draft, load_draft, save_draft
from .logs import json_log
from .reconciliation import (
    Balance,
    OpeningBalance,
    Totals,
    compute_totals,
    discrepancy_usd,
    is_close_allowed,
    usd_equivalent,
)
from .tables import TableClient
from .transactions import Credit, entry_from_input, settlement_for
from .validation import q_money


class SessionState(str, Enum):
    SELECTING_BRANCH = "selecting_branch"
    AWAITING_OPENING_CONFIRMATION = "awaiting_opening_confirmation"
    EDITING = "editing"
    PENDING_CLOSE = "pending_close"
    CLOSED = "closed"


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _locked(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


class DaySession:
    def __init__(
        self,
        client: TableClient,
        store: KeyValueStore,
        *,
        session_id: Optional[str] = None,
        exchange_rate: Optional[Decimal] = None,
        tolerance: Optional[Decimal] = None,
        withdrawals_table: Optional[str] = None,
        today: Callable[[], date] = utc_today,
    ):
        self.id = session_id or uuid.uuid4().hex
        self.client = client
        self.store = store
        self.exchange_rate = Decimal(str(exchange_rate or settings.default_exchange_rate))
        self.tolerance = Decimal(str(tolerance if tolerance is not None else settings.closing_tolerance_usd))
        self.withdrawals_table = withdrawals_table or settings.withdrawals_table
        self.today = today

        self.state = SessionState.SELECTING_BRANCH
        self.branch_id: Any = None
        self.opening: Optional[OpeningBalance] = None
        self.draft = DraftBook()
        self.manual_date: Optional[date] = None
        self.closing_employee: Any = None
        self.closing_input: Optional[Balance] = None
        self.last_close: Optional[CloseResult] = None
        # One operation at a time per session.
        self._lock = threading.RLock()

    # -- state ---------------------------------------------------------------

    def _require(self, *states: SessionState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise HTTPException(status_code=409, detail=f"session is {self.state.value} (expected {allowed})")

    def _move(self, new_state: SessionState) -> None:
        json_log(
            "info",
            "session.transition",
            session_id=self.id,
            branch_id=self.branch_id,
            from_state=self.state.value,
            to_state=new_state.value,
        )
        self.state = new_state

    def _persist(self) -> None:
        save_draft(self.store, self.branch_id, self.draft)

    # -- branch & opening ------------------------------------------------------

    @_locked
    def select_branch(self, branch_id) -> OpeningBalance:
        self._require(
            SessionState.SELECTING_BRANCH,
            SessionState.AWAITING_OPENING_CONFIRMATION,
            SessionState.EDITING,
            SessionState.CLOSED,
        )
        if not balances.get_branch(self.client, branch_id):
            raise HTTPException(status_code=404, detail="branch not found")
        self.branch_id = branch_id
        self.opening = balances.fetch_opening_balance(self.client, branch_id)
        self.draft = load_draft(self.store, branch_id)
        self.manual_date = None
        self._move(SessionState.AWAITING_OPENING_CONFIRMATION)
        return self.opening

    @_locked
    def confirm_opening(self) -> None:
        self._require(SessionState.AWAITING_OPENING_CONFIRMATION)
        self._move(SessionState.EDITING)

    # -- entries ---------------------------------------------------------------

    @_locked
    def add(self, data):
        self._require(SessionState.EDITING)
        entry = entry_from_input(data)
        self.draft.add(entry)
        self._persist()
        return entry

    @_locked
    def update(self, key: str, data):
        self._require(SessionState.EDITING)
        existing = self.draft.find(key)
        if existing is None:
            raise HTTPException(status_code=404, detail="transaction not found")
        if existing.kind != data.kind:
            raise HTTPException(status_code=400, detail="transaction kind cannot change")
        if isinstance(existing, Credit) and existing.settles_id is not None:
            raise HTTPException(status_code=400, detail="settlement entries cannot be edited")
        entry = entry_from_input(data, key=key)
        self.draft.replace(key, entry)
        self._persist()
        return entry

    @_locked
    def remove(self, key: str) -> None:
        self._require(SessionState.EDITING)
        if not self.draft.remove(key):
            raise HTTPException(status_code=404, detail="transaction not found")
        self._persist()

    @_locked
    def unpaid_credits(self) -> list[dict]:
        if self.branch_id is None:
            raise HTTPException(status_code=409, detail="no branch selected")
        return balances.list_unpaid_credits(self.client, self.branch_id)

    @_locked
    def settle_credit(self, credit_id) -> Credit:
        self._require(SessionState.EDITING)
        row = balances.get_unpaid_credit(self.client, self.branch_id, credit_id)
        if not row:
            raise HTTPException(status_code=404, detail="unpaid credit not found")
        if any(str(c.settles_id) == str(row.get("id")) for c in self.draft.credits if c.settles_id is not None):
            raise HTTPException(status_code=400, detail="credit already settled today")
        entry = settlement_for(row)
        self.draft.add(entry)
        self._persist()
        return entry

    # -- rate & date -----------------------------------------------------------

    @_locked
    def set_exchange_rate(self, rate: Decimal) -> Decimal:
        rate = Decimal(str(rate))
        if rate <= 0:
            raise HTTPException(status_code=400, detail="exchange rate must be > 0")
        self.exchange_rate = rate
        return rate

    @_locked
    def set_manual_date(self, value: Optional[date]) -> date:
        self._require(SessionState.AWAITING_OPENING_CONFIRMATION, SessionState.EDITING)
        if value is None:
            self.manual_date = None
            return self.close_date
        if not balances.get_manual_date_enabled(self.client):
            raise HTTPException(status_code=403, detail="manual date is disabled")
        if value > self.today():
            raise HTTPException(status_code=400, detail="date cannot be in the future")
        if value in balances.list_closed_dates(self.client, self.branch_id):
            raise HTTPException(status_code=400, detail=f"{value.isoformat()} is already closed for this branch")
        self.manual_date = value
        return value

    @property
    def close_date(self) -> date:
        return self.manual_date or self.today()

    # -- totals ----------------------------------------------------------------

    @property
    def totals(self) -> Totals:
        return compute_totals(
            self.opening or OpeningBalance(),
            self.draft.credits,
            self.draft.payments,
            self.draft.sales,
            self.draft.withdrawals,
        )

    @_locked
    def snapshot(self) -> dict:
        totals = self.totals
        rate = self.exchange_rate
        return {
            "id": self.id,
            "state": self.state.value,
            "branch_id": self.branch_id,
            "date": self.close_date,
            "manual_date": self.manual_date,
            "opening": (self.opening or OpeningBalance()).as_dict(),
            "transactions": {
                "credits": [e.model_dump() for e in self.draft.credits],
                "payments": [e.model_dump() for e in self.draft.payments],
                "sales": [e.model_dump() for e in self.draft.sales],
                "withdrawals": [e.model_dump() for e in self.draft.withdrawals],
            },
            "counts": self.draft.counts(),
            "totals": totals.as_dict(),
            "exchange_rate": rate,
            "totals_in_usd": {
                "before_withdrawals": usd_equivalent(totals.before_withdrawals.usd, totals.before_withdrawals.lbp, rate),
                "after_withdrawals": usd_equivalent(totals.usd, totals.lbp, rate),
            },
            "closing_employee": self.closing_employee,
            "closing_input": self.closing_input.as_dict() if self.closing_input else None,
            "last_close": (
                {"daily_balance": self.last_close.daily_balance, "counts": self.last_close.counts()}
                if self.last_close
                else None
            ),
        }

    # -- close -----------------------------------------------------------------

    @_locked
    def request_close(self, user_id, closing_usd: Decimal, closing_lbp: Decimal) -> dict:
        self._require(SessionState.EDITING)
        if user_id is None or str(user_id).strip() == "":
            raise HTTPException(status_code=400, detail="Please select an employee to close the day.")
        if not balances.get_user(self.client, user_id):
            raise HTTPException(status_code=400, detail="unknown employee")
        if not self.draft.sales or not self.draft.withdrawals:
            raise HTTPException(status_code=400, detail="Please enter at least one sale and one withdrawal.")
        if self.close_date in balances.list_closed_dates(self.client, self.branch_id):
            raise HTTPException(status_code=400, detail=f"{self.close_date.isoformat()} is already closed for this branch")

        closing = Balance(usd=q_money(closing_usd), lbp=q_money(closing_lbp))
        totals = self.totals
        gap = discrepancy_usd(closing, totals, self.exchange_rate)
        if not is_close_allowed(closing, totals, self.exchange_rate, self.tolerance):
            raise HTTPException(
                status_code=400,
                detail=f"closing balance is off by {gap:.2f} USD (tolerance {self.tolerance:.2f} USD)",
            )

        self.closing_employee = user_id
        self.closing_input = closing
        self._move(SessionState.PENDING_CLOSE)
        return {"date": self.close_date, "counts": self.draft.counts(), "discrepancy_usd": gap}

    @_locked
    def cancel_close(self) -> None:
        self._require(SessionState.PENDING_CLOSE)
        self.closing_employee = None
        self.closing_input = None
        self._move(SessionState.EDITING)

    @_locked
    def confirm_close(self) -> CloseResult:
        self._require(SessionState.PENDING_CLOSE)
        totals = self.totals
        close_date = self.close_date
        try:
            result = close_day(
                self.client,
                opening=self.opening or OpeningBalance(),
                totals=totals,
                draft=self.draft,
                close_date=close_date,
                user_id=self.closing_employee,
                branch_id=self.branch_id,
                withdrawals_table=self.withdrawals_table,
            )
        except DayCloseError:
            # Drafts stay put; already written rows need manual correction.
            self._move(SessionState.EDITING)
            raise

        self.draft.clear()
        discard_draft(self.store, self.branch_id)
        self.opening = OpeningBalance(usd=totals.usd, lbp=totals.lbp, date=close_date)
        self.manual_date = None
        self.closing_input = None
        self.last_close = result
        self._move(SessionState.CLOSED)
        return result

    @_locked
    def start_next_day(self) -> OpeningBalance:
        self._require(SessionState.CLOSED)
        self.closing_employee = None
        self._move(SessionState.AWAITING_OPENING_CONFIRMATION)
        return self.opening or OpeningBalance()


class SessionRegistry:
    def __init__(self, client: TableClient, store: KeyValueStore, **session_kwargs):
        self.client = client
        self.store = store
        self._session_kwargs = session_kwargs
        self._lock = threading.Lock()
        self._sessions: dict[str, DaySession] = {}

    def create(self) -> DaySession:
        sess = DaySession(self.client, self.store, **self._session_kwargs)
        with self._lock:
            self._sessions[sess.id] = sess
        return sess

    def get(self, session_id: str) -> DaySession:
        with self._lock:
            sess = self._sessions.get(session_id)
        if sess is None:
            raise HTTPException(status_code=404, detail="session not found")
        return sess

    def drop(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)
