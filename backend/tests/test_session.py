import threading
import time
from datetime import date
from decimal import Decimal

import pytest
from fastapi import HTTPException

from backend.app.day_close import DayCloseError
from backend.app.drafts import draft_key
from backend.app.reconciliation import OpeningBalance
from backend.app.session import SessionState
from backend.app.tables import RemoteError
from backend.app.transactions import CreditIn, PaymentIn, SaleIn, WithdrawalIn


def _editing(make_session, branch_id=1):
    sess = make_session()
    sess.select_branch(branch_id)
    sess.confirm_opening()
    return sess


def _fill_day(sess):
    sess.add(SaleIn(amount_usd=Decimal("50"), amount_lbp=Decimal("450000")))
    sess.add(WithdrawalIn(amount_usd=Decimal("20")))
    sess.add(CreditIn(person="Sami", amount_usd=Decimal("10")))
    sess.add(PaymentIn(amount_usd=Decimal("5"), cause="cleaning"))
    sess.add(PaymentIn(amount_usd=Decimal("7"), cause="delivery", deduction_source="daniel"))


def test_select_branch_takes_opening_from_last_close(make_session):
    sess = make_session()
    assert sess.state == SessionState.SELECTING_BRANCH

    opening = sess.select_branch(1)

    assert opening == OpeningBalance(usd=Decimal("100"), lbp=Decimal("900000"), date=date(2026, 3, 9))
    assert sess.state == SessionState.AWAITING_OPENING_CONFIRMATION


def test_branch_without_history_opens_at_zero(make_session):
    sess = make_session()
    opening = sess.select_branch(2)
    assert opening.usd == Decimal("0")
    assert opening.date is None


def test_unknown_branch_is_rejected(make_session):
    with pytest.raises(HTTPException) as ex:
        make_session().select_branch(99)
    assert ex.value.status_code == 404


def test_entries_require_confirmed_opening(make_session):
    sess = make_session()
    sess.select_branch(1)
    with pytest.raises(HTTPException) as ex:
        sess.add(SaleIn(amount_usd=Decimal("1")))
    assert ex.value.status_code == 409


def test_totals_follow_every_change(make_session):
    sess = _editing(make_session)
    _fill_day(sess)
    assert sess.totals.usd == Decimal("115")
    assert sess.totals.lbp == Decimal("1350000")

    sale_key = sess.draft.sales[0].key
    sess.update(sale_key, SaleIn(amount_usd=Decimal("60"), amount_lbp=Decimal("450000")))
    assert sess.totals.usd == Decimal("125")
    assert sess.draft.sales[0].key == sale_key

    sess.remove(sess.draft.credits[0].key)
    assert sess.totals.usd == Decimal("135")


def test_update_cannot_change_kind(make_session):
    sess = _editing(make_session)
    entry = sess.add(SaleIn(amount_usd=Decimal("1")))
    with pytest.raises(HTTPException) as ex:
        sess.update(entry.key, WithdrawalIn(amount_usd=Decimal("1")))
    assert ex.value.status_code == 400


def test_drafts_survive_a_new_session(make_session, store):
    sess = _editing(make_session)
    _fill_day(sess)
    assert store.get(draft_key(1)) is not None

    again = make_session()
    again.select_branch(1)
    assert again.draft.counts() == {"credits": 1, "payments": 2, "sales": 1, "withdrawals": 1}
    assert again.totals.usd == Decimal("115")


def test_exchange_rate_changes_display_only(make_session):
    sess = _editing(make_session)
    _fill_day(sess)
    before = sess.snapshot()

    sess.set_exchange_rate(Decimal("45000"))
    after = sess.snapshot()

    assert before["totals"] == after["totals"]
    assert before["totals_in_usd"]["after_withdrawals"] == Decimal("130")
    assert after["totals_in_usd"]["after_withdrawals"] == Decimal("145")


def test_request_close_needs_an_employee(make_session):
    sess = _editing(make_session)
    _fill_day(sess)
    with pytest.raises(HTTPException) as ex:
        sess.request_close(None, Decimal("115"), Decimal("1350000"))
    assert ex.value.status_code == 400
    assert "employee" in str(ex.value.detail)


def test_request_close_needs_a_sale_and_a_withdrawal(make_session):
    sess = _editing(make_session)
    sess.add(SaleIn(amount_usd=Decimal("5")))
    with pytest.raises(HTTPException) as ex:
        sess.request_close(10, Decimal("105"), Decimal("900000"))
    assert "at least one sale and one withdrawal" in str(ex.value.detail)


def test_request_close_blocks_discrepancy_over_tolerance(make_session):
    sess = _editing(make_session)
    _fill_day(sess)
    with pytest.raises(HTTPException) as ex:
        sess.request_close(10, Decimal("116.50"), Decimal("1350000"))
    assert ex.value.status_code == 400
    assert "off by 1.50 USD" in str(ex.value.detail)
    assert sess.state == SessionState.EDITING


def test_request_close_accepts_gap_at_tolerance(make_session):
    sess = _editing(make_session)
    _fill_day(sess)
    summary = sess.request_close(10, Decimal("116"), Decimal("1350000"))
    assert summary["discrepancy_usd"] == Decimal("1")
    assert summary["counts"]["payments"] == 2
    assert sess.state == SessionState.PENDING_CLOSE

    sess.cancel_close()
    assert sess.state == SessionState.EDITING
    assert sess.closing_employee is None


def test_confirm_close_persists_and_seeds_next_day(make_session, tables, store):
    sess = _editing(make_session)
    _fill_day(sess)
    sess.request_close(10, Decimal("115"), Decimal("1350000"))

    result = sess.confirm_close()

    assert result.daily_balance["closing_usd"] == Decimal("115")
    assert result.daily_balance["opening_usd"] == Decimal("100")
    assert result.daily_balance["date"] == date(2026, 3, 10)
    assert len(tables.rows("payments")) == 2
    assert sess.state == SessionState.CLOSED
    assert sess.draft.counts() == {"credits": 0, "payments": 0, "sales": 0, "withdrawals": 0}
    assert store.get(draft_key(1)) is None
    assert sess.snapshot()["last_close"]["counts"] == {
        "dailybalances": 1,
        "credits": 1,
        "payments": 2,
        "sales": 1,
        "withdrawals": 1,
    }

    opening = sess.start_next_day()
    assert opening == OpeningBalance(usd=Decimal("115"), lbp=Decimal("1350000"), date=date(2026, 3, 10))
    assert sess.state == SessionState.AWAITING_OPENING_CONFIRMATION


def test_same_day_cannot_be_closed_twice(make_session):
    sess = _editing(make_session)
    _fill_day(sess)
    sess.request_close(10, Decimal("115"), Decimal("1350000"))
    sess.confirm_close()
    sess.start_next_day()
    sess.confirm_opening()
    _fill_day(sess)

    with pytest.raises(HTTPException) as ex:
        sess.request_close(10, Decimal("130"), Decimal("1800000"))
    assert "already closed" in str(ex.value.detail)


def test_failed_close_keeps_drafts_and_returns_to_editing(make_session, tables, monkeypatch):
    sess = _editing(make_session)
    _fill_day(sess)
    sess.request_close(10, Decimal("115"), Decimal("1350000"))

    real_insert = tables.insert

    def _insert(table, row):
        if table == "sales":
            raise RemoteError("connection reset", table=table, op="insert")
        return real_insert(table, row)

    monkeypatch.setattr(tables, "insert", _insert)

    with pytest.raises(DayCloseError):
        sess.confirm_close()

    assert sess.state == SessionState.EDITING
    assert sess.draft.counts()["sales"] == 1
    assert len(tables.rows("dailybalances")) == 2
    assert len(tables.rows("payments")) == 2


def test_settle_unpaid_credit(make_session, tables):
    tables.insert(
        "credits",
        {
            "id": 500,
            "key": "old-credit",
            "date": date(2026, 3, 2),
            "person": "Sami",
            "amount_usd": Decimal("30"),
            "amount_lbp": Decimal("0"),
            "status": False,
            "branch_id": 1,
        },
    )
    sess = _editing(make_session)
    assert [c["id"] for c in sess.unpaid_credits()] == [500]

    entry = sess.settle_credit(500)
    assert entry.amount_usd == Decimal("-30")
    assert sess.totals.usd == Decimal("130")

    with pytest.raises(HTTPException) as ex:
        sess.settle_credit("500")
    assert "already settled" in str(ex.value.detail)

    with pytest.raises(HTTPException) as ex:
        sess.update(entry.key, CreditIn(person="Sami", amount_usd=Decimal("1")))
    assert ex.value.status_code == 400


def test_manual_date_requires_setting(make_session, tables):
    sess = _editing(make_session)
    with pytest.raises(HTTPException) as ex:
        sess.set_manual_date(date(2026, 3, 5))
    assert ex.value.status_code == 403

    tables.upsert("settings", {"key": "manual_date_enabled", "value": "true"}, on_conflict="key")

    with pytest.raises(HTTPException) as ex:
        sess.set_manual_date(date(2026, 3, 9))
    assert "already closed" in str(ex.value.detail)

    with pytest.raises(HTTPException) as ex:
        sess.set_manual_date(date(2026, 3, 11))
    assert "future" in str(ex.value.detail)

    assert sess.set_manual_date(date(2026, 3, 5)) == date(2026, 3, 5)
    assert sess.close_date == date(2026, 3, 5)

    sess.set_manual_date(None)
    assert sess.close_date == date(2026, 3, 10)


def test_request_close_rounds_counted_cash_to_cents(make_session):
    sess = _editing(make_session)
    _fill_day(sess)
    summary = sess.request_close(10, Decimal("115.004"), Decimal("1350000"))
    assert summary["discrepancy_usd"] == Decimal("0")
    assert sess.closing_input.usd == Decimal("115.00")


def test_concurrent_confirms_close_the_day_once(make_session, tables, monkeypatch):
    sess = _editing(make_session)
    _fill_day(sess)
    sess.request_close(10, Decimal("115"), Decimal("1350000"))

    entered = threading.Event()
    release = threading.Event()
    real_insert = tables.insert

    def _insert(table, row):
        if table == "dailybalances" and not entered.is_set():
            entered.set()
            release.wait(5)
        return real_insert(table, row)

    monkeypatch.setattr(tables, "insert", _insert)
    outcomes = []

    def _confirm():
        try:
            sess.confirm_close()
            outcomes.append("closed")
        except HTTPException as exc:
            outcomes.append(exc.status_code)
        except DayCloseError:
            outcomes.append("failed")

    first = threading.Thread(target=_confirm)
    first.start()
    assert entered.wait(5)
    second = threading.Thread(target=_confirm)
    second.start()
    time.sleep(0.05)
    release.set()
    first.join(5)
    second.join(5)

    assert sorted(outcomes, key=str) == [409, "closed"]
    assert sess.state == SessionState.CLOSED
    assert len(tables.rows("dailybalances")) == 2
