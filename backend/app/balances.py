from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from .reconciliation import OpeningBalance
from .tables import TableClient

MANUAL_DATE_SETTING = "manual_date_enabled"


def _as_date(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _truthy(raw) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw or "").strip().lower() in {"1", "true", "yes", "on"}


def latest_daily_balance(client: TableClient, branch_id) -> Optional[dict]:
    rows = client.select(
        "dailybalances",
        filters={"branch_id": branch_id},
        order_by="date",
        descending=True,
        limit=1,
    )
    return rows[0] if rows else None


def fetch_opening_balance(client: TableClient, branch_id) -> OpeningBalance:
    """The branch's last closing balance, or zeros when nothing was closed yet."""
    row = latest_daily_balance(client, branch_id)
    if not row:
        return OpeningBalance()
    return OpeningBalance(
        usd=Decimal(str(row.get("closing_usd") or 0)),
        lbp=Decimal(str(row.get("closing_lbp") or 0)),
        date=_as_date(row.get("date")),
    )


def list_closed_dates(client: TableClient, branch_id) -> list[date]:
    rows = client.select("dailybalances", filters={"branch_id": branch_id}, order_by="date", descending=True)
    return [d for d in (_as_date(r.get("date")) for r in rows) if d is not None]


def list_unpaid_credits(client: TableClient, branch_id) -> list[dict]:
    return client.select(
        "credits",
        filters={"branch_id": branch_id, "status": False},
        order_by="date",
        descending=True,
    )


def get_unpaid_credit(client: TableClient, branch_id, credit_id) -> Optional[dict]:
    for row in list_unpaid_credits(client, branch_id):
        if str(row.get("id")) == str(credit_id):
            return row
    return None


def get_manual_date_enabled(client: TableClient) -> bool:
    rows = client.select("settings", filters={"key": MANUAL_DATE_SETTING}, limit=1)
    if not rows:
        return False
    return _truthy(rows[0].get("value"))


def set_manual_date_enabled(client: TableClient, enabled: bool) -> bool:
    client.upsert("settings", {"key": MANUAL_DATE_SETTING, "value": "true" if enabled else "false"}, on_conflict="key")
    return bool(enabled)


def list_branches(client: TableClient) -> list[dict]:
    return client.select("branches", order_by="name")


def get_branch(client: TableClient, branch_id) -> Optional[dict]:
    rows = client.select("branches", filters={"id": branch_id}, limit=1)
    return rows[0] if rows else None


def list_users(client: TableClient) -> list[dict]:
    return client.select("users", order_by="name")


def get_user(client: TableClient, user_id) -> Optional[dict]:
    rows = client.select("users", filters={"id": user_id}, limit=1)
    return rows[0] if rows else None
