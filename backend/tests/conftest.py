import os
import sys
from datetime import date
from decimal import Decimal


# Allow running pytest from either the repo root or from within `backend/`.
# Tests import `backend.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

import pytest

from backend.app.drafts import MemoryKeyValueStore
from backend.app.session import DaySession, SessionRegistry
from backend.app.tables import MemoryTableClient

TODAY = date(2026, 3, 10)


@pytest.fixture
def tables():
    return MemoryTableClient(
        seed={
            "branches": [{"id": 1, "name": "Hamra"}, {"id": 2, "name": "Jounieh"}],
            "users": [
                {"id": 10, "name": "Rana", "role": "employee"},
                {"id": 11, "name": "Omar", "role": "admin"},
            ],
            "dailybalances": [
                {
                    "date": date(2026, 3, 9),
                    "opening_usd": Decimal("80"),
                    "opening_lbp": Decimal("450000"),
                    "closing_usd": Decimal("100"),
                    "closing_lbp": Decimal("900000"),
                    "user_id": 10,
                    "branch_id": 1,
                },
            ],
        }
    )


@pytest.fixture
def store():
    return MemoryKeyValueStore()


@pytest.fixture
def make_session(tables, store):
    def _make(**kwargs):
        kwargs.setdefault("exchange_rate", Decimal("90000"))
        kwargs.setdefault("tolerance", Decimal("1.00"))
        kwargs.setdefault("withdrawals_table", "withdrawals")
        kwargs.setdefault("today", lambda: TODAY)
        return DaySession(tables, store, **kwargs)

    return _make


@pytest.fixture
def registry(tables, store):
    return SessionRegistry(
        tables,
        store,
        exchange_rate=Decimal("90000"),
        tolerance=Decimal("1.00"),
        withdrawals_table="withdrawals",
        today=lambda: TODAY,
    )
