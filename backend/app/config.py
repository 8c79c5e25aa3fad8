import os
from decimal import Decimal, InvalidOperation
from typing import List

# Fixed USD allowance for the gap between counted cash and computed totals.
CLOSING_TOLERANCE_USD = Decimal("1.00")
DEFAULT_EXCHANGE_RATE = Decimal("90000")
WITHDRAWALS_TABLES = {"withdrawals", "daniel"}


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def _decimal(self, name: str, default: Decimal) -> Decimal:
        raw = (os.getenv(name) or "").strip()
        if not raw:
            return default
        try:
            value = Decimal(raw)
        except InvalidOperation:
            return default
        return value if value >= 0 else default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', 'postgresql://localhost/dailybalance')
        # "postgres" talks to DATABASE_URL; "memory" keeps every table in-process (local demos).
        self.table_backend = (os.getenv("TABLE_BACKEND") or "postgres").strip().lower()
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"
        self.closing_tolerance_usd = self._decimal("CLOSING_TOLERANCE_USD", CLOSING_TOLERANCE_USD)
        self.default_exchange_rate = self._decimal("DEFAULT_EXCHANGE_RATE", DEFAULT_EXCHANGE_RATE) or DEFAULT_EXCHANGE_RATE
        withdrawals_table = (os.getenv("WITHDRAWALS_TABLE") or "withdrawals").strip().lower()
        self.withdrawals_table = withdrawals_table if withdrawals_table in WITHDRAWALS_TABLES else "withdrawals"
        # Where unsubmitted day drafts survive restarts. Empty keeps them in memory only.
        self.drafts_dir = (os.getenv("DRAFTS_DIR") or "").strip()

settings = Settings()
