"""
Unsubmitted entries for one branch-day, and the scratch store that keeps
them across restarts until the day is closed.
"""
from __future__ import annotations

import json
import os
import re
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

from .transactions import TRANSACTION_ADAPTER, Credit, Payment, Sale, Withdrawal


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryKeyValueStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._data: dict[str, str] = {}

    def get(self, key):
        with self._lock:
            return self._data.get(key)

    def set(self, key, value):
        with self._lock:
            self._data[key] = value

    def delete(self, key):
        with self._lock:
            self._data.pop(key, None)


_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]+")


class FileKeyValueStore:
    """One JSON file per key under `root`; writes are atomic renames."""

    def __init__(self, root: str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root / f"{_SAFE_KEY.sub('_', key)}.json"

    def get(self, key):
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key, value):
        fd, tmp = tempfile.mkstemp(dir=self.root, prefix=".draft-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp, self._path(key))
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def delete(self, key):
        path = self._path(key)
        if path.exists():
            path.unlink()


def draft_key(branch_id) -> str:
    return f"draft:branch:{branch_id}"


@dataclass
class DraftBook:
    credits: list[Credit] = field(default_factory=list)
    payments: list[Payment] = field(default_factory=list)
    sales: list[Sale] = field(default_factory=list)
    withdrawals: list[Withdrawal] = field(default_factory=list)

    def _bucket(self, entry) -> list:
        if isinstance(entry, Credit):
            return self.credits
        if isinstance(entry, Payment):
            return self.payments
        if isinstance(entry, Sale):
            return self.sales
        if isinstance(entry, Withdrawal):
            return self.withdrawals
        raise TypeError(f"unsupported transaction: {type(entry).__name__}")

    def entries(self) -> list:
        return [*self.credits, *self.payments, *self.sales, *self.withdrawals]

    def find(self, key: str):
        for entry in self.entries():
            if entry.key == key:
                return entry
        return None

    def add(self, entry) -> None:
        self._bucket(entry).append(entry)

    def replace(self, key: str, entry) -> bool:
        bucket = self._bucket(entry)
        for i, existing in enumerate(bucket):
            if existing.key == key:
                bucket[i] = entry
                return True
        return False

    def remove(self, key: str) -> bool:
        entry = self.find(key)
        if entry is None:
            return False
        self._bucket(entry).remove(entry)
        return True

    def clear(self) -> None:
        self.credits.clear()
        self.payments.clear()
        self.sales.clear()
        self.withdrawals.clear()

    def counts(self) -> dict:
        return {
            "credits": len(self.credits),
            "payments": len(self.payments),
            "sales": len(self.sales),
            "withdrawals": len(self.withdrawals),
        }

    def to_json(self) -> str:
        return json.dumps([e.model_dump(mode="json") for e in self.entries()])

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "DraftBook":
        book = cls()
        for item in json.loads(raw or "[]"):
            book.add(TRANSACTION_ADAPTER.validate_python(item))
        return book


def load_draft(store: KeyValueStore, branch_id) -> DraftBook:
    return DraftBook.from_json(store.get(draft_key(branch_id)))


def save_draft(store: KeyValueStore, branch_id, book: DraftBook) -> None:
    store.set(draft_key(branch_id), book.to_json())


def discard_draft(store: KeyValueStore, branch_id) -> None:
    store.delete(draft_key(branch_id))
