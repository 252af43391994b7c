from __future__ import annotations

import threading
from typing import Dict, List, Optional

from deliverytracker.core.backup.cancel import CancelToken
from deliverytracker.core.backup.datasource import RecordRepository
from deliverytracker.core.backup.vault import KeyVault, SecretKey
from deliverytracker.core.errors import KeyUnavailable, RecordConflict


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self._t = float(start)

    def time(self) -> float:
        return self._t

    def advance(self, seconds: float) -> None:
        self._t += float(seconds)


class InMemoryRepository(RecordRepository):
    def __init__(self, records=None):
        self._records: Dict[str, object] = {}
        self._lock = threading.Lock()
        self.upserts: List[object] = []
        self.list_calls = 0
        self.fail_list: Optional[Exception] = None
        for r in records or []:
            self._records[r.id] = r

    def list_all(self, user_id: str, include_deleted: bool = True):
        self.list_calls += 1
        if self.fail_list is not None:
            raise self.fail_list
        with self._lock:
            snapshot = list(self._records.values())
        out = [r for r in snapshot if r.user_id == user_id]
        if not include_deleted:
            out = [r for r in out if not r.is_deleted]
        return sorted(out, key=lambda r: r.id)

    def upsert(self, record):
        with self._lock:
            current = self._records.get(record.id)
            if current is not None and current.user_id != record.user_id:
                raise RecordConflict(record_id=record.id)
            self._records[record.id] = record
        self.upserts.append(record)
        return record

    def get(self, record_id: str):
        return self._records.get(record_id)

    def put_direct(self, record) -> None:
        """Simulate an external writer changing the live store."""
        with self._lock:
            self._records[record.id] = record

    def all(self):
        return sorted(self._records.values(), key=lambda r: r.id)


class BlockingRepository(InMemoryRepository):
    """list_all() parks until released; used to hold an operation in flight."""

    def __init__(self, records=None):
        super().__init__(records)
        self.entered = threading.Event()
        self.release = threading.Event()

    def list_all(self, user_id: str, include_deleted: bool = True):
        self.entered.set()
        self.release.wait(timeout=5)
        return super().list_all(user_id, include_deleted=include_deleted)


class UnavailableVault(KeyVault):
    def get_or_create_key(self) -> SecretKey:
        raise KeyUnavailable("secure store locked")

    def reset_key(self, *, trace_id: str = "vault") -> None:
        raise KeyUnavailable("secure store locked")


class CancelAtStep(CancelToken):
    def __init__(self, step: str):
        super().__init__()
        self.step = step

    def raise_if_cancelled(self, step: str) -> None:
        if step == self.step:
            self.cancel()
        super().raise_if_cancelled(step)
