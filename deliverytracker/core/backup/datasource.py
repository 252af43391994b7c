from __future__ import annotations

import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from typing import Dict, Generic, List, Type, TypeVar

from deliverytracker.core.backup.models import TrackedRecord
from deliverytracker.core.errors import RecordConflict

R = TypeVar("R", bound=TrackedRecord)


class RecordRepository(ABC, Generic[R]):
    """
    Live-store access the backup engine depends on: one instance per record type.
    """

    @abstractmethod
    def list_all(self, user_id: str, include_deleted: bool = True) -> List[R]:
        raise NotImplementedError

    @abstractmethod
    def upsert(self, record: R) -> R:
        """
        Insert or replace by id. Must raise RecordConflict instead of replacing a
        record whose stored user_id differs from `record.user_id`.
        """
        raise NotImplementedError


class JsonFileRepository(RecordRepository[R]):
    """
    Local JSON-file store used by the CLI scripts. One file per record type:
    {"records": {<id>: <record>}}.
    """

    def __init__(self, path: str, model: Type[R]):
        self.path = path
        self.model = model
        self._lock = threading.Lock()

    def list_all(self, user_id: str, include_deleted: bool = True) -> List[R]:
        with self._lock:
            records = self._read_locked()
        out = [r for r in records.values() if r.user_id == user_id]
        if not include_deleted:
            out = [r for r in out if not r.is_deleted]
        return sorted(out, key=lambda r: r.id)

    def upsert(self, record: R) -> R:
        with self._lock:
            records = self._read_locked()
            current = records.get(record.id)
            if current is not None and current.user_id != record.user_id:
                raise RecordConflict(record_id=record.id)
            records[record.id] = record
            self._write_locked(records)
        return record

    def _read_locked(self) -> Dict[str, R]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            obj = json.load(f)
        raw = obj.get("records") if isinstance(obj, dict) else None
        if not isinstance(raw, dict):
            raise ValueError(f"{self.path} is not a record store file")
        return {rid: self.model.model_validate(v) for rid, v in raw.items()}

    def _write_locked(self, records: Dict[str, R]) -> None:
        d = os.path.dirname(self.path) or "."
        os.makedirs(d, exist_ok=True)
        data = {"records": {rid: r.model_dump(mode="json", by_alias=True) for rid, r in records.items()}}
        fd, tmp = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=d)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False, sort_keys=True)
                f.write("\n")
            os.replace(tmp, self.path)
        finally:
            if os.path.exists(tmp):
                os.remove(tmp)
