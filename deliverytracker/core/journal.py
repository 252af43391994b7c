from __future__ import annotations

import json
import os
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

REDACTED = "***REDACTED***"

# Field names whose values never reach a journal line. Matched case-insensitively.
SENSITIVE_FIELDS = frozenset(
    {
        "password",
        "secret",
        "token",
        "key",
        "key_bytes",
        "material",
        "device_key",
        "plaintext",
        "ciphertext",
        "nonce",
    }
)

_path_locks: Dict[str, threading.Lock] = {}
_path_locks_guard = threading.Lock()


def redact(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: (REDACTED if str(k).lower() in SENSITIVE_FIELDS else redact(v)) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [redact(x) for x in obj]
    return obj


def _lock_for(path: str) -> threading.Lock:
    with _path_locks_guard:
        return _path_locks.setdefault(os.path.abspath(path), threading.Lock())


def _utc_stamp() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


@dataclass(frozen=True)
class JsonlJournal:
    """Append-only JSON-lines file. One object per line, details redacted."""

    path: str

    def append(self, entry: Dict[str, Any]) -> None:
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        line = json.dumps({"ts": _utc_stamp(), **redact(entry)}, ensure_ascii=False, default=str)
        with _lock_for(self.path):
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")


@dataclass(frozen=True)
class EventLogger(JsonlJournal):
    """Backup/restore pipeline steps: logs/backup_events.jsonl."""

    path: str = os.path.join("logs", "backup_events.jsonl")

    def log(self, trace_id: str, event_type: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.append({"trace_id": trace_id, "event": event_type, "details": details or {}})


@dataclass(frozen=True)
class SecurityAuditLogger(JsonlJournal):
    """Key lifecycle and rejected-backup events: logs/security.jsonl."""

    path: str = os.path.join("logs", "security.jsonl")

    def log(
        self,
        *,
        trace_id: str,
        severity: str,
        event: str,
        component: str,
        outcome: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.append(
            {
                "trace_id": trace_id,
                "severity": severity,
                "event": event,
                "component": component,
                "outcome": outcome,
                "details": details or {},
            }
        )


def read_journal(path: str, *, trace_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Parsed entries, oldest first. Unparseable lines (a torn final write) are skipped."""
    if not os.path.exists(path):
        return []
    out: List[Dict[str, Any]] = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue
            if trace_id is None or entry.get("trace_id") == trace_id:
                out.append(entry)
    return out
