from __future__ import annotations

import os

from deliverytracker.core.errors import KeyUnavailable
from deliverytracker.core.journal import REDACTED, EventLogger, SecurityAuditLogger, read_journal, redact


def test_sensitive_fields_are_redacted_recursively():
    out = redact({"Key": b"x", "nested": [{"plaintext": "shift notes", "file": "a.enc"}], "key_id": "abc"})
    assert out["Key"] == REDACTED
    assert out["nested"][0] == {"plaintext": REDACTED, "file": "a.enc"}
    assert out["key_id"] == "abc"


def test_event_log_appends_lines(tmp_path):
    path = os.path.join(str(tmp_path), "logs", "backup_events.jsonl")
    log = EventLogger(path)
    log.log("t1", "backup.state", {"to": "COLLECTING"})
    log.log("t2", "backup.state", {"to": "COLLECTING"})
    log.log("t1", "backup.created", {"nonce": "abc"})

    entries = read_journal(path, trace_id="t1")
    assert [e["event"] for e in entries] == ["backup.state", "backup.created"]
    assert entries[1]["details"]["nonce"] == REDACTED
    assert "ts" in entries[0]


def test_torn_line_is_skipped(tmp_path):
    path = os.path.join(str(tmp_path), "security.jsonl")
    SecurityAuditLogger(path=path).log(trace_id="t", severity="HIGH", event="restore.authentication_failed", component="backup_engine", outcome="rejected")
    with open(path, "a", encoding="utf-8") as f:
        f.write('{"trace_id": "t", "ev')
    entries = read_journal(path)
    assert len(entries) == 1
    assert entries[0]["severity"] == "HIGH"


def test_error_context_is_redacted():
    err = KeyUnavailable("locked", alias="K", material="00ff")
    d = err.to_dict()
    assert d["code"] == "key_unavailable"
    assert d["context"] == {"alias": "K", "material": REDACTED}
    assert str(err) == "key_unavailable: locked"
