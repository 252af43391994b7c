from __future__ import annotations

import json
import os
import shutil
import threading
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from filelock import FileLock, Timeout
from pydantic import BaseModel, ConfigDict, Field

from deliverytracker.core.crypto import (
    DeviceKeyMissingError,
    aesgcm_decrypt,
    aesgcm_encrypt,
    best_effort_restrict_permissions,
    key_id_from_key_bytes,
    read_device_key,
)
from deliverytracker.core.journal import SecurityAuditLogger


class SecureStoreMode(str, Enum):
    READY = "READY"
    KEY_MISSING = "KEY_MISSING"
    STORE_MISSING = "STORE_MISSING"
    STORE_CORRUPT = "STORE_CORRUPT"
    KEY_MISMATCH = "KEY_MISMATCH"
    READ_ONLY = "READ_ONLY"


_UNUSABLE = frozenset({SecureStoreMode.KEY_MISSING, SecureStoreMode.KEY_MISMATCH, SecureStoreMode.STORE_CORRUPT})

# mode -> (status line, what the user should do)
_GUIDANCE: Dict[SecureStoreMode, Tuple[str, str]] = {
    SecureStoreMode.READY: ("Secure store ready.", "No action needed."),
    SecureStoreMode.KEY_MISSING: (
        "Device key not found or unreadable.",
        "Run scripts/create_device_key.py on first install, or put the original device key back in place.",
    ),
    SecureStoreMode.STORE_MISSING: ("No sealed entries yet.", "The store is created when the backup key is first generated."),
    SecureStoreMode.STORE_CORRUPT: (
        "Secure store is corrupt or cannot be decrypted.",
        "Do not overwrite it. Copy secure/backups/last_known_good.enc back, or reset the backup key and accept that old backups are lost.",
    ),
    SecureStoreMode.KEY_MISMATCH: (
        "Device key does not belong to this secure store.",
        "Restore the device key that sealed this store.",
    ),
    SecureStoreMode.READ_ONLY: ("Secure store is readable (read-only mode).", "Disable secure_store_read_only to create or reset keys."),
}


class SecretUnavailable(RuntimeError):
    pass


class SecureStoreStatus(BaseModel):
    model_config = ConfigDict(extra="forbid")
    mode: SecureStoreMode
    status: str
    next_steps: str
    key_id: Optional[str] = None
    store_id: Optional[str] = None
    entry_count: int = 0
    last_error: Optional[str] = None


class _SealedContents(BaseModel):
    model_config = ConfigDict(extra="forbid")
    store_version: int = Field(default=1, ge=1)
    store_id: str
    key_id: str
    created_at: float
    updated_at: float
    entries: Dict[str, Any] = Field(default_factory=dict)


@dataclass
class _Probe:
    mode: SecureStoreMode
    device_key: Optional[bytes] = None
    contents: Optional[_SealedContents] = None
    error: Optional[str] = None


@dataclass
class SecureStore:
    """
    Device-bound sealed key/value store; the platform secure storage the backup
    key lives in. Entries are JSON values sealed with AES-256-GCM under the
    device key and never leave this object in encrypted-file form.

    On disk:
      secure_store.enc                 {"v", "nonce", "ciphertext"} sealed by the device key
      store.meta.json                  plaintext store_id + key_id, for mismatch detection
      backups/secure_store.<ts>.enc    copy taken before every overwrite
      backups/last_known_good.enc      copy of the latest good write
      secure_store.enc.lock            held while a change is read, applied and sealed
    """

    device_key_path: str
    store_path: str
    meta_path: str = os.path.join("secure", "store.meta.json")
    backups_dir: str = os.path.join("secure", "backups")
    max_backups: int = 10
    max_bytes: int = 65536
    read_only: bool = False
    audit: Optional[SecurityAuditLogger] = None
    aad: bytes = b"deliverytracker.secure_store.v1"
    lock_path: Optional[str] = None
    lock_timeout: float = 10.0

    def __post_init__(self) -> None:
        self._lock = threading.RLock()
        if self.lock_path is None:
            self.lock_path = self.store_path + ".lock"
        # serializes writers across processes and across SecureStore instances
        self._file_lock = FileLock(self.lock_path)

    # ---------- public API ----------
    def status(self) -> SecureStoreStatus:
        with self._lock:
            probe = self._probe_locked()
        text, steps = _GUIDANCE[probe.mode]
        c = probe.contents
        return SecureStoreStatus(
            mode=probe.mode,
            status=text,
            next_steps=steps,
            key_id=key_id_from_key_bytes(probe.device_key) if probe.device_key else None,
            store_id=c.store_id if c else None,
            entry_count=len(c.entries) if c else 0,
            last_error=probe.error,
        )

    def is_available(self) -> bool:
        return self.status().mode not in _UNUSABLE

    def list_keys(self, prefix: Optional[str] = None) -> List[str]:
        with self._lock:
            names = sorted(self._readable_locked().keys())
        return [n for n in names if not prefix or n.startswith(prefix)]

    def get(self, key: str) -> Any:
        with self._lock:
            return self._readable_locked().get(key)

    def set(self, key: str, value: Any, *, trace_id: str = "secure") -> None:
        _check_value(value, self.max_bytes)

        def put(entries: Dict[str, Any]) -> bool:
            entries[key] = value
            return True

        with self._lock:
            self._mutate_locked(put, trace_id=trace_id, event="secure.set", entry=key)

    def set_if_absent(self, key: str, value: Any, *, trace_id: str = "secure") -> Any:
        """
        Store `value` under `key` unless an entry already exists. The check is
        repeated on freshly unsealed contents while the file lock is held, so two
        stores racing on the same files agree on one value. Returns whichever
        value is stored afterwards.
        """
        _check_value(value, self.max_bytes)
        with self._lock:
            existing = self._readable_locked().get(key)
            if existing is not None:
                return existing

            stored: Dict[str, Any] = {}

            def put(entries: Dict[str, Any]) -> bool:
                if entries.get(key) is not None:
                    stored["value"] = entries[key]
                    return False
                entries[key] = value
                stored["value"] = value
                return True

            self._mutate_locked(put, trace_id=trace_id, event="secure.set", entry=key)
            return stored["value"]

    def delete(self, key: str, *, trace_id: str = "secure") -> None:
        def drop(entries: Dict[str, Any]) -> bool:
            return entries.pop(key, None) is not None

        with self._lock:
            self._mutate_locked(drop, trace_id=trace_id, event="secure.delete", entry=key, severity="HIGH")

    # ---------- internal ----------
    def _probe_locked(self) -> _Probe:
        try:
            device_key = read_device_key(self.device_key_path)
        except (DeviceKeyMissingError, ValueError, OSError) as e:
            return _Probe(SecureStoreMode.KEY_MISSING, error=str(e))

        if not os.path.exists(self.store_path):
            return _Probe(SecureStoreMode.STORE_MISSING, device_key=device_key)

        meta_key_id = self._meta_key_id()
        if meta_key_id and meta_key_id != key_id_from_key_bytes(device_key):
            return _Probe(SecureStoreMode.KEY_MISMATCH, device_key=device_key, error="key_mismatch")

        try:
            contents = self._unseal(device_key)
        except Exception as e:  # noqa: BLE001
            return _Probe(SecureStoreMode.STORE_CORRUPT, device_key=device_key, error=f"{type(e).__name__}: {e}")
        if contents.key_id != key_id_from_key_bytes(device_key):
            return _Probe(SecureStoreMode.KEY_MISMATCH, device_key=device_key, error="sealed key_id mismatch")

        mode = SecureStoreMode.READ_ONLY if self.read_only else SecureStoreMode.READY
        return _Probe(mode, device_key=device_key, contents=contents)

    def _usable_locked(self) -> _Probe:
        probe = self._probe_locked()
        if probe.mode in _UNUSABLE:
            _, steps = _GUIDANCE[probe.mode]
            self._audit_log(trace_id="secure", severity="WARN", event="secure.unavailable", outcome=probe.mode.value, details={"next": steps})
            raise SecretUnavailable(f"{probe.mode.value}: {steps}")
        return probe

    def _readable_locked(self) -> Dict[str, Any]:
        probe = self._usable_locked()
        return dict(probe.contents.entries) if probe.contents else {}

    def _mutate_locked(
        self,
        change: Callable[[Dict[str, Any]], bool],
        *,
        trace_id: str,
        event: str,
        entry: str,
        severity: str = "INFO",
    ) -> None:
        if self.read_only:
            self._audit_log(trace_id=trace_id, severity="WARN", event="secure.write_blocked", outcome="read_only", details={"entry": entry})
            raise SecretUnavailable("Secure store is read-only.")
        os.makedirs(os.path.dirname(self.store_path) or ".", exist_ok=True)
        try:
            with self._file_lock.acquire(timeout=self.lock_timeout):
                probe = self._usable_locked()
                assert probe.device_key is not None
                now = time.time()
                contents = probe.contents or _SealedContents(
                    store_id=uuid.uuid4().hex,
                    key_id=key_id_from_key_bytes(probe.device_key),
                    created_at=now,
                    updated_at=now,
                )
                if not change(contents.entries):
                    return
                contents.updated_at = now
                self._seal(probe.device_key, contents)
        except Timeout as e:
            self._audit_log(trace_id=trace_id, severity="WARN", event="secure.write_blocked", outcome="locked", details={"entry": entry})
            raise SecretUnavailable(f"Secure store is locked by another writer ({self.lock_path}).") from e
        self._audit_log(trace_id=trace_id, severity=severity, event=event, outcome="ok", details={"entry": entry})

    def _unseal(self, device_key: bytes) -> _SealedContents:
        with open(self.store_path, "r", encoding="utf-8") as f:
            blob = json.load(f)
        pt = aesgcm_decrypt(device_key, blob, aad=self.aad)
        return _SealedContents.model_validate_json(pt)

    def _seal(self, device_key: bytes, contents: _SealedContents) -> None:
        pt = contents.model_dump_json().encode("utf-8")
        if len(pt) > int(self.max_bytes):
            raise ValueError("Secure store contents too large.")
        blob = aesgcm_encrypt(device_key, pt, aad=self.aad)

        os.makedirs(os.path.dirname(self.store_path) or ".", exist_ok=True)
        self._copy_aside()
        tmp = f"{self.store_path}.{uuid.uuid4().hex[:8]}.tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(blob, f, sort_keys=True)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.store_path)
        finally:
            if os.path.exists(tmp):
                os.remove(tmp)
        best_effort_restrict_permissions(self.store_path)
        _write_json(self.meta_path, {"store_id": contents.store_id, "key_id": contents.key_id, "store_version": contents.store_version})
        try:
            shutil.copy2(self.store_path, os.path.join(self.backups_dir, "last_known_good.enc"))
        except OSError:
            pass

    def _copy_aside(self) -> None:
        """Keep the previous sealed file before it is replaced; oldest copies beyond max_backups go."""
        os.makedirs(self.backups_dir, exist_ok=True)
        if os.path.exists(self.store_path):
            stamp = time.strftime("%Y%m%d_%H%M%S", time.gmtime())
            shutil.copy2(self.store_path, os.path.join(self.backups_dir, f"secure_store.{stamp}.{uuid.uuid4().hex[:6]}.enc"))
        copies = sorted(
            (os.path.join(self.backups_dir, n) for n in os.listdir(self.backups_dir) if n.startswith("secure_store.") and n.endswith(".enc")),
            key=os.path.getmtime,
            reverse=True,
        )
        for p in copies[int(self.max_backups) :]:
            try:
                os.remove(p)
            except OSError:
                pass

    def _meta_key_id(self) -> Optional[str]:
        try:
            with open(self.meta_path, "r", encoding="utf-8") as f:
                meta = json.load(f)
        except (OSError, ValueError):
            return None
        return meta.get("key_id") if isinstance(meta, dict) else None

    def _audit_log(self, *, trace_id: str, severity: str, event: str, outcome: str, details: Dict[str, Any]) -> None:
        if self.audit is None:
            return
        self.audit.log(trace_id=trace_id, severity=severity, event=event, component="secure_store", outcome=outcome, details=details)


def _check_value(value: Any, max_bytes: int) -> None:
    try:
        encoded = json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise ValueError("Secret value must be JSON-serializable.") from e
    if len(encoded.encode("utf-8")) > int(max_bytes):
        raise ValueError("Secret value too large.")


def _write_json(path: str, data: Dict[str, Any]) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, sort_keys=True)
        f.write("\n")
    os.replace(tmp, path)
