from __future__ import annotations

import os
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from deliverytracker.core.backup import codec, serializer
from deliverytracker.core.backup.cancel import CancelToken
from deliverytracker.core.backup.datasource import RecordRepository
from deliverytracker.core.backup.files import enforce_retention, list_backups, new_backup_path, read_backup_text, write_atomic_text
from deliverytracker.core.backup.merger import MergeStats, merge_records
from deliverytracker.core.backup.models import BackupState, OperationResult, UserSettingsRecord
from deliverytracker.core.backup.vault import KeyVault, SecureStoreKeyVault
from deliverytracker.core.errors import (
    AuthenticationFailed,
    Cancelled,
    ConfigError,
    NotAuthenticated,
    OperationInProgress,
    StateTransitionError,
    StorageError,
    TrackerError,
    UnsupportedFormat,
)
from deliverytracker.core.journal import EventLogger, SecurityAuditLogger
from deliverytracker.core.logger import get_logger

T = TypeVar("T")

BACKUP = "backup"
RESTORE = "restore"

_TERMINAL = {BackupState.DONE, BackupState.FAILED, BackupState.CANCELLED}

_TRANSITIONS: Dict[BackupState, set] = {
    BackupState.IDLE: {BackupState.COLLECTING, BackupState.READING},
    BackupState.COLLECTING: {BackupState.SERIALIZING},
    BackupState.SERIALIZING: {BackupState.ENCRYPTING},
    BackupState.ENCRYPTING: {BackupState.WRITING},
    BackupState.WRITING: {BackupState.DONE},
    # plaintext (legacy) files skip DECRYPTING
    BackupState.READING: {BackupState.DECRYPTING, BackupState.DESERIALIZING},
    BackupState.DECRYPTING: {BackupState.DESERIALIZING},
    BackupState.DESERIALIZING: {BackupState.MERGING},
    BackupState.MERGING: {BackupState.DONE},
}

_log = get_logger("backup")


class BackupEngine:
    """
    Encrypted snapshot backup/restore for one signed-in user.

    create_backup():  collect -> serialize -> encrypt -> atomic write
    restore_backup(): read -> (decrypt) -> deserialize -> last-writer-wins merge

    At most one backup and one restore run at a time; a concurrent call of the
    same kind is rejected with OperationInProgress. Every public operation
    returns an OperationResult instead of raising the error taxonomy.
    """

    def __init__(
        self,
        *,
        cfg: Optional[Dict[str, Any]] = None,
        vault: KeyVault,
        shifts: RecordRepository,
        expenses: RecordRepository,
        settings: RecordRepository,
        current_user: Callable[[], Optional[str]],
        root_dir: str = ".",
        event_logger: Optional[EventLogger] = None,
        security_audit: Optional[SecurityAuditLogger] = None,
        clock: Callable[[], float] = time.time,
        max_workers: int = 2,
    ):
        self.cfg = cfg or {}
        self.vault = vault
        self.shifts = shifts
        self.expenses = expenses
        self.settings = settings
        self.current_user = current_user
        self.root_dir = root_dir
        self.event_logger = event_logger
        self.security_audit = security_audit
        self.clock = clock
        self.max_workers = int(max_workers)

        self._state_lock = threading.Lock()
        self._states: Dict[str, BackupState] = {BACKUP: BackupState.IDLE, RESTORE: BackupState.IDLE}
        self._busy: Dict[str, threading.Lock] = {BACKUP: threading.Lock(), RESTORE: threading.Lock()}
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    # ---------- config ----------
    def backup_dir(self) -> str:
        return os.path.join(self.root_dir, str(self.cfg.get("default_dir") or "backups"))

    def max_backups(self) -> int:
        return int(self.cfg.get("max_backups", 0) or 0)

    # ---------- public API ----------
    def state(self, operation: str = BACKUP) -> BackupState:
        with self._state_lock:
            return self._states[operation]

    def create_backup(self, *, cancel: Optional[CancelToken] = None, trace_id: Optional[str] = None) -> OperationResult[str]:
        return self._guarded(BACKUP, trace_id, lambda tid: self._create_backup(cancel=cancel, trace_id=tid))

    def restore_backup(self, path: str, *, cancel: Optional[CancelToken] = None, trace_id: Optional[str] = None) -> OperationResult[int]:
        return self._guarded(RESTORE, trace_id, lambda tid: self._restore_backup(path, cancel=cancel, trace_id=tid))

    def get_available_backups(self) -> OperationResult[List[str]]:
        try:
            return OperationResult.success(list_backups(self.backup_dir()))
        except OSError as e:
            return OperationResult.failure(StorageError("Backups could not be listed.", error=str(e)))

    def submit_backup(self, *, trace_id: Optional[str] = None) -> Tuple["Future[OperationResult[str]]", CancelToken]:
        token = CancelToken()
        fut = self._pool().submit(self.create_backup, cancel=token, trace_id=trace_id)
        return fut, token

    def submit_restore(self, path: str, *, trace_id: Optional[str] = None) -> Tuple["Future[OperationResult[int]]", CancelToken]:
        token = CancelToken()
        fut = self._pool().submit(self.restore_backup, path, cancel=token, trace_id=trace_id)
        return fut, token

    def shutdown(self, wait: bool = True) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=wait)
                self._executor = None

    def __enter__(self) -> "BackupEngine":
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.shutdown()

    # ---------- pipelines ----------
    def _create_backup(self, *, cancel: Optional[CancelToken], trace_id: str) -> str:
        if not bool(self.cfg.get("enabled", True)):
            raise ConfigError("Backups are disabled by configuration.")
        user_id = self._require_user()

        self._transition(BACKUP, BackupState.COLLECTING, trace_id)
        shifts = self.shifts.list_all(user_id, include_deleted=True)
        expenses = self.expenses.list_all(user_id, include_deleted=True)
        settings = _latest(self.settings.list_all(user_id, include_deleted=True))
        _check(cancel, "collect")

        self._transition(BACKUP, BackupState.SERIALIZING, trace_id)
        exported_at = int(self.clock() * 1000)
        payload = serializer.serialize(shifts, expenses, settings, user_id=user_id, exported_at=exported_at)
        _check(cancel, "serialize")

        self._transition(BACKUP, BackupState.ENCRYPTING, trace_id)
        key = self.vault.get_or_create_key()
        blob = codec.encrypt(payload, key)
        _check(cancel, "encrypt")

        self._transition(BACKUP, BackupState.WRITING, trace_id)
        path = new_backup_path(self.backup_dir(), self.clock())
        write_atomic_text(path, blob, cancel=cancel)
        try:
            removed = enforce_retention(self.backup_dir(), self.max_backups())
        except OSError as e:
            # the new backup is already in place; pruning is retried on the next backup
            removed = []
            self._event(trace_id, "backup.retention_failed", {"error": str(e)})
            _log.warning("Backup retention failed in %s: %s", self.backup_dir(), e)

        self._event(
            trace_id,
            "backup.created",
            {
                "file": os.path.basename(path),
                "shifts": len(shifts),
                "expenses": len(expenses),
                "settings": settings is not None,
                "key_id": key.key_id,
                "retention_removed": [os.path.basename(p) for p in removed],
            },
        )
        _log.info("Backup written to %s", path)
        return path

    def _restore_backup(self, path: str, *, cancel: Optional[CancelToken], trace_id: str) -> int:
        user_id = self._require_user()

        self._transition(RESTORE, BackupState.READING, trace_id)
        if not os.path.isfile(path):
            raise StorageError("Backup file not found.", file=os.path.basename(path))
        try:
            text = read_backup_text(path)
        except UnicodeDecodeError as e:
            raise UnsupportedFormat("Backup file is not text.") from e

        encrypted = codec.looks_encrypted(text)
        if encrypted:
            self._transition(RESTORE, BackupState.DECRYPTING, trace_id)
            raw = codec.decrypt(text, self.vault.get_or_create_key())
        else:
            raw = text.encode("utf-8")
        _check(cancel, "decrypt")

        self._transition(RESTORE, BackupState.DESERIALIZING, trace_id)
        snap = serializer.deserialize(raw)
        _check(cancel, "deserialize")

        # Everything above validated; nothing was written to the live store yet.
        self._transition(RESTORE, BackupState.MERGING, trace_id)
        stats = MergeStats()
        try:
            merge_records(self.shifts, snap.shifts, user_id=user_id, stats=stats, cancel=cancel)
            merge_records(self.expenses, snap.expenses, user_id=user_id, stats=stats, cancel=cancel)
            if snap.settings is not None:
                merge_records(self.settings, [snap.settings], user_id=user_id, stats=stats, cancel=cancel)
        except Cancelled as e:
            e.context.update(stats.as_dict())
            raise

        self._event(
            trace_id,
            "backup.restored",
            {"file": os.path.basename(path), "encrypted": encrypted, "format_version": snap.format_version, **stats.as_dict()},
        )
        _log.info("Restore from %s applied %d record(s)", path, stats.changed)
        return stats.changed

    # ---------- helpers ----------
    def _guarded(self, operation: str, trace_id: Optional[str], fn: Callable[[str], T]) -> OperationResult[T]:
        tid = trace_id or uuid.uuid4().hex
        busy = self._busy[operation]
        if not busy.acquire(blocking=False):
            self._event(tid, f"{operation}.rejected", {"reason": "in_progress"})
            return OperationResult.failure(OperationInProgress(operation=operation))
        try:
            with self._state_lock:
                self._states[operation] = BackupState.IDLE
            try:
                value = fn(tid)
            except TrackerError as e:
                return OperationResult.failure(self._fail(operation, tid, e))
            except OSError as e:
                err = StorageError(f"Storage failure during {operation}.", error=str(e), errno=e.errno)
                return OperationResult.failure(self._fail(operation, tid, err))
            except ValueError as e:
                # unparseable or schema-invalid data coming back from a record repository
                err = StorageError(f"The live record store returned unreadable data during {operation}.", error=type(e).__name__)
                return OperationResult.failure(self._fail(operation, tid, err))
            except Exception:
                with self._state_lock:
                    self._states[operation] = BackupState.FAILED
                _log.exception("Unexpected %s failure (trace_id=%s)", operation, tid)
                raise
            self._transition(operation, BackupState.DONE, tid)
            return OperationResult.success(value)
        finally:
            busy.release()

    def _fail(self, operation: str, trace_id: str, err: TrackerError) -> TrackerError:
        with self._state_lock:
            prev = self._states[operation]
            self._states[operation] = BackupState.CANCELLED if isinstance(err, Cancelled) else BackupState.FAILED
        self._event(trace_id, f"{operation}.failed", {"from_state": prev.value, **err.to_dict()})
        if isinstance(err, (AuthenticationFailed, UnsupportedFormat)) and self.security_audit is not None:
            self.security_audit.log(
                trace_id=trace_id,
                severity="HIGH" if isinstance(err, AuthenticationFailed) else "WARN",
                event=f"{operation}.{err.code}",
                component="backup_engine",
                outcome="rejected",
                details={"state": prev.value},
            )
        if isinstance(err, Cancelled):
            _log.info("%s cancelled at %s", operation.capitalize(), prev.value)
        else:
            _log.warning("%s failed at %s: %s", operation.capitalize(), prev.value, err)
        return err

    def _transition(self, operation: str, new: BackupState, trace_id: str) -> None:
        with self._state_lock:
            cur = self._states[operation]
            if cur in _TERMINAL or new not in _TRANSITIONS.get(cur, set()):
                raise StateTransitionError(operation=operation, from_state=cur.value, to_state=new.value)
            self._states[operation] = new
        self._event(trace_id, f"{operation}.state", {"from": cur.value, "to": new.value})

    def _require_user(self) -> str:
        user_id = self.current_user()
        if not user_id:
            raise NotAuthenticated()
        return str(user_id)

    def _pool(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="backup-worker")
            return self._executor

    def _event(self, trace_id: str, event: str, details: Dict[str, Any]) -> None:
        if self.event_logger is None:
            return
        try:
            self.event_logger.log(trace_id, event, details)
        except OSError:
            _log.warning("Could not write backup event %s", event)


def _check(cancel: Optional[CancelToken], step: str) -> None:
    if cancel is not None:
        cancel.raise_if_cancelled(step)


def _latest(records: List[UserSettingsRecord]) -> Optional[UserSettingsRecord]:
    if not records:
        return None
    return max(records, key=lambda r: r.updated_at)


def build_engine(
    config_manager: Any,
    *,
    shifts: RecordRepository,
    expenses: RecordRepository,
    settings: RecordRepository,
    current_user: Callable[[], Optional[str]],
) -> BackupEngine:
    """Wire an engine from a loaded ConfigManager (secure store, vault, logs)."""
    cfg = config_manager.get()
    audit = config_manager.security_audit()
    vault = SecureStoreKeyVault(config_manager.secure_store(), alias=cfg.backup.key_alias, audit=audit)
    return BackupEngine(
        cfg=cfg.backup.model_dump(),
        vault=vault,
        shifts=shifts,
        expenses=expenses,
        settings=settings,
        current_user=current_user,
        root_dir=config_manager.fs.root,
        event_logger=config_manager.event_logger(),
        security_audit=audit,
    )
