from __future__ import annotations

import os
import tempfile
import time
from typing import List, Optional

from deliverytracker.core.backup.cancel import CancelToken

BACKUP_PREFIX = "backup_"
ENCRYPTED_SUFFIX = ".enc"
LEGACY_SUFFIX = ".json"
TMP_PREFIX = ".tmp_backup_"


def backup_file_name(ts: float) -> str:
    return f"{BACKUP_PREFIX}{time.strftime('%Y-%m-%d_%H-%M-%S', time.gmtime(ts))}{ENCRYPTED_SUFFIX}"


def new_backup_path(backup_dir: str, ts: float) -> str:
    base = backup_file_name(ts)
    path = os.path.join(backup_dir, base)
    n = 2
    while os.path.exists(path):
        stem = base[: -len(ENCRYPTED_SUFFIX)]
        path = os.path.join(backup_dir, f"{stem}_{n}{ENCRYPTED_SUFFIX}")
        n += 1
    return path


def write_atomic_text(path: str, text: str, *, cancel: Optional[CancelToken] = None) -> None:
    """
    Write to a private temp file in the target directory, fsync, then rename.
    Either the complete file appears at `path` or nothing does.
    """
    d = os.path.dirname(path) or "."
    os.makedirs(d, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=TMP_PREFIX, suffix=".part", dir=d)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        if cancel is not None:
            cancel.raise_if_cancelled("write")
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)


def read_backup_text(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def is_backup_file_name(name: str) -> bool:
    return name.startswith(BACKUP_PREFIX) and (name.endswith(ENCRYPTED_SUFFIX) or name.endswith(LEGACY_SUFFIX))


def list_backups(backup_dir: str) -> List[str]:
    if not os.path.isdir(backup_dir):
        return []
    items = [os.path.join(backup_dir, f) for f in os.listdir(backup_dir) if is_backup_file_name(f)]
    items = [p for p in items if os.path.isfile(p)]
    items.sort(key=lambda p: (os.path.getmtime(p), os.path.basename(p)), reverse=True)
    return items


def enforce_retention(backup_dir: str, max_backups: int) -> List[str]:
    """Delete the oldest encrypted backups beyond `max_backups` (0 keeps all). Returns removed paths."""
    if max_backups <= 0:
        return []
    managed = [p for p in list_backups(backup_dir) if p.endswith(ENCRYPTED_SUFFIX)]
    removed: List[str] = []
    for p in managed[int(max_backups) :]:
        try:
            os.remove(p)
            removed.append(p)
        except OSError:
            pass
    return removed
