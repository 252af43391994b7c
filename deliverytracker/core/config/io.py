from __future__ import annotations

import json
import os
import shutil
import tempfile
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ReadResult:
    ok: bool
    data: Dict[str, Any]
    error: Optional[str] = None

    @property
    def corrupt(self) -> bool:
        return bool(self.error and self.error.startswith("corrupt_json"))


def read_json_file(path: str) -> ReadResult:
    try:
        with open(path, "r", encoding="utf-8") as f:
            obj = json.load(f)
    except FileNotFoundError:
        return ReadResult(ok=False, data={}, error="missing")
    except json.JSONDecodeError as e:
        return ReadResult(ok=False, data={}, error=f"corrupt_json:{e.msg} at line {e.lineno}")
    except (OSError, UnicodeDecodeError) as e:
        return ReadResult(ok=False, data={}, error=str(e))
    if not isinstance(obj, dict):
        return ReadResult(ok=False, data={}, error="corrupt_json:root is not an object")
    return ReadResult(ok=True, data=obj)


@dataclass(frozen=True)
class ConfigFileKeeper:
    """
    Writes config JSON atomically and keeps the history needed to recover it:
    a timestamped copy before each overwrite, the corrupt file moved aside,
    and a last-known-good copy of every file that loaded cleanly.
    """

    backups_dir: str
    last_known_good_dir: str
    keep: int = 10

    def write(self, path: str, data: Dict[str, Any]) -> None:
        d = os.path.dirname(path) or "."
        os.makedirs(d, exist_ok=True)
        self._copy_aside(path, "prewrite")
        fd, tmp = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=d)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False, sort_keys=True)
                f.write("\n")
            os.replace(tmp, path)
        finally:
            if os.path.exists(tmp):
                os.remove(tmp)

    def recover(self, path: str) -> Optional[Dict[str, Any]]:
        """Move a corrupt file aside and put the last-known-good copy back. None when there is none."""
        if os.path.exists(path):
            os.makedirs(self.backups_dir, exist_ok=True)
            shutil.move(path, self._aside_name(path, "corrupt"))
        rr = read_json_file(os.path.join(self.last_known_good_dir, os.path.basename(path)))
        if not rr.ok:
            return None
        self.write(path, rr.data)
        return rr.data

    def mark_good(self, paths: List[str]) -> None:
        os.makedirs(self.last_known_good_dir, exist_ok=True)
        for p in paths:
            if os.path.isfile(p):
                shutil.copy2(p, os.path.join(self.last_known_good_dir, os.path.basename(p)))

    def _aside_name(self, path: str, reason: str) -> str:
        stamp = time.strftime("%Y%m%d_%H%M%S", time.gmtime())
        return os.path.join(self.backups_dir, f"{os.path.basename(path)}.{stamp}.{reason}.json")

    def _copy_aside(self, path: str, reason: str) -> None:
        if not os.path.exists(path):
            return
        os.makedirs(self.backups_dir, exist_ok=True)
        shutil.copy2(path, self._aside_name(path, reason))
        prefix = os.path.basename(path) + "."
        copies = [os.path.join(self.backups_dir, n) for n in os.listdir(self.backups_dir) if n.startswith(prefix)]
        copies.sort(key=os.path.getmtime, reverse=True)
        for old in copies[self.keep :]:
            try:
                os.remove(old)
            except OSError:
                pass
