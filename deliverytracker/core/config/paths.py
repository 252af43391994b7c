from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class ConfigFsPaths:
    """
    On-disk layout under one install root:

      config/{backup,security}.json      config/backups/ (pre-write copies, last_known_good/)
      secure/                            device key + sealed store
      logs/                              deliverytracker.log, backup_events.jsonl, security.jsonl
      data/                              local record store used by the scripts
    """

    root: str = "."

    def _under(self, *parts: str) -> str:
        return os.path.join(self.root, *parts)

    @property
    def config_dir(self) -> str:
        return self._under("config")

    @property
    def backups_dir(self) -> str:
        return self._under("config", "backups")

    @property
    def last_known_good_dir(self) -> str:
        return self._under("config", "backups", "last_known_good")

    @property
    def secure_dir(self) -> str:
        return self._under("secure")

    @property
    def logs_dir(self) -> str:
        return self._under("logs")

    @property
    def data_dir(self) -> str:
        return self._under("data")

    def config_file(self, name: str) -> str:
        return os.path.join(self.config_dir, name)

    @property
    def backup(self) -> str:
        return self.config_file("backup.json")

    @property
    def security(self) -> str:
        return self.config_file("security.json")

    @property
    def store_meta(self) -> str:
        return os.path.join(self.secure_dir, "store.meta.json")

    @property
    def store_backups_dir(self) -> str:
        return os.path.join(self.secure_dir, "backups")

    @property
    def events_log(self) -> str:
        return os.path.join(self.logs_dir, "backup_events.jsonl")

    @property
    def security_log(self) -> str:
        return os.path.join(self.logs_dir, "security.jsonl")
