from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from deliverytracker.core.config.io import ConfigFileKeeper, read_json_file
from deliverytracker.core.config.models import AppConfig, BackupConfigFile, SecurityConfig
from deliverytracker.core.config.paths import ConfigFsPaths
from deliverytracker.core.errors import ConfigError
from deliverytracker.core.journal import EventLogger, SecurityAuditLogger
from deliverytracker.core.secure_store import SecureStore

# file name -> (AppConfig field, model)
_FILES: Dict[str, Tuple[str, Type[BaseModel]]] = {
    "backup.json": ("backup", BackupConfigFile),
    "security.json": ("security", SecurityConfig),
}

MAX_BACKUPS_PER_FILE = 10


class ConfigManager:
    """
    Loads config/*.json into one validated AppConfig.

    Missing files are created with defaults; a file that is not valid JSON is moved
    aside and replaced by its last-known-good copy. A file that parses but fails
    validation is an error, never silently reset.
    """

    def __init__(self, *, fs: Optional[ConfigFsPaths] = None, logger: Optional[logging.Logger] = None, read_only: bool = False):
        self.fs = fs or ConfigFsPaths(".")
        self.logger = logger
        self.read_only = read_only
        self.keeper = ConfigFileKeeper(self.fs.backups_dir, self.fs.last_known_good_dir, keep=MAX_BACKUPS_PER_FILE)
        self._cfg: Optional[AppConfig] = None

    # ---------- public API ----------
    def load_all(self) -> AppConfig:
        sections = {field: self._load_section(name, model) for name, (field, model) in _FILES.items()}
        try:
            cfg = AppConfig.model_validate(sections)
        except ValidationError as e:
            raise ConfigError(f"Config invalid: {e.error_count()} error(s)", errors=_summarize(e)) from e
        self._cfg = cfg
        if not self.read_only:
            self.keeper.mark_good([self.fs.config_file(n) for n in _FILES])
        return cfg

    def get(self) -> AppConfig:
        if self._cfg is None:
            raise ConfigError("Config not loaded.")
        return self._cfg

    def save_non_sensitive(self, filename: str, data: Dict[str, Any]) -> AppConfig:
        """Validate, write atomically (keeping the previous copy), then reload everything."""
        if self.read_only:
            raise ConfigError("Config manager is read-only.")
        if filename not in _FILES:
            raise ConfigError(f"Unknown config file {filename!r}.", file=filename)
        _, model = _FILES[filename]
        try:
            model.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"{filename} invalid: {e.error_count()} error(s)", file=filename, errors=_summarize(e)) from e
        self.keeper.write(self.fs.config_file(filename), data)
        return self.load_all()

    def resolve(self, path: str) -> str:
        return path if os.path.isabs(path) else os.path.join(self.fs.root, path)

    def security_audit(self) -> SecurityAuditLogger:
        return SecurityAuditLogger(path=self.fs.security_log)

    def event_logger(self) -> EventLogger:
        return EventLogger(path=self.fs.events_log)

    def secure_store(self) -> SecureStore:
        sec = self.get().security
        return SecureStore(
            device_key_path=self.resolve(sec.device_key_path),
            store_path=self.resolve(sec.secure_store_path),
            meta_path=self.fs.store_meta,
            backups_dir=self.fs.store_backups_dir,
            max_backups=sec.secure_store_backup_keep,
            max_bytes=sec.secure_store_max_bytes,
            read_only=sec.secure_store_read_only,
            audit=self.security_audit(),
        )

    # ---------- internal ----------
    def _load_section(self, name: str, model: Type[BaseModel]) -> Dict[str, Any]:
        path = self.fs.config_file(name)
        rr = read_json_file(path)
        if rr.ok:
            return rr.data
        if rr.corrupt and not self.read_only:
            recovered = self.keeper.recover(path)
            self._warn("%s was corrupt (%s); recovered=%s", name, rr.error, recovered is not None)
            if recovered is not None:
                return recovered
        elif rr.error != "missing":
            self._warn("%s unreadable (%s); using defaults", name, rr.error)
        defaults = model().model_dump()
        if not self.read_only:
            self.keeper.write(path, defaults)
        return defaults

    def _warn(self, msg: str, *args: Any) -> None:
        if self.logger is not None:
            self.logger.warning(msg, *args)


def _summarize(e: ValidationError) -> List[str]:
    return [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
