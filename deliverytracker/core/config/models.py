from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from deliverytracker.core.backup.vault import DEFAULT_KEY_ALIAS


class SecurityConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    device_key_path: str = "secure/device.key"
    secure_store_path: str = "secure/secure_store.enc"
    secure_store_read_only: bool = False
    secure_store_max_bytes: int = Field(default=65536, ge=1024)
    secure_store_backup_keep: int = Field(default=10, ge=0)


class BackupConfigFile(BaseModel):
    model_config = ConfigDict(extra="forbid")
    enabled: bool = True
    default_dir: str = "backups"
    max_backups: int = Field(default=20, ge=0)  # 0 = keep all
    key_alias: str = Field(default=DEFAULT_KEY_ALIAS, min_length=1)


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    security: SecurityConfig
    backup: BackupConfigFile
