from __future__ import annotations

import os

from deliverytracker.core.backup.api import BackupEngine, build_engine
from deliverytracker.core.backup.datasource import JsonFileRepository
from deliverytracker.core.backup.models import ExpenseRecord, ShiftRecord, UserSettingsRecord
from deliverytracker.core.config.manager import ConfigManager
from deliverytracker.core.config.paths import ConfigFsPaths
from deliverytracker.core.logger import setup_logging


def local_engine(user_id: str, *, root: str = ".", data_dir: str = "data") -> BackupEngine:
    """Engine over the JSON-file record store under data/ (CLI use)."""
    logger = setup_logging(os.path.join(root, "logs"))
    cm = ConfigManager(fs=ConfigFsPaths(root), logger=logger)
    cm.load_all()
    d = os.path.join(root, data_dir)
    return build_engine(
        cm,
        shifts=JsonFileRepository(os.path.join(d, "shifts.json"), ShiftRecord),
        expenses=JsonFileRepository(os.path.join(d, "expenses.json"), ExpenseRecord),
        settings=JsonFileRepository(os.path.join(d, "settings.json"), UserSettingsRecord),
        current_user=lambda: user_id,
    )
