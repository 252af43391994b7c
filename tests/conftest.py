from __future__ import annotations

import os

import pytest

from deliverytracker.core.backup.api import BackupEngine
from deliverytracker.core.backup.vault import SecureStoreKeyVault
from deliverytracker.core.crypto import generate_aes256_key_bytes, write_device_key
from deliverytracker.core.journal import EventLogger, SecurityAuditLogger
from tests.helpers.fakes import FakeClock, InMemoryRepository
from tests.helpers.records import USER
from tests.helpers.stores import make_store


@pytest.fixture
def device_key_path(tmp_path):
    path = os.path.join(str(tmp_path), "secure", "device.key")
    write_device_key(path, generate_aes256_key_bytes())
    return path


@pytest.fixture
def secure_store(tmp_path, device_key_path):
    return make_store(str(tmp_path), device_key_path)


@pytest.fixture
def vault(secure_store):
    return SecureStoreKeyVault(secure_store)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repos():
    return {"shifts": InMemoryRepository(), "expenses": InMemoryRepository(), "settings": InMemoryRepository()}


@pytest.fixture
def make_engine(tmp_path, vault, clock):
    """Build engines sharing one backup dir, vault and clock; each gets its own repositories unless given."""
    engines = []
    root = str(tmp_path)

    def _make(*, repos=None, user=USER, key_vault=None, **cfg):
        repos = repos or {"shifts": InMemoryRepository(), "expenses": InMemoryRepository(), "settings": InMemoryRepository()}
        conf = {"enabled": True, "default_dir": "backups", "max_backups": 0}
        conf.update(cfg)
        eng = BackupEngine(
            cfg=conf,
            vault=key_vault or vault,
            shifts=repos["shifts"],
            expenses=repos["expenses"],
            settings=repos["settings"],
            current_user=lambda: user,
            root_dir=root,
            event_logger=EventLogger(os.path.join(root, "logs", "backup_events.jsonl")),
            security_audit=SecurityAuditLogger(path=os.path.join(root, "logs", "security.jsonl")),
            clock=clock.time,
        )
        engines.append(eng)
        return eng

    yield _make
    for eng in engines:
        eng.shutdown()


@pytest.fixture
def engine(make_engine, repos):
    return make_engine(repos=repos)
