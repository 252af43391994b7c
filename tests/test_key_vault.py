from __future__ import annotations

import base64
import os

import pytest

from deliverytracker.core.backup import codec
from deliverytracker.core.backup.vault import DEFAULT_KEY_ALIAS, SecretKey, SecureStoreKeyVault
from deliverytracker.core.errors import AuthenticationFailed, KeyUnavailable
from deliverytracker.core.journal import SecurityAuditLogger
from tests.helpers.stores import make_store


def test_get_or_create_is_idempotent(vault):
    k1 = vault.get_or_create_key()
    k2 = vault.get_or_create_key()
    assert k1 is k2
    assert k1.algorithm == "AES-256-GCM"
    assert k1.purposes == frozenset({"encrypt", "decrypt"})
    assert k1.alias == DEFAULT_KEY_ALIAS


def test_key_survives_new_vault_instance(tmp_path, device_key_path):
    first = SecureStoreKeyVault(make_store(str(tmp_path), device_key_path))
    blob = codec.encrypt(b"payload", first.get_or_create_key())

    # fresh process: new store handle, new vault
    second = SecureStoreKeyVault(make_store(str(tmp_path), device_key_path))
    assert second.key_id() == first.key_id()
    assert codec.decrypt(blob, second.get_or_create_key()) == b"payload"


def test_close_drops_cached_handle_only(vault):
    before = vault.get_or_create_key()
    vault.close()
    after = vault.get_or_create_key()
    assert after is not before
    assert after.key_id == before.key_id


def test_missing_device_key_raises_key_unavailable(tmp_path):
    vault = SecureStoreKeyVault(make_store(str(tmp_path), str(tmp_path / "nope.key")))
    with pytest.raises(KeyUnavailable) as ei:
        vault.get_or_create_key()
    assert ei.value.recoverable is False


def test_corrupt_sealed_entry_raises_key_unavailable(secure_store):
    secure_store.set(f"vault.{DEFAULT_KEY_ALIAS}", base64.b64encode(b"too-short").decode("ascii"))
    with pytest.raises(KeyUnavailable):
        SecureStoreKeyVault(secure_store).get_or_create_key()


def test_corrupt_store_file_raises_key_unavailable(secure_store):
    os.makedirs(os.path.dirname(secure_store.store_path), exist_ok=True)
    with open(secure_store.store_path, "w", encoding="utf-8") as f:
        f.write("garbage")
    with pytest.raises(KeyUnavailable):
        SecureStoreKeyVault(secure_store).get_or_create_key()


def test_repr_never_shows_key_material(vault):
    key = vault.get_or_create_key()
    text = repr(key)
    assert key.key_id in text
    assert not hasattr(key, "material")
    assert "_aead" not in text


def test_reset_key_makes_old_backups_unreadable(tmp_path, secure_store):
    audit_path = str(tmp_path / "logs" / "security.jsonl")
    vault = SecureStoreKeyVault(secure_store, audit=SecurityAuditLogger(path=audit_path))
    blob = codec.encrypt(b"data", vault.get_or_create_key())
    old_id = vault.key_id()

    vault.reset_key(trace_id="t-reset")
    new_key = vault.get_or_create_key()
    assert new_key.key_id != old_id
    with pytest.raises(AuthenticationFailed):
        codec.decrypt(blob, new_key)
    with open(audit_path, "r", encoding="utf-8") as f:
        text = f.read()
    assert "vault.key_reset" in text
    assert "vault.key_created" in text


def test_secret_key_rejects_wrong_size():
    with pytest.raises(ValueError):
        SecretKey._from_material("alias", b"\x00" * 16)  # noqa: SLF001
