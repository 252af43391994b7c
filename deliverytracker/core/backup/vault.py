from __future__ import annotations

import base64
import binascii
import threading
from abc import ABC, abstractmethod
from typing import FrozenSet, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from deliverytracker.core.crypto import AES_KEY_BYTES, generate_aes256_key_bytes, key_id_from_key_bytes
from deliverytracker.core.errors import AuthenticationFailed, KeyUnavailable
from deliverytracker.core.journal import SecurityAuditLogger
from deliverytracker.core.logger import get_logger
from deliverytracker.core.secure_store import SecretUnavailable, SecureStore

DEFAULT_KEY_ALIAS = "DeliveryTrackerBackupKey"

_log = get_logger("backup.vault")


class SecretKey:
    """
    Opaque handle to the sealed backup key.

    Holds a prepared AES-GCM cipher, never the raw key bytes, and is restricted
    to encrypt/decrypt with GCM (no padding).
    """

    algorithm = "AES-256-GCM"
    purposes: FrozenSet[str] = frozenset({"encrypt", "decrypt"})

    __slots__ = ("_aead", "alias", "key_id")

    def __init__(self, *, alias: str, key_id: str, aead: AESGCM):
        self._aead = aead
        self.alias = alias
        self.key_id = key_id

    @classmethod
    def _from_material(cls, alias: str, material: bytes) -> "SecretKey":
        if len(material) != AES_KEY_BYTES:
            raise ValueError("backup key must be 256 bits")
        return cls(alias=alias, key_id=key_id_from_key_bytes(material), aead=AESGCM(material))

    def seal(self, nonce: bytes, plaintext: bytes) -> bytes:
        return self._aead.encrypt(nonce, plaintext, None)

    def open(self, nonce: bytes, ciphertext: bytes) -> bytes:
        try:
            return self._aead.decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            raise AuthenticationFailed(key_id=self.key_id) from e

    def __repr__(self) -> str:
        return f"SecretKey(alias={self.alias!r}, key_id={self.key_id!r}, algorithm={self.algorithm!r})"


class KeyVault(ABC):
    """
    Owner of the single long-lived backup key. Implementations sit on whatever
    secure-storage capability the host platform provides.
    """

    @abstractmethod
    def get_or_create_key(self) -> SecretKey:
        raise NotImplementedError

    @abstractmethod
    def reset_key(self, *, trace_id: str = "vault") -> None:
        """User-initiated key reset. Existing encrypted backups become unreadable."""
        raise NotImplementedError

    def key_id(self) -> str:
        return self.get_or_create_key().key_id

    def close(self) -> None:
        return None


class SecureStoreKeyVault(KeyVault):
    def __init__(
        self,
        store: SecureStore,
        *,
        alias: str = DEFAULT_KEY_ALIAS,
        audit: Optional[SecurityAuditLogger] = None,
    ):
        self.store = store
        self.alias = alias
        self.audit = audit
        self._lock = threading.Lock()
        self._key: Optional[SecretKey] = None

    def get_or_create_key(self) -> SecretKey:
        with self._lock:
            if self._key is None:
                self._key = self._load_or_create_locked()
            return self._key

    def reset_key(self, *, trace_id: str = "vault") -> None:
        with self._lock:
            try:
                self.store.delete(self._entry_name(), trace_id=trace_id)
            except SecretUnavailable as e:
                raise KeyUnavailable(str(e), alias=self.alias) from e
            self._key = None
        self._audit(trace_id=trace_id, severity="HIGH", event="vault.key_reset", outcome="ok")
        _log.warning("Backup key %s reset by user request", self.alias)

    def close(self) -> None:
        with self._lock:
            self._key = None

    # ---------- internal ----------
    def _entry_name(self) -> str:
        return f"vault.{self.alias}"

    def _load_or_create_locked(self) -> SecretKey:
        fresh = base64.b64encode(generate_aes256_key_bytes()).decode("ascii")
        try:
            stored = self.store.set_if_absent(self._entry_name(), fresh, trace_id="vault")
        except (SecretUnavailable, ValueError, OSError) as e:
            self._audit(trace_id="vault", severity="WARN", event="vault.unavailable", outcome="error", details={"error": str(e)})
            raise KeyUnavailable(str(e), alias=self.alias) from e
        try:
            material = base64.b64decode(str(stored).encode("ascii"), validate=True)
            key = SecretKey._from_material(self.alias, material)  # noqa: SLF001
        except (binascii.Error, ValueError) as e:
            self._audit(trace_id="vault", severity="HIGH", event="vault.key_corrupt", outcome="error")
            raise KeyUnavailable("The sealed backup key is corrupted.", alias=self.alias) from e
        if stored == fresh:
            self._audit(trace_id="vault", severity="INFO", event="vault.key_created", outcome="ok", details={"key_id": key.key_id})
            _log.info("Created backup key %s (key_id=%s)", self.alias, key.key_id)
        return key

    def _audit(self, *, trace_id: str, severity: str, event: str, outcome: str, details: Optional[dict] = None) -> None:
        if self.audit is None:
            return
        self.audit.log(trace_id=trace_id, severity=severity, event=event, component="key_vault", outcome=outcome, details={"alias": self.alias, **(details or {})})
