from __future__ import annotations

import base64
import hashlib
import os
import secrets
from typing import Dict

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

AES_KEY_BYTES = 32
GCM_NONCE_BYTES = 12
GCM_TAG_BYTES = 16

SEALED_BLOB_VERSION = 1


class DeviceKeyMissingError(RuntimeError):
    pass


def key_id_from_key_bytes(key: bytes) -> str:
    """Non-secret fingerprint, safe to log and to store in plaintext metadata."""
    return hashlib.sha256(key).hexdigest()[:16]


def generate_aes256_key_bytes() -> bytes:
    return secrets.token_bytes(AES_KEY_BYTES)


def write_device_key(path: str, key_bytes: bytes) -> None:
    if len(key_bytes) != AES_KEY_BYTES:
        raise ValueError("Device key must be 32 bytes (AES-256).")
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    # created 0600 so the key is never world-readable, even briefly
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(key_bytes)
    best_effort_restrict_permissions(path)


def read_device_key(path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            b = f.read()
    except FileNotFoundError as e:
        raise DeviceKeyMissingError(f"Device key not found at {path!r}") from e
    if len(b) != AES_KEY_BYTES:
        raise ValueError("Device key must be 32 bytes (AES-256).")
    return b


def best_effort_restrict_permissions(path: str) -> None:
    """POSIX only: chmod 0600. Windows ACLs are left alone."""
    if os.name == "nt":
        return
    try:
        os.chmod(path, 0o600)
    except OSError:
        return


def aesgcm_encrypt(key: bytes, plaintext: bytes, aad: bytes = b"") -> Dict[str, object]:
    """Seal into a JSON-friendly dict; used for files sealed by the device key."""
    nonce = secrets.token_bytes(GCM_NONCE_BYTES)
    ct = AESGCM(key).encrypt(nonce, plaintext, aad or None)
    return {
        "v": SEALED_BLOB_VERSION,
        "nonce": base64.urlsafe_b64encode(nonce).decode("ascii"),
        "ciphertext": base64.urlsafe_b64encode(ct).decode("ascii"),
    }


def aesgcm_decrypt(key: bytes, blob: Dict[str, object], aad: bytes = b"") -> bytes:
    if not isinstance(blob, dict) or blob.get("v") != SEALED_BLOB_VERSION:
        raise ValueError("Unsupported sealed blob version.")
    nonce = base64.urlsafe_b64decode(str(blob["nonce"]).encode("ascii"))
    ct = base64.urlsafe_b64decode(str(blob["ciphertext"]).encode("ascii"))
    return AESGCM(key).decrypt(nonce, ct, aad or None)
