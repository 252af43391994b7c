from __future__ import annotations

import base64
import binascii
import secrets

from deliverytracker.core.backup.vault import SecretKey
from deliverytracker.core.crypto import GCM_NONCE_BYTES, GCM_TAG_BYTES
from deliverytracker.core.errors import AuthenticationFailed, UnsupportedFormat

MIN_BLOB_BYTES = GCM_NONCE_BYTES + GCM_TAG_BYTES


def encrypt(plaintext: bytes, key: SecretKey) -> str:
    """
    Seal `plaintext` into a self-contained blob: base64(nonce || ciphertext || tag).

    Every call draws a fresh random 96-bit nonce; no associated data is bound.
    """
    nonce = secrets.token_bytes(GCM_NONCE_BYTES)
    sealed = key.seal(nonce, plaintext)
    return base64.b64encode(nonce + sealed).decode("ascii")


def decrypt(encoded: str, key: SecretKey) -> bytes:
    text = encoded.strip()
    try:
        raw = base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise AuthenticationFailed("The backup text is not valid base64; it was modified or damaged.") from e
    # Non-canonical text (e.g. altered padding bits) decodes to the same bytes; treat it as tampering.
    if base64.b64encode(raw).decode("ascii") != text:
        raise AuthenticationFailed("The backup text encoding was modified.")
    if len(raw) < MIN_BLOB_BYTES:
        raise UnsupportedFormat("Encrypted backup is too short.", size=len(raw), minimum=MIN_BLOB_BYTES)
    nonce, sealed = raw[:GCM_NONCE_BYTES], raw[GCM_NONCE_BYTES:]
    return key.open(nonce, sealed)


def looks_encrypted(text: str) -> bool:
    # Heuristic: plaintext snapshots are JSON objects.
    return not text.lstrip().startswith("{")
