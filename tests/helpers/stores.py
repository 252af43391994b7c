from __future__ import annotations

import os

from deliverytracker.core.secure_store import SecureStore


def make_store(root: str, device_key_path: str, **kw) -> SecureStore:
    secure = os.path.join(root, "secure")
    return SecureStore(
        device_key_path=device_key_path,
        store_path=os.path.join(secure, "secure_store.enc"),
        meta_path=os.path.join(secure, "store.meta.json"),
        backups_dir=os.path.join(secure, "backups"),
        **kw,
    )
