from __future__ import annotations

import os

from deliverytracker.core.config.manager import ConfigManager
from deliverytracker.core.config.paths import ConfigFsPaths
from deliverytracker.core.crypto import generate_aes256_key_bytes, key_id_from_key_bytes, write_device_key


def main() -> None:
    cm = ConfigManager(fs=ConfigFsPaths("."), logger=None)
    cm.load_all()
    path = cm.resolve(cm.get().security.device_key_path)

    if os.path.exists(path):
        print(f"Device key already exists at: {path}")
        return

    key = generate_aes256_key_bytes()
    write_device_key(path, key)
    print(f"Created device key at: {path}")
    print(f"Key fingerprint (key_id): {key_id_from_key_bytes(key)}")


if __name__ == "__main__":
    main()
