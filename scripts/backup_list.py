from __future__ import annotations

import argparse

from _local_store import local_engine


def main() -> int:
    ap = argparse.ArgumentParser(description="List available backups, newest first")
    ap.parse_args()

    with local_engine("") as engine:
        res = engine.get_available_backups()
    if not res.ok:
        print(res.error)
        return 1
    for p in res.value or []:
        print(p)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
