from __future__ import annotations

import argparse
import json

from _local_store import local_engine


def main() -> int:
    ap = argparse.ArgumentParser(description="Restore a backup into the local store (last-writer-wins merge)")
    ap.add_argument("path", nargs="?", default=None, help="Backup file (defaults to the newest backup)")
    ap.add_argument("--user", required=True, help="User id the restored records belong to")
    args = ap.parse_args()

    with local_engine(args.user) as engine:
        path = args.path
        if path is None:
            listed = engine.get_available_backups()
            if not listed.ok or not listed.value:
                print("No backups found.")
                return 1
            path = listed.value[0]
        res = engine.restore_backup(path)
    if not res.ok:
        print(json.dumps(res.error.to_dict(), indent=2))
        return 1
    print(f"Restored {res.value} record(s) from {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
