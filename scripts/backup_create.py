from __future__ import annotations

import argparse
import json

from _local_store import local_engine


def main() -> int:
    ap = argparse.ArgumentParser(description="Create an encrypted backup of a user's shifts, expenses and settings")
    ap.add_argument("--user", required=True, help="User id whose records are backed up")
    args = ap.parse_args()

    with local_engine(args.user) as engine:
        res = engine.create_backup()
    if not res.ok:
        print(json.dumps(res.error.to_dict(), indent=2))
        return 1
    print(res.value)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
