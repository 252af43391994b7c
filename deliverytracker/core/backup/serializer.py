from __future__ import annotations

import json
from typing import Any, Dict, Iterable, Optional

from pydantic import ValidationError

from deliverytracker.core.backup.models import (
    FORMAT_VERSION,
    SUPPORTED_FORMAT_VERSIONS,
    ExpenseRecord,
    ShiftRecord,
    Snapshot,
    UserSettingsRecord,
)
from deliverytracker.core.errors import UnsupportedFormat


def serialize(
    shifts: Iterable[ShiftRecord],
    expenses: Iterable[ExpenseRecord],
    settings: Optional[UserSettingsRecord],
    *,
    user_id: str = "",
    exported_at: int,
) -> bytes:
    """
    Canonical snapshot encoding: UTF-8 JSON, sorted keys, camelCase field names.

    Soft-deleted records are kept so a restore can rebuild the recycle bin.
    """
    snap = Snapshot(
        format_version=FORMAT_VERSION,
        exported_at=int(exported_at),
        user_id=user_id,
        shifts=list(shifts),
        expenses=list(expenses),
        settings=settings,
    )
    return dump_snapshot(snap)


def dump_snapshot(snap: Snapshot) -> bytes:
    data = snap.model_dump(mode="json", by_alias=True)
    return (json.dumps(data, indent=2, ensure_ascii=False, sort_keys=True) + "\n").encode("utf-8")


def deserialize(raw: bytes) -> Snapshot:
    try:
        obj = json.loads(raw.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise UnsupportedFormat("Backup is not UTF-8 text.") from e
    except json.JSONDecodeError as e:
        raise UnsupportedFormat("Backup is not valid JSON.", error=f"{e.msg} at {e.pos}") from e
    if not isinstance(obj, dict):
        raise UnsupportedFormat("Backup root must be a JSON object.")

    version = _format_version(obj)
    if version not in SUPPORTED_FORMAT_VERSIONS:
        raise UnsupportedFormat(
            f"Backup format version {version} is not supported by this app.",
            format_version=version,
            supported=sorted(SUPPORTED_FORMAT_VERSIONS),
        )
    try:
        return Snapshot.model_validate(obj)
    except ValidationError as e:
        raise UnsupportedFormat("Backup content does not match the snapshot schema.", errors=e.error_count()) from e


def _format_version(obj: Dict[str, Any]) -> int:
    if "formatVersion" not in obj:
        raise UnsupportedFormat("Backup has no formatVersion.")
    v = obj["formatVersion"]
    # bool is an int subclass; True must not read as version 1
    if isinstance(v, bool) or not isinstance(v, int):
        raise UnsupportedFormat("Backup formatVersion is not an integer.", format_version=str(v))
    return v
