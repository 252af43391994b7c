from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from deliverytracker.core.backup.cancel import CancelToken
from deliverytracker.core.backup.datasource import RecordRepository
from deliverytracker.core.backup.models import TrackedRecord
from deliverytracker.core.errors import RecordConflict


@dataclass
class MergeStats:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    conflicts: int = 0

    @property
    def changed(self) -> int:
        return self.inserted + self.updated

    def as_dict(self) -> Dict[str, int]:
        return {"inserted": self.inserted, "updated": self.updated, "unchanged": self.unchanged, "conflicts": self.conflicts}


def _live_index(repo: RecordRepository, user_id: str) -> Dict[str, TrackedRecord]:
    return {r.id: r for r in repo.list_all(user_id, include_deleted=True)}


def merge_records(
    repo: RecordRepository,
    incoming: Iterable[TrackedRecord],
    *,
    user_id: str,
    stats: MergeStats,
    cancel: Optional[CancelToken] = None,
) -> MergeStats:
    """
    Last-writer-wins merge of snapshot records into the live store.

    A record is inserted when its id is unknown and overwritten only when its
    updated_at is strictly newer than the live copy. Soft-delete state travels
    with the record like any other field. Records are re-owned by `user_id`;
    an id the repository holds for a different user is left alone and counted
    in `conflicts`.

    The live store may change while we run, so before every write the live copy
    is re-read and the timestamp comparison repeated.
    """
    live = _live_index(repo, user_id)
    for rec in incoming:
        if cancel is not None:
            cancel.raise_if_cancelled("merge")
        candidate = rec.model_copy(update={"user_id": user_id})
        current = live.get(candidate.id)
        if current is not None and candidate.updated_at <= current.updated_at:
            stats.unchanged += 1
            continue

        live = _live_index(repo, user_id)
        current = live.get(candidate.id)
        if current is not None and candidate.updated_at <= current.updated_at:
            stats.unchanged += 1
            continue

        try:
            stored = repo.upsert(candidate)
        except RecordConflict:
            stats.conflicts += 1
            continue
        live[candidate.id] = stored if stored is not None else candidate
        if current is None:
            stats.inserted += 1
        else:
            stats.updated += 1
    return stats
