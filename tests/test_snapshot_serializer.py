from __future__ import annotations

import json

import pytest

from deliverytracker.core.backup import serializer
from deliverytracker.core.backup.models import FORMAT_VERSION, ExpenseCategory
from deliverytracker.core.errors import UnsupportedFormat
from tests.helpers.records import USER, expense, settings, shift


def _snapshot_bytes(**kw) -> bytes:
    return serializer.serialize(
        kw.get("shifts", [shift("s1"), shift("s2", is_deleted=True, deleted_at=120)]),
        kw.get("expenses", [expense("e1")]),
        kw.get("settings", settings()),
        user_id=USER,
        exported_at=1_700_000_000_000,
    )


def test_serialize_is_deterministic():
    assert _snapshot_bytes() == _snapshot_bytes()


def test_wire_names_are_camel_case():
    obj = json.loads(_snapshot_bytes().decode("utf-8"))
    assert obj["formatVersion"] == FORMAT_VERSION
    assert obj["exportedAt"] == 1_700_000_000_000
    assert obj["userId"] == USER
    s = obj["shifts"][0]
    for name in ("workedHours", "grossIncome", "ordersCount", "isDeleted", "updatedAt", "kilometersStart"):
        assert name in s
    assert obj["expenses"][0]["paymentMethod"] == "CARD"
    assert obj["settings"]["monthlyEfkaAmount"] == 254.0


def test_round_trip_keeps_soft_deleted_records():
    snap = serializer.deserialize(_snapshot_bytes())
    assert [s.id for s in snap.shifts] == ["s1", "s2"]
    deleted = snap.shifts[1]
    assert deleted.is_deleted is True
    assert deleted.deleted_at == 120
    assert snap.expenses[0].category is ExpenseCategory.FUEL
    assert snap.settings is not None and snap.settings.daily_goal == 120.0
    assert snap.record_count() == 4


def test_settings_may_be_absent():
    snap = serializer.deserialize(_snapshot_bytes(settings=None))
    assert snap.settings is None
    obj = json.loads(_snapshot_bytes(settings=None))
    assert obj["settings"] is None


def test_missing_format_version_is_rejected():
    obj = json.loads(_snapshot_bytes())
    del obj["formatVersion"]
    with pytest.raises(UnsupportedFormat):
        serializer.deserialize(json.dumps(obj).encode("utf-8"))


@pytest.mark.parametrize("version", [0, 2, 99, "1", True, 1.0, None])
def test_unknown_or_malformed_version_is_rejected(version):
    obj = json.loads(_snapshot_bytes())
    obj["formatVersion"] = version
    with pytest.raises(UnsupportedFormat):
        serializer.deserialize(json.dumps(obj).encode("utf-8"))


def test_legacy_export_layout_is_rejected():
    legacy = {"version": 1, "exportDate": 1_700_000_000_000, "shifts": [], "expenses": []}
    with pytest.raises(UnsupportedFormat):
        serializer.deserialize(json.dumps(legacy).encode("utf-8"))


@pytest.mark.parametrize("raw", [b"not json", b"[1, 2, 3]", b"\xff\xfe\x00", b""])
def test_garbage_is_unsupported_format(raw):
    with pytest.raises(UnsupportedFormat):
        serializer.deserialize(raw)


def test_schema_violation_is_unsupported_format():
    obj = json.loads(_snapshot_bytes())
    obj["shifts"][0]["surpriseField"] = 1
    with pytest.raises(UnsupportedFormat) as ei:
        serializer.deserialize(json.dumps(obj).encode("utf-8"))
    assert ei.value.context.get("errors") == 1


def test_missing_record_id_is_rejected():
    obj = json.loads(_snapshot_bytes())
    obj["expenses"][0]["id"] = ""
    with pytest.raises(UnsupportedFormat):
        serializer.deserialize(json.dumps(obj).encode("utf-8"))
