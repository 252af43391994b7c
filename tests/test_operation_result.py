from __future__ import annotations

import pytest

from deliverytracker.core.backup.models import OperationResult
from deliverytracker.core.errors import StorageError


def test_success_unwraps_to_value():
    res = OperationResult.success([])
    assert res.ok
    assert res.unwrap() == []
    assert res.error_code is None


def test_failure_unwrap_raises_carried_error():
    err = StorageError("disk gone", errno=5)
    res = OperationResult.failure(err)
    assert res.error_code == "storage_error"
    with pytest.raises(StorageError) as ei:
        res.unwrap()
    assert ei.value is err
