from __future__ import annotations

from deliverytracker.core.backup.models import (
    ExpenseCategory,
    ExpenseRecord,
    PaymentMethod,
    ShiftRecord,
    ThemeMode,
    UserSettingsRecord,
)

USER = "user-1"


def shift(record_id: str = "s1", *, updated_at: int = 100, user_id: str = USER, **kw) -> ShiftRecord:
    data = dict(
        id=record_id,
        user_id=user_id,
        date=1_700_000_000_000,
        worked_hours=6,
        worked_minutes=30,
        gross_income=82.5,
        tips=12.0,
        bonus=5.0,
        orders_count=14,
        kilometers=63.2,
        notes="rainy evening",
        created_at=50,
        updated_at=updated_at,
    )
    data.update(kw)
    return ShiftRecord(**data)


def expense(record_id: str = "e1", *, updated_at: int = 100, user_id: str = USER, **kw) -> ExpenseRecord:
    data = dict(
        id=record_id,
        user_id=user_id,
        date=1_700_000_000_000,
        amount=40.0,
        category=ExpenseCategory.FUEL,
        payment_method=PaymentMethod.CARD,
        description="full tank",
        shift_id="s1",
        created_at=50,
        updated_at=updated_at,
    )
    data.update(kw)
    return ExpenseRecord(**data)


def settings(record_id: str = "settings-1", *, updated_at: int = 100, user_id: str = USER, **kw) -> UserSettingsRecord:
    data = dict(
        id=record_id,
        user_id=user_id,
        theme=ThemeMode.DARK,
        vat_rate=0.24,
        monthly_efka_amount=254.0,
        daily_goal=120.0,
        created_at=50,
        updated_at=updated_at,
    )
    data.update(kw)
    return UserSettingsRecord(**data)
