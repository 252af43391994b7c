from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from deliverytracker.core.errors import TrackerError

FORMAT_VERSION = 1
SUPPORTED_FORMAT_VERSIONS = frozenset({1})


class _WireModel(BaseModel):
    # camelCase on disk, snake_case in Python
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class TrackedRecord(_WireModel):
    """Fields every live-store record carries; the merge only looks at these."""

    id: str = Field(min_length=1)
    user_id: str = ""
    is_deleted: bool = False
    deleted_at: Optional[int] = None
    created_at: int = 0
    updated_at: int = 0


class ShiftRecord(TrackedRecord):
    date: int
    worked_hours: int = 0
    worked_minutes: int = 0
    gross_income: float = 0.0
    tips: float = 0.0
    bonus: float = 0.0
    orders_count: int = 0
    kilometers: float = 0.0
    kilometers_start: Optional[float] = None
    kilometers_end: Optional[float] = None
    notes: str = ""


class ExpenseCategory(str, Enum):
    FUEL = "FUEL"
    MAINTENANCE = "MAINTENANCE"
    INSURANCE = "INSURANCE"
    PHONE = "PHONE"
    EQUIPMENT = "EQUIPMENT"
    TAX = "TAX"
    OTHER = "OTHER"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    CARD = "CARD"


class ExpenseRecord(TrackedRecord):
    date: int
    amount: float = 0.0
    category: ExpenseCategory = ExpenseCategory.OTHER
    payment_method: PaymentMethod = PaymentMethod.CASH
    description: str = ""
    shift_id: Optional[str] = None
    receipt_url: Optional[str] = None
    notes: str = ""


class ThemeMode(str, Enum):
    SYSTEM = "SYSTEM"
    LIGHT = "LIGHT"
    DARK = "DARK"


class UserSettingsRecord(TrackedRecord):
    theme: ThemeMode = ThemeMode.SYSTEM
    dynamic_color: bool = False
    vat_rate: float = 0.24
    monthly_efka_amount: float = 254.0
    daily_goal: Optional[float] = None
    weekly_goal: Optional[float] = None
    monthly_goal: Optional[float] = None
    yearly_goal: Optional[float] = None


class Snapshot(_WireModel):
    format_version: int
    exported_at: int
    user_id: str = ""
    shifts: List[ShiftRecord] = Field(default_factory=list)
    expenses: List[ExpenseRecord] = Field(default_factory=list)
    settings: Optional[UserSettingsRecord] = None

    def record_count(self) -> int:
        return len(self.shifts) + len(self.expenses) + (1 if self.settings is not None else 0)


class BackupState(str, Enum):
    IDLE = "IDLE"
    COLLECTING = "COLLECTING"
    SERIALIZING = "SERIALIZING"
    ENCRYPTING = "ENCRYPTING"
    WRITING = "WRITING"
    READING = "READING"
    DECRYPTING = "DECRYPTING"
    DESERIALIZING = "DESERIALIZING"
    MERGING = "MERGING"
    DONE = "DONE"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[TrackerError] = None

    @classmethod
    def success(cls, value: T) -> "OperationResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: TrackerError) -> "OperationResult[T]":
        return cls(ok=False, error=error)

    @property
    def error_code(self) -> Optional[str]:
        return self.error.code if self.error is not None else None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
