from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from deliverytracker.core.journal import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class TrackerError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def __str__(self) -> str:
        return f"{self.code}: {self.user_message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact(self.context or {}),
        }


# ---- Backup / restore taxonomy ----
class KeyUnavailable(TrackerError):
    def __init__(self, user_message: str = "The backup key is not available.", **ctx: Any):
        super().__init__("key_unavailable", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class AuthenticationFailed(TrackerError):
    def __init__(self, user_message: str = "The backup could not be verified (tampered file or wrong key).", **ctx: Any):
        super().__init__("authentication_failed", user_message, severity=Severity.ERROR, recoverable=False, context=ctx)


class UnsupportedFormat(TrackerError):
    def __init__(self, user_message: str = "The backup format is not supported.", **ctx: Any):
        super().__init__("unsupported_format", user_message, severity=Severity.ERROR, recoverable=False, context=ctx)


class StorageError(TrackerError):
    def __init__(self, user_message: str = "Backup storage is not accessible.", **ctx: Any):
        super().__init__("storage_error", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class Cancelled(TrackerError):
    def __init__(self, user_message: str = "The operation was cancelled.", **ctx: Any):
        super().__init__("cancelled", user_message, severity=Severity.INFO, recoverable=True, context=ctx)


class OperationInProgress(TrackerError):
    def __init__(self, user_message: str = "Another operation of this kind is already running.", **ctx: Any):
        super().__init__("operation_in_progress", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class NotAuthenticated(TrackerError):
    def __init__(self, user_message: str = "You must be signed in.", **ctx: Any):
        super().__init__("not_logged_in", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class RecordConflict(TrackerError):
    def __init__(self, user_message: str = "The record belongs to another user.", **ctx: Any):
        super().__init__("record_conflict", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class StateTransitionError(TrackerError):
    def __init__(self, user_message: str = "Internal state error.", **ctx: Any):
        super().__init__("state_transition_error", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


class ConfigError(TrackerError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)
