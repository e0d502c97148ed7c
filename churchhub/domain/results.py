from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(StrEnum):
    ACTOR_NOT_FOUND = "ACTOR_NOT_FOUND"
    TENANT_MISMATCH = "TENANT_MISMATCH"
    ROLE_HIERARCHY_VIOLATION = "ROLE_HIERARCHY_VIOLATION"
    INSUFFICIENT_PERMISSION = "INSUFFICIENT_PERMISSION"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    INVITE_LINK_INVALID = "INVITE_LINK_INVALID"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    kind: ErrorKind | None = None
    reason: str | None = None
    message: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def allow(cls) -> Decision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, kind: ErrorKind, reason: str, message: str, **detail: Any) -> Decision:
        return cls(allowed=False, kind=kind, reason=reason, message=message, detail=detail)

    @property
    def denied(self) -> bool:
        return not self.allowed

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "kind": str(self.kind) if self.kind is not None else None,
            "reason": self.reason,
            "message": self.message,
        }
        if self.detail:
            payload["detail"] = dict(self.detail)
        return payload


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a policy facade operation: a value or a typed denial."""

    value: T | None = None
    denial: Decision | None = None

    @classmethod
    def success(cls, value: T) -> Outcome[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, denial: Decision) -> Outcome[T]:
        if denial.allowed:
            raise ValueError("failure outcome requires a denied decision")
        return cls(denial=denial)

    @classmethod
    def deny(cls, kind: ErrorKind, reason: str, message: str, **detail: Any) -> Outcome[T]:
        return cls.failure(Decision.deny(kind, reason, message, **detail))

    @property
    def ok(self) -> bool:
        return self.denial is None

    @property
    def kind(self) -> ErrorKind | None:
        return self.denial.kind if self.denial is not None else None

    @property
    def reason(self) -> str | None:
        return self.denial.reason if self.denial is not None else None

    def unwrap(self) -> T:
        if self.denial is not None:
            raise ValueError(f"outcome denied: {self.denial.kind} ({self.denial.reason})")
        return self.value  # type: ignore[return-value]
