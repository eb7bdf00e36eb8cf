"""
Outcome types - results of remote calls and their classification.

A RemoteCallResult is what the transport hands back for one call attempt.
A ClassifiedOutcome is what the reconciliation machinery decides about it.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional


def find_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


class OutcomeKind(Enum):
    """Classification of a remote call outcome."""

    SUCCESS = "success"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RemoteCallResult:
    """
    Raw result of a single remote call attempt.

    status_code is set whenever a response was received. error_message is
    set only when the transport itself failed (or the API reported an error
    the client surfaced).
    """

    status_code: Optional[int] = None
    error_message: Optional[str] = None
    body: Optional[bytes] = None
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def responded(self) -> bool:
        return self.status_code is not None

    def text(self) -> str:
        """Body decoded as UTF-8 (empty string when there is no body)."""
        if not self.body:
            return ""
        return self.body.decode("utf-8", errors="replace")

    def header(self, name: str) -> Optional[str]:
        return find_header(self.headers, name)


@dataclass(frozen=True)
class ClassifiedOutcome:
    """Classified result of a remote call, poll or whole operation."""

    kind: OutcomeKind
    payload: Any = None
    cause: Optional[str] = None
    status_code: Optional[int] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    operation: str = ""
    resource_id: Optional[str] = None
    attempts: int = 0

    def header(self, name: str) -> Optional[str]:
        return find_header(self.headers, name)

    @classmethod
    def success(cls, payload: Any = None, **kwargs) -> "ClassifiedOutcome":
        return cls(kind=OutcomeKind.SUCCESS, payload=payload, **kwargs)

    @classmethod
    def transient(cls, cause: str, **kwargs) -> "ClassifiedOutcome":
        return cls(kind=OutcomeKind.TRANSIENT, cause=cause, **kwargs)

    @classmethod
    def permanent(cls, cause: str, **kwargs) -> "ClassifiedOutcome":
        return cls(kind=OutcomeKind.PERMANENT, cause=cause, **kwargs)

    @classmethod
    def not_found(cls, **kwargs) -> "ClassifiedOutcome":
        kwargs.setdefault("cause", "resource not found")
        return cls(kind=OutcomeKind.NOT_FOUND, **kwargs)

    @classmethod
    def conflict(cls, cause: str, **kwargs) -> "ClassifiedOutcome":
        return cls(kind=OutcomeKind.CONFLICT, cause=cause, **kwargs)

    @classmethod
    def timed_out(cls, cause: str, **kwargs) -> "ClassifiedOutcome":
        return cls(kind=OutcomeKind.TIMED_OUT, cause=cause, **kwargs)

    @classmethod
    def cancelled(cls, cause: str = "cancelled", **kwargs) -> "ClassifiedOutcome":
        return cls(kind=OutcomeKind.CANCELLED, cause=cause, **kwargs)

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def retryable(self) -> bool:
        return self.kind is OutcomeKind.TRANSIENT

    def with_context(
        self,
        operation: Optional[str] = None,
        resource_id: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> "ClassifiedOutcome":
        """Return a copy annotated with diagnostic context."""
        changes: Dict[str, Any] = {}
        if operation is not None:
            changes["operation"] = operation
        if resource_id is not None:
            changes["resource_id"] = resource_id
        if attempts is not None:
            changes["attempts"] = attempts
        return replace(self, **changes)

    def __str__(self) -> str:
        if self.ok:
            return f"{self.operation or 'call'} succeeded"

        target = self.operation or "call"
        if self.resource_id:
            target = f"{target} {self.resource_id}"
        parts = [f"{target} failed ({self.kind.value})"]
        if self.status_code is not None:
            parts.append(f"status {self.status_code}")
        if self.attempts > 1:
            parts.append(f"after {self.attempts} attempts")
        message = ", ".join(parts)
        if self.cause:
            message = f"{message}: {self.cause}"
        return message
