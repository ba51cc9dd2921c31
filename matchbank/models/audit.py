from dataclasses import asdict, dataclass, field, fields
from typing import Any

from matchbank.models.enums import OperationType
from matchbank.models.failure import ErrorKind


@dataclass
class PartialState:
    """
    Writes a trade transaction had staged when it failed.

    The store commits all-or-nothing, so these flags describe intended
    writes for forensic purposes, never persisted partial state.
    """

    transaction_started: bool = False
    balance_deducted: bool = False
    balance_credited: bool = False
    stock_decremented: bool = False
    cards_created: bool = False
    card_transferred: bool = False
    listing_created: bool = False
    listing_updated: bool = False
    card_locked: bool = False
    card_unlocked: bool = False
    listing_cancelled: bool = False

    def reset(self) -> None:
        """Clear every flag before a transaction body (re)runs."""
        for f in fields(self):
            setattr(self, f.name, False)

    def flags(self) -> dict[str, bool]:
        return asdict(self)


@dataclass
class ErrorContext:
    """A classified failure of one operation."""

    operation: OperationType
    kind: ErrorKind
    message: str
    timestamp: int
    user_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation.value,
            "kind": self.kind.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "user_id": self.user_id,
            "metadata": self.metadata,
        }


@dataclass
class RollbackLog:
    """A transaction that aborted after it started staging writes."""

    operation: OperationType
    user_id: str | None
    reason: str
    kind: ErrorKind
    timestamp: int
    partial_state: dict[str, bool] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ErrorStats:
    """Error statistics for one operation over a time range."""

    total_errors: int = 0
    errors_by_kind: dict[str, int] = field(default_factory=dict)
    critical_errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class DuplicateCheck:
    """Outcome of one duplicate-submission check."""

    is_duplicate: bool
    should_block: bool
    attempt_count: int = 1
