from matchbank.models.audit import (
    DuplicateCheck,
    ErrorContext,
    ErrorStats,
    PartialState,
    RollbackLog,
)
from matchbank.models.enums import (
    AlertSeverity,
    AuditRecordType,
    CardScarcity,
    GameweekStatus,
    JobStatus,
    LineupStatus,
    ListingStatus,
    OperationType,
    Position,
    TournamentStatus,
)
from matchbank.models.failure import (
    ApiResponse,
    ErrorCode,
    ErrorKind,
    FailureDetail,
    InternalError,
    InvalidArgument,
    MarketError,
    NotFound,
    OutcomeType,
    PermissionDenied,
    PreconditionFailed,
    ResourceExhausted,
    Unauthenticated,
    is_critical,
    user_message,
)
from matchbank.models.player import PlayerSnapshot, PlayerStats

__all__ = [
    "AlertSeverity",
    "ApiResponse",
    "AuditRecordType",
    "CardScarcity",
    "DuplicateCheck",
    "ErrorCode",
    "ErrorContext",
    "ErrorKind",
    "ErrorStats",
    "FailureDetail",
    "GameweekStatus",
    "InternalError",
    "InvalidArgument",
    "JobStatus",
    "LineupStatus",
    "ListingStatus",
    "MarketError",
    "NotFound",
    "OperationType",
    "OutcomeType",
    "PartialState",
    "PermissionDenied",
    "PlayerSnapshot",
    "PlayerStats",
    "Position",
    "PreconditionFailed",
    "ResourceExhausted",
    "RollbackLog",
    "TournamentStatus",
    "Unauthenticated",
    "is_critical",
    "user_message",
]
