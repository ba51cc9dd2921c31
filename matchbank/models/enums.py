from enum import Enum


class Position(str, Enum):
    GK = "GK"
    DEF = "DEF"
    MID = "MID"
    FWD = "FWD"

    @classmethod
    def parse(cls, value: str | None) -> "Position":
        """Unknown or missing positions score as midfielders."""
        try:
            return cls(value)
        except ValueError:
            return cls.MID


class CardScarcity(str, Enum):
    COMMON = "COMMON"
    RARE = "RARE"
    EPIC = "EPIC"
    LEGENDARY = "LEGENDARY"


class ListingStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SOLD = "SOLD"
    CANCELLED = "CANCELLED"


class GameweekStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    LIVE = "LIVE"
    FINISHED = "FINISHED"


class LineupStatus(str, Enum):
    SAVED = "SAVED"
    LOCKED = "LOCKED"
    FINISHED = "FINISHED"


class TournamentStatus(str, Enum):
    OPEN = "OPEN"
    LIVE = "LIVE"
    COMPLETED = "COMPLETED"


class OperationType(str, Enum):
    """Money-moving operations tracked by the guard and the audit sink."""

    BUY_PACK = "buyPack"
    LIST_CARD = "listCard"
    CANCEL_LISTING = "cancelListing"
    BUY_MARKET_LISTING = "buyMarketListing"
    RESOLVE_GAMEWEEK = "resolveGameweek"
    RESOLVE_BLITZ = "resolveBlitz"


class AuditRecordType(str, Enum):
    ERROR = "ERROR"
    ROLLBACK = "ROLLBACK"


class AlertSeverity(str, Enum):
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class JobStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
