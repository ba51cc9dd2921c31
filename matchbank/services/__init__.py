"""
MatchBank services.

Trade engine, duplicate-submission guard, audit sink, scoring and the
pluggable data sources (player statistics, player pool).
"""

from matchbank.services.audit import AuditSink, DatabaseAuditSink
from matchbank.services.idempotency import IdempotencyGuard
from matchbank.services.marketplace import (
    CancelResult,
    ListCardResult,
    MarketplaceEngine,
    PackPurchaseResult,
    PurchaseResult,
    net_seller_amount,
)
from matchbank.services.player_pool import DatabasePlayerPool, PlayerPool
from matchbank.services.scoring import (
    LineupScore,
    SlotInput,
    Substitution,
    calculate_points,
    score_blitz_lineup,
    score_lineup,
)
from matchbank.services.stats_provider import (
    DeterministicStatsProvider,
    MappingStatsProvider,
    StatsProvider,
    blitz_stats_provider,
)

__all__ = [
    "AuditSink",
    "CancelResult",
    "DatabaseAuditSink",
    "DatabasePlayerPool",
    "DeterministicStatsProvider",
    "IdempotencyGuard",
    "LineupScore",
    "ListCardResult",
    "MappingStatsProvider",
    "MarketplaceEngine",
    "PackPurchaseResult",
    "PlayerPool",
    "PurchaseResult",
    "SlotInput",
    "StatsProvider",
    "Substitution",
    "blitz_stats_provider",
    "calculate_points",
    "net_seller_amount",
    "score_blitz_lineup",
    "score_lineup",
]
