"""
Shared FastAPI dependencies.

Caller identity arrives in the `X-User-Id` header, set by the gateway that
authenticates the request. A missing header reaches the services as None and
is rejected there as unauthenticated.
"""

from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchbank.db.database import get_session_factory
from matchbank.models.failure import Unauthenticated
from matchbank.services.audit import AuditSink, DatabaseAuditSink
from matchbank.services.idempotency import IdempotencyGuard
from matchbank.services.marketplace import MarketplaceEngine
from matchbank.services.player_pool import DatabasePlayerPool, PlayerPool
from matchbank.services.stats_provider import StatsProvider

SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]


def get_caller_id(
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
) -> str | None:
    if x_user_id is None or not x_user_id.strip():
        return None
    return x_user_id.strip()


def require_caller(
    caller_id: Annotated[str | None, Depends(get_caller_id)],
) -> str:
    """Reject anonymous callers on read endpoints that do not go through the engine."""
    if caller_id is None:
        raise Unauthenticated()
    return caller_id


def get_audit_sink(session_factory: SessionFactory) -> DatabaseAuditSink:
    return DatabaseAuditSink(session_factory)


def get_player_pool() -> PlayerPool:
    return DatabasePlayerPool()


def get_stats_provider() -> StatsProvider | None:
    """Statistics source for resolution. None selects each job's default."""
    return None


def get_marketplace_engine(
    session_factory: SessionFactory,
    audit: Annotated[AuditSink, Depends(get_audit_sink)],
    player_pool: Annotated[PlayerPool, Depends(get_player_pool)],
) -> MarketplaceEngine:
    return MarketplaceEngine(
        session_factory,
        guard=IdempotencyGuard(session_factory),
        audit=audit,
        player_pool=player_pool,
    )


CallerId = Annotated[str | None, Depends(get_caller_id)]
