"""
Resolution API endpoints.

Triggers for the batch jobs: locking a gameweek's lineups, resolving a
gameweek and resolving a blitz tournament, plus the published blitz
leaderboard. The same jobs run from the CLI.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from matchbank.api.dependencies import SessionFactory, get_audit_sink, get_stats_provider
from matchbank.db.operations import get_leaderboard, get_tournament
from matchbank.jobs.lock_lineups import lock_lineups
from matchbank.jobs.resolve_blitz import resolve_blitz
from matchbank.jobs.resolve_gameweek import resolve_gameweek
from matchbank.models.failure import ApiResponse, ErrorKind, NotFound
from matchbank.services.audit import AuditSink
from matchbank.services.stats_provider import StatsProvider

router = APIRouter(prefix="/resolution", tags=["resolution"])

Audit = Annotated[AuditSink, Depends(get_audit_sink)]
Stats = Annotated[StatsProvider | None, Depends(get_stats_provider)]


class LockResult(BaseModel):
    gameweek_id: str
    locked: int
    failed: int
    started: bool


class GameweekResult(BaseModel):
    gameweek_id: str
    processed: int
    failed: int
    total_coins_distributed: int
    total_xp_distributed: int
    resumed: bool
    finished: bool


class BlitzResult(BaseModel):
    tournament_id: str
    resolved: int
    winners: int
    total_distributed: int
    skipped_settled: int
    failed: int
    resumed: bool
    completed: bool


class LeaderboardRow(BaseModel):
    rank: int
    user_id: str
    total_score: int
    win_amount: int


@router.post("/gameweeks/{gameweek_id}/lock", response_model=ApiResponse[LockResult])
async def lock_gameweek(
    gameweek_id: str,
    session_factory: SessionFactory,
    start: Annotated[bool, Query(description="Move a SCHEDULED gameweek to LIVE first")] = False,
) -> ApiResponse[LockResult]:
    """Lock every SAVED lineup of a LIVE gameweek."""
    stats = await lock_lineups(session_factory, gameweek_id, start=start)
    return ApiResponse[LockResult].success(
        LockResult(
            gameweek_id=gameweek_id,
            locked=stats.locked,
            failed=stats.failed,
            started=stats.started,
        )
    )


@router.post("/gameweeks/{gameweek_id}", response_model=ApiResponse[GameweekResult])
async def resolve_gameweek_endpoint(
    gameweek_id: str,
    session_factory: SessionFactory,
    audit: Audit,
    stats_provider: Stats,
) -> ApiResponse[GameweekResult]:
    """Score and reward all locked lineups of a LIVE gameweek."""
    stats = await resolve_gameweek(session_factory, gameweek_id, audit, stats_provider)
    return ApiResponse[GameweekResult].success(
        GameweekResult(
            gameweek_id=gameweek_id,
            processed=stats.processed,
            failed=stats.failed,
            total_coins_distributed=stats.total_coins_distributed,
            total_xp_distributed=stats.total_xp_distributed,
            resumed=stats.resumed,
            finished=stats.finished,
        )
    )


@router.post("/blitz/{tournament_id}", response_model=ApiResponse[BlitzResult])
async def resolve_blitz_endpoint(
    tournament_id: str,
    session_factory: SessionFactory,
    audit: Audit,
    stats_provider: Stats,
) -> ApiResponse[BlitzResult]:
    """Rank the entries of a LIVE blitz tournament and pay the prize pool."""
    stats = await resolve_blitz(session_factory, tournament_id, audit, stats_provider)
    return ApiResponse[BlitzResult].success(
        BlitzResult(
            tournament_id=tournament_id,
            resolved=stats.resolved,
            winners=stats.winners,
            total_distributed=stats.total_distributed,
            skipped_settled=stats.skipped_settled,
            failed=stats.failed,
            resumed=stats.resumed,
            completed=stats.completed,
        )
    )


@router.get("/blitz/{tournament_id}/leaderboard", response_model=ApiResponse[list[LeaderboardRow]])
async def blitz_leaderboard(
    tournament_id: str,
    session_factory: SessionFactory,
) -> ApiResponse[list[LeaderboardRow]]:
    """Published leaderboard of a blitz tournament, best rank first."""
    async with session_factory() as session:
        if await get_tournament(session, tournament_id) is None:
            raise NotFound(ErrorKind.TOURNAMENT_NOT_FOUND, "Tournament not found.")
        rows = await get_leaderboard(session, tournament_id)

    return ApiResponse[list[LeaderboardRow]].success(
        [
            LeaderboardRow(
                rank=row.rank,
                user_id=row.user_id,
                total_score=row.total_score,
                win_amount=row.win_amount,
            )
            for row in rows
        ]
    )
