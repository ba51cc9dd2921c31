"""
Gameweek resolution job.

Scores every LOCKED lineup of a LIVE gameweek, applies auto-substitutions and
captaincy, credits coin and XP rewards, and finishes the gameweek.

Each lineup is resolved in its own transaction: its slot points, total,
FINISHED status and the owner's reward commit together. One lineup failing is
logged, audited and skipped; the gameweek stays LIVE until a run finishes
with no failures, so a rerun picks up exactly the lineups still LOCKED.
"""

import argparse
import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchbank.clock import Clock, now_ms
from matchbank.config import settings
from matchbank.db.database import async_session_factory
from matchbank.db.ledger import credit_account
from matchbank.db.operations import (
    advance_job,
    get_gameweek,
    get_job,
    get_lineup,
    get_lineup_ids,
    start_job,
)
from matchbank.db.transaction import run_transaction
from matchbank.models.audit import ErrorContext
from matchbank.models.enums import GameweekStatus, JobStatus, LineupStatus, OperationType, Position
from matchbank.models.failure import ErrorKind, MarketError, NotFound, PreconditionFailed
from matchbank.services.audit import AuditSink, DatabaseAuditSink
from matchbank.services.scoring import SlotInput, score_lineup
from matchbank.services.stats_provider import DeterministicStatsProvider, StatsProvider

logger = logging.getLogger(__name__)

JOB_TYPE = OperationType.RESOLVE_GAMEWEEK.value


@dataclass
class GameweekResolutionStats:
    processed: int = 0
    failed: int = 0
    total_coins_distributed: int = 0
    total_xp_distributed: int = 0
    resumed: bool = False
    finished: bool = False


@dataclass(frozen=True, slots=True)
class LineupReward:
    user_id: str
    score_total: int
    coins: int
    xp: int


async def resolve_lineup(
    session_factory: async_sessionmaker[AsyncSession],
    gameweek_id: str,
    lineup_id: int,
    stats_provider: StatsProvider,
    clock: Clock = now_ms,
) -> LineupReward | None:
    """
    Resolve one lineup atomically.

    Returns None if the lineup is no longer LOCKED (already resolved).
    """

    async def body(session: AsyncSession) -> LineupReward | None:
        lineup = await get_lineup(session, lineup_id)
        if lineup is None or lineup.status != LineupStatus.LOCKED.value:
            return None

        score = score_lineup(
            [
                SlotInput(
                    position_slot=slot.position_slot,
                    card_id=slot.card_id,
                    player_reference_id=slot.player_reference_id,
                    position=Position.parse(slot.position),
                )
                for slot in lineup.slots
            ],
            lineup.captain_card_id,
            stats_provider,
        )

        subbed_in = score.subbed_in
        for slot in lineup.slots:
            if slot.card_id in score.points:
                slot.points = score.points[slot.card_id]
            if slot.card_id in subbed_in:
                slot.is_subbed_in = True

        lineup.score_total = score.total
        lineup.status = LineupStatus.FINISHED.value

        # Rewards never debit: a negative total earns nothing
        rewarded_points = max(0, score.total)
        coins = rewarded_points * settings.gameweek_coins_per_point
        xp = rewarded_points * settings.gameweek_xp_per_point
        if not await credit_account(session, lineup.user_id, coins=coins, xp=xp):
            raise NotFound(ErrorKind.ACCOUNT_NOT_FOUND, "Lineup owner profile not found.")

        await advance_job(session, JOB_TYPE, gameweek_id, str(lineup_id), clock())
        return LineupReward(user_id=lineup.user_id, score_total=score.total, coins=coins, xp=xp)

    return await run_transaction(session_factory, body)


async def resolve_gameweek(
    session_factory: async_sessionmaker[AsyncSession],
    gameweek_id: str,
    audit: AuditSink,
    stats_provider: StatsProvider | None = None,
    clock: Clock = now_ms,
) -> GameweekResolutionStats:
    """
    Resolve all locked lineups of a LIVE gameweek.

    Raises:
        NotFound: Gameweek does not exist
        PreconditionFailed: Gameweek is not LIVE
    """
    provider = stats_provider or DeterministicStatsProvider()
    stats = GameweekResolutionStats()

    async def begin(session: AsyncSession) -> list[int]:
        gameweek = await get_gameweek(session, gameweek_id)
        if gameweek is None:
            raise NotFound(ErrorKind.GAMEWEEK_NOT_FOUND, "Gameweek not found.")
        if gameweek.status != GameweekStatus.LIVE.value:
            raise PreconditionFailed(ErrorKind.INVALID_STATE, "Gameweek not in LIVE status.")
        _, stats.resumed = await start_job(session, JOB_TYPE, gameweek_id, clock())
        return await get_lineup_ids(session, gameweek_id, LineupStatus.LOCKED)

    lineup_ids = await run_transaction(session_factory, begin)
    if stats.resumed:
        logger.info("Resuming gameweek %s: %d lineups still locked", gameweek_id, len(lineup_ids))
    else:
        logger.info("Resolving gameweek %s: %d locked lineups", gameweek_id, len(lineup_ids))

    for lineup_id in lineup_ids:
        try:
            reward = await resolve_lineup(session_factory, gameweek_id, lineup_id, provider, clock)
        except Exception as e:
            stats.failed += 1
            logger.exception("Error resolving lineup %s of gameweek %s", lineup_id, gameweek_id)
            await _record_failure(session_factory, audit, gameweek_id, lineup_id, e, clock)
            continue

        if reward is None:
            continue
        stats.processed += 1
        stats.total_coins_distributed += reward.coins
        stats.total_xp_distributed += reward.xp

    if stats.failed:
        logger.warning(
            "Gameweek %s left LIVE: %d lineups failed, rerun to retry them",
            gameweek_id,
            stats.failed,
        )
        return stats

    async def finish(session: AsyncSession) -> None:
        gameweek = await get_gameweek(session, gameweek_id)
        if gameweek is not None:
            gameweek.status = GameweekStatus.FINISHED.value
        job = await get_job(session, JOB_TYPE, gameweek_id)
        if job is not None:
            job.status = JobStatus.COMPLETED.value
            job.updated_at = clock()

    await run_transaction(session_factory, finish)
    stats.finished = True
    logger.info(
        "Gameweek %s resolved: %d lineups, %d coins distributed",
        gameweek_id,
        stats.processed,
        stats.total_coins_distributed,
    )
    return stats


async def _record_failure(
    session_factory: async_sessionmaker[AsyncSession],
    audit: AuditSink,
    gameweek_id: str,
    lineup_id: int,
    error: Exception,
    clock: Clock,
) -> None:
    kind = error.kind if isinstance(error, MarketError) else ErrorKind.INTERNAL_ERROR
    await audit.record_error(
        ErrorContext(
            operation=OperationType.RESOLVE_GAMEWEEK,
            kind=kind,
            message=str(error) or type(error).__name__,
            timestamp=clock(),
            metadata={"gameweek_id": gameweek_id, "lineup_id": lineup_id},
        )
    )

    async def mark(session: AsyncSession) -> None:
        await advance_job(session, JOB_TYPE, gameweek_id, str(lineup_id), clock(), failed=True)

    try:
        await run_transaction(session_factory, mark)
    except Exception:
        logger.exception("Could not record failure of lineup %s on job cursor", lineup_id)


def main() -> None:
    """CLI entry point for resolving a gameweek."""
    parser = argparse.ArgumentParser(description="Resolve a LIVE fantasy gameweek")
    parser.add_argument("gameweek_id", help="Gameweek to resolve")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    audit = DatabaseAuditSink(async_session_factory)
    result = asyncio.run(resolve_gameweek(async_session_factory, args.gameweek_id, audit))
    print(
        f"Processed {result.processed} lineups, {result.failed} failed, "
        f"{result.total_coins_distributed} coins distributed"
    )


if __name__ == "__main__":
    main()
