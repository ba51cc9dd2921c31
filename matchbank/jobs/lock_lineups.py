"""
Lineup lock job.

Moves a gameweek to LIVE and freezes its SAVED lineups as LOCKED so the
resolver can score them. Each lineup locks in its own transaction; a lineup
edited concurrently is retried by the transaction runner, and one that still
fails is logged and left SAVED for the next run.
"""

import argparse
import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchbank.db.database import async_session_factory
from matchbank.db.operations import get_gameweek, get_lineup, get_lineup_ids
from matchbank.db.transaction import run_transaction
from matchbank.models.enums import GameweekStatus, LineupStatus
from matchbank.models.failure import ErrorKind, NotFound, PreconditionFailed

logger = logging.getLogger(__name__)


@dataclass
class LockStats:
    locked: int = 0
    failed: int = 0
    started: bool = False


async def start_gameweek(
    session_factory: async_sessionmaker[AsyncSession], gameweek_id: str
) -> bool:
    """
    Move a gameweek from SCHEDULED to LIVE.

    Returns False if it was already LIVE.

    Raises:
        NotFound: Gameweek does not exist
        PreconditionFailed: Gameweek is FINISHED
    """

    async def body(session: AsyncSession) -> bool:
        gameweek = await get_gameweek(session, gameweek_id)
        if gameweek is None:
            raise NotFound(ErrorKind.GAMEWEEK_NOT_FOUND, "Gameweek not found.")
        if gameweek.status == GameweekStatus.LIVE.value:
            return False
        if gameweek.status != GameweekStatus.SCHEDULED.value:
            raise PreconditionFailed(ErrorKind.INVALID_STATE, "Gameweek already finished.")
        gameweek.status = GameweekStatus.LIVE.value
        return True

    return await run_transaction(session_factory, body)


async def lock_lineup(session_factory: async_sessionmaker[AsyncSession], lineup_id: int) -> bool:
    async def body(session: AsyncSession) -> bool:
        lineup = await get_lineup(session, lineup_id)
        if lineup is None or lineup.status != LineupStatus.SAVED.value:
            return False
        lineup.status = LineupStatus.LOCKED.value
        return True

    return await run_transaction(session_factory, body)


async def lock_lineups(
    session_factory: async_sessionmaker[AsyncSession],
    gameweek_id: str,
    start: bool = False,
) -> LockStats:
    """
    Lock every SAVED lineup of a LIVE gameweek.

    Args:
        start: Move a SCHEDULED gameweek to LIVE first

    Raises:
        NotFound: Gameweek does not exist
        PreconditionFailed: Gameweek is not LIVE
    """
    stats = LockStats()
    if start:
        stats.started = await start_gameweek(session_factory, gameweek_id)

    async def begin(session: AsyncSession) -> list[int]:
        gameweek = await get_gameweek(session, gameweek_id)
        if gameweek is None:
            raise NotFound(ErrorKind.GAMEWEEK_NOT_FOUND, "Gameweek not found.")
        if gameweek.status != GameweekStatus.LIVE.value:
            raise PreconditionFailed(ErrorKind.INVALID_STATE, "Gameweek not in LIVE status.")
        return await get_lineup_ids(session, gameweek_id, LineupStatus.SAVED)

    lineup_ids = await run_transaction(session_factory, begin)
    logger.info("Locking %d lineups of gameweek %s", len(lineup_ids), gameweek_id)

    for lineup_id in lineup_ids:
        try:
            if await lock_lineup(session_factory, lineup_id):
                stats.locked += 1
        except Exception:
            stats.failed += 1
            logger.exception("Error locking lineup %s of gameweek %s", lineup_id, gameweek_id)

    logger.info(
        "Gameweek %s: %d lineups locked, %d failed", gameweek_id, stats.locked, stats.failed
    )
    return stats


def main() -> None:
    """CLI entry point for locking a gameweek's lineups."""
    parser = argparse.ArgumentParser(description="Lock saved lineups of a gameweek")
    parser.add_argument("gameweek_id", help="Gameweek whose lineups to lock")
    parser.add_argument(
        "--start",
        action="store_true",
        help="Move a SCHEDULED gameweek to LIVE before locking",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    result = asyncio.run(lock_lineups(async_session_factory, args.gameweek_id, start=args.start))
    print(f"Locked {result.locked} lineups, {result.failed} failed")


if __name__ == "__main__":
    main()
