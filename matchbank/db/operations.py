"""
Database read/write helpers.

Thin async accessors shared by the trade engine, the resolvers and the API.
None of them open transactions; callers run them inside `run_transaction`
or a request-scoped session.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from matchbank.models.db import (
    AccountDB,
    CardDB,
    GameweekDB,
    LeaderboardEntryDB,
    LineupDB,
    ListingDB,
    PackDB,
    ResolutionJobDB,
    TournamentDB,
    TournamentEntryDB,
)
from matchbank.models.enums import JobStatus, LineupStatus

# --- Accounts & Cards ---


async def get_account(session: AsyncSession, user_id: str) -> AccountDB | None:
    """Get an account by user id. Returns None if absent."""
    return await session.get(AccountDB, user_id)


async def get_card(session: AsyncSession, card_id: str) -> CardDB | None:
    return await session.get(CardDB, card_id)


# --- Marketplace ---


async def get_listing(session: AsyncSession, listing_id: str) -> ListingDB | None:
    return await session.get(ListingDB, listing_id)


async def get_pack(session: AsyncSession, pack_id: str) -> PackDB | None:
    return await session.get(PackDB, pack_id)


# --- Gameweeks ---


async def get_gameweek(session: AsyncSession, gameweek_id: str) -> GameweekDB | None:
    return await session.get(GameweekDB, gameweek_id)


async def get_lineup_ids(
    session: AsyncSession, gameweek_id: str, status: LineupStatus
) -> list[int]:
    """Ids of a gameweek's lineups in the given status, in stable order."""
    result = await session.execute(
        select(LineupDB.id)
        .where(LineupDB.gameweek_id == gameweek_id, LineupDB.status == status.value)
        .order_by(LineupDB.id)
    )
    return list(result.scalars().all())


async def get_lineup(session: AsyncSession, lineup_id: int) -> LineupDB | None:
    """Get a lineup with its slots loaded."""
    return await session.get(LineupDB, lineup_id)


# --- Tournaments ---


async def get_tournament(session: AsyncSession, tournament_id: str) -> TournamentDB | None:
    return await session.get(TournamentDB, tournament_id)


async def get_tournament_entries(
    session: AsyncSession, tournament_id: str
) -> list[TournamentEntryDB]:
    result = await session.execute(
        select(TournamentEntryDB)
        .where(TournamentEntryDB.tournament_id == tournament_id)
        .order_by(TournamentEntryDB.id)
    )
    return list(result.scalars().all())


async def get_tournament_entry(session: AsyncSession, entry_id: int) -> TournamentEntryDB | None:
    return await session.get(TournamentEntryDB, entry_id)


async def get_leaderboard(session: AsyncSession, tournament_id: str) -> list[LeaderboardEntryDB]:
    """Leaderboard rows ordered by rank."""
    result = await session.execute(
        select(LeaderboardEntryDB)
        .where(LeaderboardEntryDB.tournament_id == tournament_id)
        .order_by(LeaderboardEntryDB.rank)
    )
    return list(result.scalars().all())


async def upsert_leaderboard_entry(
    session: AsyncSession,
    tournament_id: str,
    user_id: str,
    total_score: int,
    rank: int,
    win_amount: int,
    created_at: int,
) -> LeaderboardEntryDB:
    """
    Insert or update a leaderboard row.

    If a row for this tournament+user exists (a rerun), updates it.
    """
    existing = await session.get(LeaderboardEntryDB, (tournament_id, user_id))

    if existing:
        existing.total_score = total_score
        existing.rank = rank
        existing.win_amount = win_amount
        existing.created_at = created_at
        await session.flush()
        return existing

    row = LeaderboardEntryDB(
        tournament_id=tournament_id,
        user_id=user_id,
        total_score=total_score,
        rank=rank,
        win_amount=win_amount,
        created_at=created_at,
    )
    session.add(row)
    await session.flush()
    return row


# --- Resolution job cursor ---


async def get_job(session: AsyncSession, job_type: str, target_id: str) -> ResolutionJobDB | None:
    result = await session.execute(
        select(ResolutionJobDB).where(
            ResolutionJobDB.job_type == job_type,
            ResolutionJobDB.target_id == target_id,
        )
    )
    return result.scalar_one_or_none()


async def start_job(
    session: AsyncSession, job_type: str, target_id: str, now: int
) -> tuple[ResolutionJobDB, bool]:
    """
    Open (or reopen) the cursor for a job run.

    Returns:
        Tuple of (job, resumed) where resumed is True if a previous run
        left the cursor behind.
    """
    job = await get_job(session, job_type, target_id)
    if job:
        job.status = JobStatus.RUNNING.value
        job.run_count += 1
        job.failed = 0
        job.updated_at = now
        await session.flush()
        return job, True

    job = ResolutionJobDB(
        job_type=job_type,
        target_id=target_id,
        status=JobStatus.RUNNING.value,
        processed=0,
        failed=0,
        run_count=1,
        started_at=now,
        updated_at=now,
    )
    session.add(job)
    await session.flush()
    return job, False


async def advance_job(
    session: AsyncSession,
    job_type: str,
    target_id: str,
    entity_id: str,
    now: int,
    failed: bool = False,
) -> None:
    """Record one processed (or failed) entity on the job cursor."""
    job = await get_job(session, job_type, target_id)
    if job is None:
        return
    if failed:
        job.failed += 1
    else:
        job.processed += 1
        job.last_entity_id = entity_id
    job.updated_at = now
    await session.flush()
