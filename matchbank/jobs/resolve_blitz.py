"""
Blitz tournament resolution job.

Scores every 5-card entry of a LIVE tournament, ranks entries by score (ties
go to the earlier entry), pays the tiered prize pool, and publishes the
leaderboard.

Payout tiers, with payout_count = max(1, floor(entries × payout_fraction)):
- rank 1: floor(50% of pool)
- rank 2: floor(25% of pool)
- ranks 3..payout_count: floor(25% of pool) split evenly, floor division
- everyone else: 0

Each entry settles in its own transaction (score, rank, prize, leaderboard
row, wallet credit, `settled` flag). A rerun after a crash skips settled
entries, so no entry is paid twice. An entry that cannot be scored or
settled is audited and skipped, and the tournament stays LIVE for a rerun.
"""

import argparse
import asyncio
import logging
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchbank.clock import Clock, now_ms
from matchbank.config import BLITZ_LINEUP_SIZE, settings
from matchbank.db.database import async_session_factory
from matchbank.db.ledger import credit_account
from matchbank.db.operations import (
    advance_job,
    get_job,
    get_tournament,
    get_tournament_entries,
    get_tournament_entry,
    start_job,
    upsert_leaderboard_entry,
)
from matchbank.db.transaction import run_transaction
from matchbank.models.audit import ErrorContext
from matchbank.models.enums import JobStatus, OperationType, TournamentStatus
from matchbank.models.failure import (
    ErrorKind,
    InvalidArgument,
    MarketError,
    NotFound,
    PreconditionFailed,
)
from matchbank.services.audit import AuditSink, DatabaseAuditSink
from matchbank.services.scoring import score_blitz_lineup
from matchbank.services.stats_provider import StatsProvider, blitz_stats_provider

logger = logging.getLogger(__name__)

JOB_TYPE = OperationType.RESOLVE_BLITZ.value


@dataclass(frozen=True, slots=True)
class EntryRecord:
    """An entry as loaded from the store, before scoring."""

    entry_id: int
    user_id: str
    lineup: Any
    created_at: int
    settled: bool
    win_amount: int = 0


@dataclass(frozen=True, slots=True)
class ScoredEntry:
    entry_id: int
    user_id: str
    total_score: int
    created_at: int
    settled: bool


@dataclass
class BlitzResolutionStats:
    resolved: int = 0
    winners: int = 0
    total_distributed: int = 0
    skipped_settled: int = 0
    failed: int = 0
    resumed: bool = False
    completed: bool = False


def payout_count(entry_count: int, fraction: float | None = None) -> int:
    """Number of paid ranks: max(1, floor(entry_count × fraction))."""
    share = Decimal(str(settings.blitz_payout_fraction if fraction is None else fraction))
    paid = int((Decimal(entry_count) * share).to_integral_value(rounding=ROUND_FLOOR))
    return max(1, paid)


def compute_payouts(entry_count: int, prize_pool: int, fraction: float | None = None) -> list[int]:
    """
    Prize for each rank, index 0 being rank 1.

    The remainder of the floor divisions stays undistributed.
    """
    payouts = [0] * entry_count
    if entry_count == 0 or prize_pool <= 0:
        return payouts

    paid = min(payout_count(entry_count, fraction), entry_count)
    rest_count = paid - 2
    rest_share = prize_pool // 4 // rest_count if rest_count > 0 else 0

    for i in range(paid):
        if i == 0:
            payouts[i] = prize_pool // 2
        elif i == 1:
            payouts[i] = prize_pool // 4
        else:
            payouts[i] = rest_share
    return payouts


def score_entry(record: EntryRecord, stats_provider: StatsProvider) -> ScoredEntry | None:
    """
    Score one entry's lineup.

    Returns None for entries without a complete lineup. Raises on malformed
    lineup data or a failing stats provider.
    """
    lineup = record.lineup or []
    if not lineup:
        return None
    if not isinstance(lineup, list):
        raise InvalidArgument("Lineup is not a list of cards.", detail=repr(lineup))
    if len(lineup) != BLITZ_LINEUP_SIZE:
        logger.warning("Skipping entry %s: lineup has %d cards", record.entry_id, len(lineup))
        return None

    cards: list[tuple[str, str]] = []
    for card in lineup:
        if not isinstance(card, dict):
            raise InvalidArgument("Lineup card is not an object.", detail=repr(card))
        cards.append((card.get("player_reference_id", ""), card.get("position", "MID")))

    return ScoredEntry(
        entry_id=record.entry_id,
        user_id=record.user_id,
        total_score=score_blitz_lineup(cards, stats_provider),
        created_at=record.created_at,
        settled=record.settled,
    )


def rank_entries(entries: list[ScoredEntry]) -> list[ScoredEntry]:
    """Order by total_score descending, then created_at ascending."""
    return sorted(entries, key=lambda e: (-e.total_score, e.created_at))


async def settle_entry(
    session_factory: async_sessionmaker[AsyncSession],
    tournament_id: str,
    entry: ScoredEntry,
    rank: int,
    win_amount: int,
    clock: Clock = now_ms,
) -> bool:
    """
    Settle one entry atomically.

    Returns False if the entry was already settled by an earlier run.
    """

    async def body(session: AsyncSession) -> bool:
        row = await get_tournament_entry(session, entry.entry_id)
        if row is None or row.settled:
            return False

        row.total_score = entry.total_score
        row.rank = rank
        row.win_amount = win_amount
        row.settled = True

        if win_amount > 0 and not await credit_account(session, entry.user_id, coins=win_amount):
            raise NotFound(ErrorKind.ACCOUNT_NOT_FOUND, "Entrant profile not found.")

        await upsert_leaderboard_entry(
            session,
            tournament_id=tournament_id,
            user_id=entry.user_id,
            total_score=entry.total_score,
            rank=rank,
            win_amount=win_amount,
            created_at=entry.created_at,
        )
        await advance_job(session, JOB_TYPE, tournament_id, str(entry.entry_id), clock())
        return True

    return await run_transaction(session_factory, body)


async def resolve_blitz(
    session_factory: async_sessionmaker[AsyncSession],
    tournament_id: str,
    audit: AuditSink,
    stats_provider: StatsProvider | None = None,
    clock: Clock = now_ms,
) -> BlitzResolutionStats:
    """
    Resolve a LIVE blitz tournament.

    Raises:
        NotFound: Tournament does not exist
        PreconditionFailed: Tournament is not LIVE
    """
    provider = stats_provider or blitz_stats_provider()
    stats = BlitzResolutionStats()

    async def begin(session: AsyncSession) -> tuple[int, list[EntryRecord]]:
        tournament = await get_tournament(session, tournament_id)
        if tournament is None:
            raise NotFound(ErrorKind.TOURNAMENT_NOT_FOUND, "Tournament not found.")
        if tournament.status != TournamentStatus.LIVE.value:
            raise PreconditionFailed(ErrorKind.INVALID_STATE, "Tournament not in LIVE status.")
        _, stats.resumed = await start_job(session, JOB_TYPE, tournament_id, clock())

        records = [
            EntryRecord(
                entry_id=entry.id,
                user_id=entry.user_id,
                lineup=entry.selected_lineup,
                created_at=entry.created_at or 0,
                settled=entry.settled,
                win_amount=entry.win_amount or 0,
            )
            for entry in await get_tournament_entries(session, tournament_id)
        ]
        return tournament.prize_pool or 0, records

    prize_pool, records = await run_transaction(session_factory, begin)

    scored: list[ScoredEntry] = []
    for record in records:
        try:
            entry = score_entry(record, provider)
        except Exception as e:
            stats.failed += 1
            logger.exception("Error scoring entry %s of blitz %s", record.entry_id, tournament_id)
            await _record_failure(
                session_factory, audit, tournament_id, record.entry_id, record.user_id, e, clock
            )
            continue
        if entry is None:
            continue
        scored.append(entry)

    ranked = rank_entries(scored)
    payouts = compute_payouts(len(ranked), prize_pool)
    # Prizes already paid by earlier runs are never exceeded in total
    remaining = prize_pool - sum(r.win_amount for r in records if r.settled)
    logger.info(
        "Resolving blitz %s: %d entries, prize pool %d%s",
        tournament_id,
        len(ranked),
        prize_pool,
        " (resumed)" if stats.resumed else "",
    )

    for index, entry in enumerate(ranked):
        rank = index + 1
        win_amount = min(payouts[index], max(0, remaining))

        if entry.settled:
            stats.skipped_settled += 1
            continue

        try:
            settled = await settle_entry(
                session_factory, tournament_id, entry, rank, win_amount, clock
            )
        except Exception as e:
            stats.failed += 1
            logger.exception("Error settling entry %s of blitz %s", entry.entry_id, tournament_id)
            await _record_failure(
                session_factory, audit, tournament_id, entry.entry_id, entry.user_id, e, clock
            )
            continue

        if not settled:
            stats.skipped_settled += 1
            continue
        remaining -= win_amount
        stats.resolved += 1
        if win_amount > 0:
            stats.winners += 1
            stats.total_distributed += win_amount

    if stats.failed:
        logger.warning(
            "Blitz %s left LIVE: %d entries failed, rerun to retry them",
            tournament_id,
            stats.failed,
        )
        return stats

    async def complete(session: AsyncSession) -> None:
        tournament = await get_tournament(session, tournament_id)
        if tournament is not None:
            tournament.status = TournamentStatus.COMPLETED.value
            tournament.completed_at = clock()
        job = await get_job(session, JOB_TYPE, tournament_id)
        if job is not None:
            job.status = JobStatus.COMPLETED.value
            job.updated_at = clock()

    await run_transaction(session_factory, complete)
    stats.completed = True
    logger.info(
        "Blitz %s resolved: %d winners, %d coins distributed",
        tournament_id,
        stats.winners,
        stats.total_distributed,
    )
    return stats


async def _record_failure(
    session_factory: async_sessionmaker[AsyncSession],
    audit: AuditSink,
    tournament_id: str,
    entry_id: int,
    user_id: str,
    error: Exception,
    clock: Clock,
) -> None:
    kind = error.kind if isinstance(error, MarketError) else ErrorKind.INTERNAL_ERROR
    await audit.record_error(
        ErrorContext(
            operation=OperationType.RESOLVE_BLITZ,
            kind=kind,
            message=str(error) or type(error).__name__,
            timestamp=clock(),
            user_id=user_id,
            metadata={"tournament_id": tournament_id, "entry_id": entry_id},
        )
    )

    async def mark(session: AsyncSession) -> None:
        await advance_job(session, JOB_TYPE, tournament_id, str(entry_id), clock(), failed=True)

    try:
        await run_transaction(session_factory, mark)
    except Exception:
        logger.exception("Could not record failure of entry %s on job cursor", entry_id)


def main() -> None:
    """CLI entry point for resolving a blitz tournament."""
    parser = argparse.ArgumentParser(description="Resolve a LIVE blitz tournament")
    parser.add_argument("tournament_id", help="Tournament to resolve")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    audit = DatabaseAuditSink(async_session_factory)
    result = asyncio.run(resolve_blitz(async_session_factory, args.tournament_id, audit))
    print(
        f"Resolved {result.resolved} entries, {result.winners} winners, "
        f"{result.total_distributed} coins distributed"
    )


if __name__ == "__main__":
    main()
