from matchbank.db.database import get_session, get_session_factory, init_db
from matchbank.db.ledger import credit_account, debit_coins, decrement_stock
from matchbank.db.operations import (
    advance_job,
    get_account,
    get_card,
    get_gameweek,
    get_job,
    get_leaderboard,
    get_lineup,
    get_lineup_ids,
    get_listing,
    get_pack,
    get_tournament,
    get_tournament_entries,
    get_tournament_entry,
    start_job,
    upsert_leaderboard_entry,
)
from matchbank.db.transaction import TransactionConflictError, run_transaction

__all__ = [
    "TransactionConflictError",
    "advance_job",
    "credit_account",
    "debit_coins",
    "decrement_stock",
    "get_account",
    "get_card",
    "get_gameweek",
    "get_job",
    "get_leaderboard",
    "get_lineup",
    "get_lineup_ids",
    "get_listing",
    "get_pack",
    "get_session",
    "get_session_factory",
    "get_tournament",
    "get_tournament_entries",
    "get_tournament_entry",
    "init_db",
    "run_transaction",
    "start_job",
    "upsert_leaderboard_entry",
]
