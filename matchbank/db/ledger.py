"""
Ledger primitives.

Atomic balance and stock adjustments expressed as single conditional UPDATE
statements (`SET coins = coins + :delta`), so concurrent transactions never
lose an increment to a read-modify-write race. Decrements are guarded with
`WHERE value >= :amount`; a guard miss leaves the row untouched and returns
False.

All functions must be called inside `run_transaction`. They do not refresh
ORM objects already loaded in the session.
"""

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from matchbank.models.db import AccountDB, PackDB


async def debit_coins(session: AsyncSession, user_id: str, amount: int) -> bool:
    """
    Remove `amount` coins from an account.

    Returns False if the account is missing or holds fewer than `amount`.
    """
    if amount < 0:
        raise ValueError(f"debit amount must be non-negative, got {amount}")
    result = await session.execute(
        update(AccountDB)
        .where(AccountDB.user_id == user_id, AccountDB.coins >= amount)
        .values(coins=AccountDB.coins - amount)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount) == 1  # type: ignore[attr-defined]


async def credit_account(
    session: AsyncSession,
    user_id: str,
    coins: int = 0,
    xp: int = 0,
) -> bool:
    """
    Add coins and/or xp to an account.

    Returns False if the account does not exist.
    """
    if coins < 0 or xp < 0:
        raise ValueError(f"credit must be non-negative, got coins={coins} xp={xp}")
    result = await session.execute(
        update(AccountDB)
        .where(AccountDB.user_id == user_id)
        .values(coins=AccountDB.coins + coins, xp=AccountDB.xp + xp)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount) == 1  # type: ignore[attr-defined]


async def decrement_stock(session: AsyncSession, pack_id: str, quantity: int = 1) -> bool:
    """
    Take `quantity` units out of a pack's stock.

    Returns False if the pack is missing or has insufficient stock.
    """
    result = await session.execute(
        update(PackDB)
        .where(PackDB.id == pack_id, PackDB.stock >= quantity)
        .values(stock=PackDB.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount) == 1  # type: ignore[attr-defined]
