"""
Transaction runner.

`run_transaction(factory, body)` is the only way money-moving code touches
the store. The body runs inside one database transaction on a fresh session;
it commits when the body returns and rolls back on any exception.

Optimistic-concurrency conflicts (a versioned row changed under us) abort the
attempt and the whole body runs again on a new session, so the body must not
have side effects outside the session.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from matchbank.config import settings
from matchbank.models.failure import ErrorKind, InternalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TransactionBody = Callable[[AsyncSession], Awaitable[T]]


class TransactionConflictError(InternalError):
    """Raised when a transaction keeps conflicting after every retry."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(
            message="Transaction could not be committed due to concurrent updates.",
            kind=ErrorKind.TRANSACTION_ROLLBACK,
            detail=f"gave up after {attempts} attempts",
        )


async def run_transaction(
    session_factory: async_sessionmaker[AsyncSession],
    body: TransactionBody[T],
    max_attempts: int | None = None,
    retry_on: tuple[type[Exception], ...] = (StaleDataError,),
) -> T:
    """
    Run `body` atomically, retrying on concurrency conflicts.

    Args:
        session_factory: Factory producing a new session per attempt
        body: Coroutine function receiving the transaction's session
        max_attempts: Attempts before giving up (defaults to settings)
        retry_on: Exception types treated as retryable conflicts

    Returns:
        Whatever `body` returns from the committed attempt

    Raises:
        TransactionConflictError: If every attempt conflicted
        Exception: Anything else raised by `body`, after rollback
    """
    attempts = settings.transaction_max_attempts if max_attempts is None else max_attempts

    for attempt in range(1, attempts + 1):
        try:
            async with session_factory() as session:
                async with session.begin():
                    result = await body(session)
            return result
        except retry_on as e:
            logger.warning(
                "TRANSACTION_CONFLICT",
                extra={"attempt": attempt, "max_attempts": attempts, "error": type(e).__name__},
            )

    raise TransactionConflictError(attempts)
