"""
Idempotency Guard: Duplicate-Submission Suppression.

Rate-limits identical money-moving requests keyed by
(user_id, operation, target_id).

INVARIANTS:
- The check runs in its own micro-transaction BEFORE the trade transaction
- A blocked request is rejected before any ledger mutation
- Within `window_ms` of the first attempt, the Nth attempt with
  N >= max_attempts is blocked
- Once the window has elapsed the record resets to a single attempt
- A successful operation deletes its record, so the next legitimate
  request starts a fresh window

This is a race-tolerant rate limiter, not a transactional idempotency key:
concurrent identical requests contend on the same row and the version check
serializes them.
"""

import logging

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from matchbank.clock import Clock, now_ms
from matchbank.config import settings
from matchbank.db.transaction import TransactionConflictError, run_transaction
from matchbank.models.audit import DuplicateCheck
from matchbank.models.db import IdempotencyRecordDB
from matchbank.models.enums import OperationType
from matchbank.models.failure import ResourceExhausted

logger = logging.getLogger(__name__)


class IdempotencyGuard:
    """Per-key attempt counter with a sliding reset window."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = now_ms,
        window_ms: int | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self.window_ms = settings.duplicate_window_ms if window_ms is None else window_ms
        self.max_attempts = (
            settings.max_attempts_before_block if max_attempts is None else max_attempts
        )

    async def detect_duplicate(
        self,
        user_id: str,
        operation: OperationType,
        target_id: str,
    ) -> DuplicateCheck:
        """
        Register an attempt and report whether it duplicates a recent one.

        If the guard's own storage fails, the attempt is allowed and the
        failure is logged.
        """
        now = self._clock()

        async def body(session: AsyncSession) -> DuplicateCheck:
            record = await session.get(
                IdempotencyRecordDB, (user_id, operation.value, target_id)
            )

            if record is None:
                session.add(
                    IdempotencyRecordDB(
                        user_id=user_id,
                        operation=operation.value,
                        target_id=target_id,
                        attempt_count=1,
                        first_attempt_at=now,
                        last_attempt_at=now,
                        blocked=False,
                    )
                )
                return DuplicateCheck(is_duplicate=False, should_block=False)

            if now - record.first_attempt_at > self.window_ms:
                record.attempt_count = 1
                record.first_attempt_at = now
                record.last_attempt_at = now
                record.blocked = False
                return DuplicateCheck(is_duplicate=False, should_block=False)

            record.attempt_count += 1
            record.last_attempt_at = now
            record.blocked = record.attempt_count >= self.max_attempts
            return DuplicateCheck(
                is_duplicate=True,
                should_block=record.blocked,
                attempt_count=record.attempt_count,
            )

        try:
            check = await run_transaction(
                self._session_factory, body, retry_on=(StaleDataError, IntegrityError)
            )
        except (SQLAlchemyError, TransactionConflictError):
            logger.exception(
                "DUPLICATE_CHECK_FAILED",
                extra={"user_id": user_id, "operation": operation.value, "target_id": target_id},
            )
            return DuplicateCheck(is_duplicate=False, should_block=False)

        if check.is_duplicate:
            logger.warning(
                "DUPLICATE_SUBMISSION_DETECTED",
                extra={
                    "user_id": user_id,
                    "operation": operation.value,
                    "target_id": target_id,
                    "attempt_count": check.attempt_count,
                    "should_block": check.should_block,
                },
            )
        return check

    async def enforce(self, user_id: str, operation: OperationType, target_id: str) -> DuplicateCheck:
        """
        Register an attempt and reject it if it must be blocked.

        Raises:
            ResourceExhausted: If the attempt exceeds the allowed count
        """
        check = await self.detect_duplicate(user_id, operation, target_id)
        if check.should_block:
            raise ResourceExhausted(attempts=check.attempt_count, window_ms=self.window_ms)
        return check

    async def clear_tracking(self, user_id: str, operation: OperationType, target_id: str) -> None:
        """Delete the record after a successful operation."""

        async def body(session: AsyncSession) -> None:
            await session.execute(
                delete(IdempotencyRecordDB).where(
                    IdempotencyRecordDB.user_id == user_id,
                    IdempotencyRecordDB.operation == operation.value,
                    IdempotencyRecordDB.target_id == target_id,
                )
            )

        try:
            await run_transaction(self._session_factory, body)
        except (SQLAlchemyError, TransactionConflictError):
            logger.warning(
                "DUPLICATE_TRACKING_CLEAR_FAILED",
                extra={"user_id": user_id, "operation": operation.value, "target_id": target_id},
                exc_info=True,
            )
