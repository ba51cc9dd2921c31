"""
Audit & Alerting Sink: Error, Rollback and Threshold Tracking.

Every failed money-moving operation is recorded here with its classified
ErrorKind. Failures that happened inside a trade transaction also produce a
rollback record carrying the partial-state flags of the aborted attempt.

INVARIANTS:
- Audit records are append-only; nothing here updates or deletes them
- Each rollback increments the per-operation rollback counter
- After every error the alert thresholds are evaluated over the last
  `alert_window_hours`:
    critical errors >= critical_alert_threshold -> CRITICAL alert
    total errors    >= error_alert_threshold    -> WARNING alert
- A failing audit write is logged and swallowed; it never masks the
  domain error being reported
"""

import logging
from typing import Any, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from matchbank.clock import Clock, now_ms
from matchbank.config import settings
from matchbank.db.transaction import TransactionConflictError, run_transaction
from matchbank.models.audit import ErrorContext, ErrorStats, RollbackLog
from matchbank.models.db import AlertDB, AuditRecordDB, RollbackCounterDB
from matchbank.models.enums import AlertSeverity, AuditRecordType, OperationType
from matchbank.models.failure import ErrorKind, is_critical

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000

_AUDIT_FAILURES = (SQLAlchemyError, TransactionConflictError)


class AuditSink(Protocol):
    """Destination for error, rollback and alert records."""

    async def record_error(self, context: ErrorContext) -> None: ...

    async def record_rollback(self, log: RollbackLog) -> None: ...

    async def error_stats(self, operation: OperationType, hours_back: int = 24) -> ErrorStats: ...

    async def rollback_count(self, operation: OperationType) -> int: ...


class DatabaseAuditSink:
    """AuditSink backed by the append-only audit tables."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = now_ms,
        error_threshold: int | None = None,
        critical_threshold: int | None = None,
        window_hours: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self.error_threshold = (
            settings.error_alert_threshold if error_threshold is None else error_threshold
        )
        self.critical_threshold = (
            settings.critical_alert_threshold if critical_threshold is None else critical_threshold
        )
        self.window_hours = settings.alert_window_hours if window_hours is None else window_hours

    async def record_error(self, context: ErrorContext) -> None:
        """Persist an error, log it, then evaluate alert thresholds."""
        log_extra = {
            "operation": context.operation.value,
            "error_kind": context.kind.value,
            "user_id": context.user_id,
            "error_message": context.message,
        }

        async def body(session: AsyncSession) -> None:
            session.add(
                AuditRecordDB(
                    record_type=AuditRecordType.ERROR.value,
                    operation=context.operation.value,
                    user_id=context.user_id,
                    error_kind=context.kind.value,
                    error_message=context.message,
                    partial_state={},
                    details=context.metadata,
                    timestamp=context.timestamp,
                )
            )

        try:
            await run_transaction(self._session_factory, body)
        except _AUDIT_FAILURES:
            logger.exception("AUDIT_ERROR_WRITE_FAILED", extra=log_extra)
            return

        if is_critical(context.kind):
            logger.error("CRITICAL_MARKETPLACE_ERROR", extra=log_extra)
        else:
            logger.warning("MARKETPLACE_ERROR", extra=log_extra)

        await self._check_thresholds(context)

    async def record_rollback(self, log: RollbackLog) -> None:
        """Persist a rollback record and bump the operation's counter."""
        operation = log.operation.value

        async def body(session: AsyncSession) -> None:
            session.add(
                AuditRecordDB(
                    record_type=AuditRecordType.ROLLBACK.value,
                    operation=operation,
                    user_id=log.user_id,
                    error_kind=log.kind.value,
                    error_message=log.reason,
                    partial_state=log.partial_state,
                    details=log.metadata,
                    timestamp=log.timestamp,
                )
            )
            result = await session.execute(
                update(RollbackCounterDB)
                .where(RollbackCounterDB.operation == operation)
                .values(
                    rollback_count=RollbackCounterDB.rollback_count + 1,
                    last_rollback_at=log.timestamp,
                )
                .execution_options(synchronize_session=False)
            )
            if int(result.rowcount) == 0:  # type: ignore[attr-defined]
                session.add(
                    RollbackCounterDB(
                        operation=operation,
                        rollback_count=1,
                        last_rollback_at=log.timestamp,
                    )
                )

        try:
            await run_transaction(
                self._session_factory, body, retry_on=(StaleDataError, IntegrityError)
            )
        except _AUDIT_FAILURES:
            logger.exception("AUDIT_ROLLBACK_WRITE_FAILED", extra={"operation": operation})
            return

        logger.warning(
            "TRANSACTION_ROLLBACK",
            extra={
                "operation": operation,
                "user_id": log.user_id,
                "error_kind": log.kind.value,
                "partial_state": log.partial_state,
            },
        )

    async def error_stats(self, operation: OperationType, hours_back: int = 24) -> ErrorStats:
        """Count errors for an operation recorded in the last `hours_back` hours."""
        since = self._clock() - hours_back * HOUR_MS

        async with self._session_factory() as session:
            result = await session.execute(
                select(AuditRecordDB.error_kind).where(
                    AuditRecordDB.record_type == AuditRecordType.ERROR.value,
                    AuditRecordDB.operation == operation.value,
                    AuditRecordDB.timestamp >= since,
                )
            )
            kinds = list(result.scalars().all())

        stats = ErrorStats(total_errors=len(kinds))
        for kind in kinds:
            stats.errors_by_kind[kind] = stats.errors_by_kind.get(kind, 0) + 1
            if is_critical(ErrorKind(kind)):
                stats.critical_errors += 1
        return stats

    async def rollback_count(self, operation: OperationType) -> int:
        async with self._session_factory() as session:
            counter = await session.get(RollbackCounterDB, operation.value)
            return counter.rollback_count if counter else 0

    async def alerts(self, operation: OperationType, limit: int = 20) -> list[AlertDB]:
        """Most recent alerts for an operation, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(AlertDB)
                .where(AlertDB.operation == operation.value)
                .order_by(AlertDB.timestamp.desc(), AlertDB.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def _check_thresholds(self, context: ErrorContext) -> None:
        try:
            stats = await self.error_stats(context.operation, hours_back=self.window_hours)
        except SQLAlchemyError:
            logger.exception("ALERT_THRESHOLD_CHECK_FAILED")
            return

        if stats.critical_errors >= self.critical_threshold:
            severity = AlertSeverity.CRITICAL
            message = f"Critical error threshold exceeded for {context.operation.value}"
        elif stats.total_errors >= self.error_threshold:
            severity = AlertSeverity.WARNING
            message = f"Error threshold exceeded for {context.operation.value}"
        else:
            return

        await self._trigger_alert(severity, message, context, stats)

    async def _trigger_alert(
        self,
        severity: AlertSeverity,
        message: str,
        context: ErrorContext,
        stats: ErrorStats,
    ) -> None:
        latest: dict[str, Any] = context.to_dict()

        async def body(session: AsyncSession) -> None:
            session.add(
                AlertDB(
                    severity=severity.value,
                    operation=context.operation.value,
                    message=message,
                    stats=stats.to_dict(),
                    latest_error=latest,
                    timestamp=self._clock(),
                )
            )

        try:
            await run_transaction(self._session_factory, body)
        except _AUDIT_FAILURES:
            logger.exception("ALERT_WRITE_FAILED", extra={"operation": context.operation.value})
            return

        log_extra = {
            "severity": severity.value,
            "operation": context.operation.value,
            "alert_message": message,
            "total_errors": stats.total_errors,
            "critical_errors": stats.critical_errors,
        }
        if severity is AlertSeverity.CRITICAL:
            logger.error("MARKETPLACE_ALERT", extra=log_extra)
        else:
            logger.warning("MARKETPLACE_ALERT", extra=log_extra)
