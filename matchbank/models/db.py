"""
SQLAlchemy ORM models for persistent storage.

Every monetary and stock column is a non-negative integer, enforced with CHECK
constraints. Rows that can be contended by concurrent transactions carry a
`version` column used for optimistic locking; a conflicting flush raises
StaleDataError and the transaction runner retries the whole body.

Timestamps that take part in business rules (idempotency window, tie-breaks,
alert windows) are stored as epoch milliseconds.
"""

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from matchbank.models.enums import (
    GameweekStatus,
    JobStatus,
    LineupStatus,
    ListingStatus,
    TournamentStatus,
)


def new_id() -> str:
    return uuid4().hex


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class AccountDB(Base):
    """A user's wallet. Balances change only through the ledger primitives."""

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("coins >= 0", name="ck_accounts_coins_non_negative"),
        CheckConstraint("xp >= 0", name="ck_accounts_xp_non_negative"),
    )

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(128), default="")
    coins: Mapped[int] = mapped_column(Integer, default=0)
    xp: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<AccountDB(user_id={self.user_id}, coins={self.coins})>"


class PlayerReferenceDB(Base):
    """A real-world player that cards are minted from."""

    __tablename__ = "player_references"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128))
    club: Mapped[str] = mapped_column(String(128), default="")
    position: Mapped[str] = mapped_column(String(8))
    base_value: Mapped[int] = mapped_column(Integer, default=0)


class CardDB(Base):
    """
    A collectible card owned by exactly one account.

    The player snapshot is cached on the card so scoring never needs the
    player reference table.
    """

    __tablename__ = "cards"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(128), index=True)
    scarcity: Mapped[str] = mapped_column(String(16))
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False)
    player_reference_id: Mapped[str] = mapped_column(String(64), index=True)
    player_name: Mapped[str] = mapped_column(String(128), default="")
    player_club: Mapped[str] = mapped_column(String(128), default="")
    position: Mapped[str] = mapped_column(String(8), default="MID")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def snapshot(self) -> dict[str, Any]:
        """Denormalized copy stored on listings."""
        return {
            "id": self.id,
            "scarcity": self.scarcity,
            "player_reference_id": self.player_reference_id,
            "player_name": self.player_name,
            "player_club": self.player_club,
            "position": self.position,
        }

    def __repr__(self) -> str:
        return f"<CardDB(id={self.id}, owner={self.owner_id}, locked={self.is_locked})>"


class ListingDB(Base):
    """A seller's offer of one card at a fixed price."""

    __tablename__ = "market_listings"
    __table_args__ = (
        CheckConstraint("price > 0", name="ck_listings_price_positive"),
        CheckConstraint("net_seller >= 0", name="ck_listings_net_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    card_id: Mapped[str] = mapped_column(String(64), index=True)
    seller_id: Mapped[str] = mapped_column(String(128), index=True)
    seller_display_name: Mapped[str] = mapped_column(String(128), default="")
    card_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    price: Mapped[int] = mapped_column(Integer)
    net_seller: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(16), default=ListingStatus.ACTIVE.value, index=True)
    buyer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger)
    sold_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    cancelled_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<ListingDB(id={self.id}, price={self.price}, status={self.status})>"


class PackDB(Base):
    """A primary-market pack. Stock only decreases."""

    __tablename__ = "packs"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_packs_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_packs_price_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), default="")
    price: Mapped[int] = mapped_column(Integer)
    stock: Mapped[int] = mapped_column(Integer, default=0)
    # Ordered list of {"scarcity": str, "count": int}
    contents: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)


class IdempotencyRecordDB(Base):
    """Attempt counter for one (user, operation, target) key."""

    __tablename__ = "idempotency_records"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    operation: Mapped[str] = mapped_column(String(32), primary_key=True)
    target_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    attempt_count: Mapped[int] = mapped_column(Integer, default=1)
    first_attempt_at: Mapped[int] = mapped_column(BigInteger)
    last_attempt_at: Mapped[int] = mapped_column(BigInteger)
    blocked: Mapped[bool] = mapped_column(Boolean, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class GameweekDB(Base):
    __tablename__ = "gameweeks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    number: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(16), default=GameweekStatus.SCHEDULED.value)


class LineupDB(Base):
    """A user's fantasy lineup for one gameweek."""

    __tablename__ = "lineups"
    __table_args__ = (UniqueConstraint("gameweek_id", "user_id", name="uq_lineup_gameweek_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    gameweek_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("gameweeks.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    status: Mapped[str] = mapped_column(String(16), default=LineupStatus.SAVED.value, index=True)
    captain_card_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    score_total: Mapped[int] = mapped_column(Integer, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    slots: Mapped[list["LineupSlotDB"]] = relationship(
        back_populates="lineup",
        cascade="all, delete-orphan",
        order_by="LineupSlotDB.position_slot",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<LineupDB(user={self.user_id}, gameweek={self.gameweek_id}, status={self.status})>"


class LineupSlotDB(Base):
    """
    One card placed in a lineup.

    Slots 1-11 are starters; higher slots are the bench, in priority order.
    """

    __tablename__ = "lineup_slots"
    __table_args__ = (UniqueConstraint("lineup_id", "position_slot", name="uq_lineup_slot"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lineup_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lineups.id", ondelete="CASCADE"), index=True
    )
    position_slot: Mapped[int] = mapped_column(Integer)
    card_id: Mapped[str] = mapped_column(String(64))
    player_reference_id: Mapped[str] = mapped_column(String(64))
    position: Mapped[str] = mapped_column(String(8), default="MID")
    points: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_subbed_in: Mapped[bool] = mapped_column(Boolean, default=False)

    lineup: Mapped["LineupDB"] = relationship(back_populates="slots")


class TournamentDB(Base):
    """A blitz tournament."""

    __tablename__ = "tournaments"
    __table_args__ = (CheckConstraint("prize_pool >= 0", name="ck_tournaments_pool_non_negative"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), default="")
    status: Mapped[str] = mapped_column(String(16), default=TournamentStatus.OPEN.value)
    prize_pool: Mapped[int] = mapped_column(Integer, default=0)
    entry_fee: Mapped[int] = mapped_column(Integer, default=0)
    completed_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class TournamentEntryDB(Base):
    """
    A user's 5-card blitz entry.

    `settled` flips in the same transaction that credits the prize, so a
    rerun never pays an entry twice.
    """

    __tablename__ = "tournament_entries"
    __table_args__ = (UniqueConstraint("tournament_id", "user_id", name="uq_entry_tournament_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tournaments.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    # List of {"player_reference_id": str, "position": str, ...}
    selected_lineup: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    total_score: Mapped[int] = mapped_column(Integer, default=0)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    win_amount: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[int] = mapped_column(BigInteger, default=0)
    settled: Mapped[bool] = mapped_column(Boolean, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class LeaderboardEntryDB(Base):
    """Public leaderboard row for a resolved tournament."""

    __tablename__ = "tournament_leaderboard"

    tournament_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    total_score: Mapped[int] = mapped_column(Integer)
    rank: Mapped[int] = mapped_column(Integer)
    win_amount: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[int] = mapped_column(BigInteger, default=0)


class AuditRecordDB(Base):
    """Append-only error or rollback event."""

    __tablename__ = "audit_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    record_type: Mapped[str] = mapped_column(String(16), index=True)
    operation: Mapped[str] = mapped_column(String(32), index=True)
    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    error_kind: Mapped[str] = mapped_column(String(32))
    error_message: Mapped[str] = mapped_column(Text, default="")
    partial_state: Mapped[dict[str, bool]] = mapped_column(JSON, default=dict)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    timestamp: Mapped[int] = mapped_column(BigInteger, index=True)


class RollbackCounterDB(Base):
    __tablename__ = "rollback_counters"

    operation: Mapped[str] = mapped_column(String(32), primary_key=True)
    rollback_count: Mapped[int] = mapped_column(Integer, default=0)
    last_rollback_at: Mapped[int] = mapped_column(BigInteger, default=0)


class AlertDB(Base):
    __tablename__ = "alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    severity: Mapped[str] = mapped_column(String(16), index=True)
    operation: Mapped[str] = mapped_column(String(32), index=True)
    message: Mapped[str] = mapped_column(Text)
    stats: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    latest_error: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    timestamp: Mapped[int] = mapped_column(BigInteger)


class ResolutionJobDB(Base):
    """
    Progress cursor for a batch resolution run.

    One row per (job_type, target_id); reruns reuse the row and bump
    `run_count`.
    """

    __tablename__ = "resolution_jobs"
    __table_args__ = (UniqueConstraint("job_type", "target_id", name="uq_job_type_target"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_type: Mapped[str] = mapped_column(String(32))
    target_id: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(16), default=JobStatus.RUNNING.value)
    processed: Mapped[int] = mapped_column(Integer, default=0)
    failed: Mapped[int] = mapped_column(Integer, default=0)
    last_entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    run_count: Mapped[int] = mapped_column(Integer, default=1)
    started_at: Mapped[int] = mapped_column(BigInteger)
    updated_at: Mapped[int] = mapped_column(BigInteger)
