"""
Marketplace Trade Engine: Listings, Purchases and Packs.

Each operation is ONE atomic transaction against the store. The engine owns
the listing and card-ownership invariants:

- A card is owned by exactly one account and is never duplicated
- A card is locked for the whole ACTIVE lifetime of its listing
- A listing is terminal once SOLD or CANCELLED
- The seller receives `net_seller`, computed once at listing time with the
  tax rate in force then; a sale never recomputes it
- Balances and pack stock never go negative

Money-moving purchases (buy_market_listing, buy_pack) pass the idempotency
guard before their transaction opens. Every failure is reported to the audit
sink; failures raised after the transaction started also produce a rollback
record describing the writes the aborted attempt had staged.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from decimal import ROUND_FLOOR, Decimal
from typing import Any, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchbank.clock import Clock, now_ms
from matchbank.config import settings
from matchbank.db.ledger import credit_account, debit_coins, decrement_stock
from matchbank.db.operations import get_account, get_card, get_listing, get_pack
from matchbank.db.transaction import run_transaction
from matchbank.models.audit import ErrorContext, PartialState, RollbackLog
from matchbank.models.db import CardDB, ListingDB, new_id
from matchbank.models.enums import CardScarcity, ListingStatus, OperationType
from matchbank.models.failure import (
    ErrorKind,
    InternalError,
    InvalidArgument,
    MarketError,
    NotFound,
    PermissionDenied,
    PreconditionFailed,
    Unauthenticated,
)
from matchbank.services.audit import AuditSink
from matchbank.services.idempotency import IdempotencyGuard
from matchbank.services.player_pool import PlayerPool

logger = logging.getLogger(__name__)

T = TypeVar("T")


def net_seller_amount(price: int, tax_rate: float) -> int:
    """floor(price × (1 − tax_rate)), computed exactly."""
    net = Decimal(price) * (Decimal(1) - Decimal(str(tax_rate)))
    return int(net.to_integral_value(rounding=ROUND_FLOOR))


@dataclass(frozen=True, slots=True)
class ListCardResult:
    listing_id: str
    card_id: str
    price: int
    net_seller: int


@dataclass(frozen=True, slots=True)
class PurchaseResult:
    listing_id: str
    card_id: str
    seller_id: str
    price: int
    net_seller: int


@dataclass(frozen=True, slots=True)
class CancelResult:
    listing_id: str
    card_id: str


@dataclass(frozen=True, slots=True)
class PackPurchaseResult:
    pack_id: str
    price: int
    card_ids: list[str] = field(default_factory=list)


class MarketplaceEngine:
    """Executes marketplace operations for authenticated callers."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        guard: IdempotencyGuard,
        audit: AuditSink,
        player_pool: PlayerPool,
        clock: Clock = now_ms,
        tax_rate: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.guard = guard
        self.audit = audit
        self.player_pool = player_pool
        self._clock = clock
        self.tax_rate = settings.market_tax_rate if tax_rate is None else tax_rate

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def list_card(self, seller_id: str | None, card_id: str, price: int) -> ListCardResult:
        """
        Put an unlocked card on the market.

        Raises:
            Unauthenticated: No caller identity
            InvalidArgument: Price is not a positive integer
            NotFound: Card absent or not owned by the seller
            PreconditionFailed: Card already locked
        """
        partial = PartialState()
        now = self._clock()

        async def body(session: AsyncSession) -> ListCardResult:
            partial.reset()
            partial.transaction_started = True

            card = await get_card(session, card_id)
            if card is None or card.owner_id != seller_id:
                raise NotFound(ErrorKind.CARD_NOT_FOUND, "Card not found.")
            if card.is_locked:
                raise PreconditionFailed(ErrorKind.CARD_LOCKED, "Card is already locked.")

            seller = await get_account(session, seller_id)
            if seller is None:
                raise NotFound(ErrorKind.ACCOUNT_NOT_FOUND, "Seller profile not found.")

            card.is_locked = True
            partial.card_locked = True

            listing = ListingDB(
                id=new_id(),
                card_id=card.id,
                seller_id=seller.user_id,
                seller_display_name=seller.display_name,
                card_snapshot=card.snapshot(),
                price=price,
                net_seller=net_seller_amount(price, self.tax_rate),
                status=ListingStatus.ACTIVE.value,
                created_at=now,
            )
            session.add(listing)
            partial.listing_created = True
            await session.flush()

            return ListCardResult(
                listing_id=listing.id,
                card_id=card.id,
                price=listing.price,
                net_seller=listing.net_seller,
            )

        def validate() -> None:
            if isinstance(price, bool) or not isinstance(price, int) or price <= 0:
                raise InvalidArgument("Price must be a positive integer.", detail=f"price={price!r}")

        result = await self._execute(
            OperationType.LIST_CARD,
            seller_id,
            card_id,
            body,
            partial,
            metadata={"card_id": card_id, "price": price},
            validate=validate,
        )
        logger.info(
            "CARD_LISTED",
            extra={"seller_id": seller_id, "listing_id": result.listing_id, "price": result.price},
        )
        return result

    async def buy_market_listing(self, buyer_id: str | None, listing_id: str) -> PurchaseResult:
        """
        Buy an active listing.

        Buyer pays `price`, seller receives the stored `net_seller`, the
        listing becomes SOLD and the card moves to the buyer unlocked.

        Raises:
            Unauthenticated: No caller identity
            ResourceExhausted: Duplicate submissions blocked
            NotFound: Listing or buyer profile absent
            PreconditionFailed: Listing inactive, self-purchase, or
                insufficient balance
        """
        partial = PartialState()
        now = self._clock()

        async def body(session: AsyncSession) -> PurchaseResult:
            partial.reset()
            partial.transaction_started = True

            listing = await get_listing(session, listing_id)
            if listing is None:
                raise NotFound(ErrorKind.LISTING_NOT_FOUND, "Listing not found.")
            if listing.status != ListingStatus.ACTIVE.value:
                raise PreconditionFailed(ErrorKind.LISTING_INACTIVE, "Listing is no longer active.")
            if listing.seller_id == buyer_id:
                raise PreconditionFailed(
                    ErrorKind.SELF_PURCHASE, "You cannot buy your own listing."
                )

            buyer = await get_account(session, buyer_id)
            if buyer is None:
                raise NotFound(ErrorKind.ACCOUNT_NOT_FOUND, "Buyer profile not found.")
            if buyer.coins < listing.price:
                raise PreconditionFailed(ErrorKind.INSUFFICIENT_BALANCE, "Insufficient coins.")

            if not await debit_coins(session, buyer_id, listing.price):
                raise PreconditionFailed(ErrorKind.INSUFFICIENT_BALANCE, "Insufficient coins.")
            partial.balance_deducted = True

            if not await credit_account(session, listing.seller_id, coins=listing.net_seller):
                raise NotFound(ErrorKind.ACCOUNT_NOT_FOUND, "Seller profile not found.")
            partial.balance_credited = True

            listing.status = ListingStatus.SOLD.value
            listing.buyer_id = buyer_id
            listing.sold_at = now
            partial.listing_updated = True

            await self._transfer_card(session, listing, buyer_id)
            partial.card_transferred = True
            await session.flush()

            return PurchaseResult(
                listing_id=listing.id,
                card_id=listing.card_id,
                seller_id=listing.seller_id,
                price=listing.price,
                net_seller=listing.net_seller,
            )

        result = await self._execute(
            OperationType.BUY_MARKET_LISTING,
            buyer_id,
            listing_id,
            body,
            partial,
            metadata={"listing_id": listing_id},
            guarded=True,
        )
        logger.info(
            "LISTING_SOLD",
            extra={
                "buyer_id": buyer_id,
                "seller_id": result.seller_id,
                "listing_id": result.listing_id,
                "price": result.price,
                "net_seller": result.net_seller,
            },
        )
        return result

    async def cancel_listing(self, seller_id: str | None, listing_id: str) -> CancelResult:
        """
        Withdraw an active listing and unlock its card.

        Raises:
            Unauthenticated: No caller identity
            NotFound: Listing absent
            PermissionDenied: Caller is not the seller
            PreconditionFailed: Listing is not ACTIVE
        """
        partial = PartialState()
        now = self._clock()

        async def body(session: AsyncSession) -> CancelResult:
            partial.reset()
            partial.transaction_started = True

            listing = await get_listing(session, listing_id)
            if listing is None:
                raise NotFound(ErrorKind.LISTING_NOT_FOUND, "Listing not found.")
            if listing.seller_id != seller_id:
                raise PermissionDenied("Only the seller can cancel this listing.")
            if listing.status != ListingStatus.ACTIVE.value:
                raise PreconditionFailed(ErrorKind.LISTING_INACTIVE, "Listing is no longer active.")

            card = await get_card(session, listing.card_id)
            if card is not None and card.owner_id == seller_id:
                card.is_locked = False
                partial.card_unlocked = True

            listing.status = ListingStatus.CANCELLED.value
            listing.cancelled_at = now
            partial.listing_cancelled = True
            await session.flush()

            return CancelResult(listing_id=listing.id, card_id=listing.card_id)

        result = await self._execute(
            OperationType.CANCEL_LISTING,
            seller_id,
            listing_id,
            body,
            partial,
            metadata={"listing_id": listing_id},
        )
        logger.info("LISTING_CANCELLED", extra={"seller_id": seller_id, "listing_id": listing_id})
        return result

    async def buy_pack(self, user_id: str | None, pack_id: str) -> PackPurchaseResult:
        """
        Buy one pack from the primary market and mint its cards.

        For every {scarcity, count} entry, `count` players are drawn with
        replacement from the player pool and minted as unlocked cards owned
        by the buyer.

        Raises:
            Unauthenticated: No caller identity
            ResourceExhausted: Duplicate submissions blocked
            NotFound: Pack or buyer profile absent
            PreconditionFailed: Out of stock, insufficient balance, or no
                players available
        """
        partial = PartialState()

        async def body(session: AsyncSession) -> PackPurchaseResult:
            partial.reset()
            partial.transaction_started = True

            pack = await get_pack(session, pack_id)
            if pack is None:
                raise NotFound(ErrorKind.PACK_NOT_FOUND, "Pack not found.")
            if pack.stock <= 0:
                raise PreconditionFailed(ErrorKind.PACK_OUT_OF_STOCK, "Pack is out of stock.")

            buyer = await get_account(session, user_id)
            if buyer is None:
                raise NotFound(ErrorKind.ACCOUNT_NOT_FOUND, "Buyer profile not found.")
            if buyer.coins < pack.price:
                raise PreconditionFailed(ErrorKind.INSUFFICIENT_BALANCE, "Insufficient coins.")

            if not await debit_coins(session, user_id, pack.price):
                raise PreconditionFailed(ErrorKind.INSUFFICIENT_BALANCE, "Insufficient coins.")
            partial.balance_deducted = True

            if not await decrement_stock(session, pack_id):
                raise PreconditionFailed(ErrorKind.PACK_OUT_OF_STOCK, "Pack is out of stock.")
            partial.stock_decremented = True

            contents = _parse_contents(pack.contents)
            total = sum(count for _, count in contents)
            players = await self.player_pool.sample(session, total)
            if len(players) < total:
                raise PreconditionFailed(
                    ErrorKind.PLAYER_POOL_EMPTY, "No players available for this pack."
                )

            card_ids: list[str] = []
            draws = iter(players)
            for scarcity, count in contents:
                for _ in range(count):
                    player = next(draws)
                    card = CardDB(
                        id=new_id(),
                        owner_id=user_id,
                        scarcity=scarcity.value,
                        is_locked=False,
                        player_reference_id=player.id,
                        player_name=player.name,
                        player_club=player.club,
                        position=player.position.value,
                    )
                    session.add(card)
                    card_ids.append(card.id)
            partial.cards_created = bool(card_ids)
            await session.flush()

            return PackPurchaseResult(pack_id=pack.id, price=pack.price, card_ids=card_ids)

        result = await self._execute(
            OperationType.BUY_PACK,
            user_id,
            pack_id,
            body,
            partial,
            metadata={"pack_id": pack_id},
            guarded=True,
        )
        logger.info(
            "PACK_PURCHASED",
            extra={"user_id": user_id, "pack_id": pack_id, "cards_minted": len(result.card_ids)},
        )
        return result

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _transfer_card(self, session: AsyncSession, listing: ListingDB, buyer_id: str) -> None:
        card = await get_card(session, listing.card_id)

        if card is None:
            # Seller's copy vanished; mint the buyer's from the listing snapshot
            snapshot = listing.card_snapshot or {}
            session.add(
                CardDB(
                    id=listing.card_id,
                    owner_id=buyer_id,
                    scarcity=snapshot.get("scarcity", CardScarcity.COMMON.value),
                    is_locked=False,
                    player_reference_id=snapshot.get("player_reference_id", ""),
                    player_name=snapshot.get("player_name", ""),
                    player_club=snapshot.get("player_club", ""),
                    position=snapshot.get("position", "MID"),
                )
            )
            return

        if card.owner_id != listing.seller_id:
            raise InternalError(
                "Listed card is no longer owned by the seller.",
                detail=f"card={card.id} owner={card.owner_id} seller={listing.seller_id}",
            )

        card.owner_id = buyer_id
        card.is_locked = False

    async def _execute(
        self,
        operation: OperationType,
        user_id: str | None,
        target_id: str,
        body: Callable[[AsyncSession], Awaitable[T]],
        partial: PartialState,
        metadata: dict[str, Any],
        guarded: bool = False,
        validate: Callable[[], None] | None = None,
    ) -> T:
        try:
            if not user_id:
                raise Unauthenticated()
            if validate is not None:
                validate()
            if guarded:
                await self.guard.enforce(user_id, operation, target_id)
            result = await run_transaction(self._session_factory, body)
        except MarketError as e:
            await self._report(operation, user_id, e, partial, metadata)
            raise
        except Exception as e:
            error = InternalError(detail=type(e).__name__)
            logger.exception(
                "MARKETPLACE_INTERNAL_ERROR",
                extra={"operation": operation.value, "user_id": user_id},
            )
            await self._report(operation, user_id, error, partial, metadata)
            raise error from e

        if guarded:
            await self.guard.clear_tracking(user_id, operation, target_id)
        return result

    async def _report(
        self,
        operation: OperationType,
        user_id: str | None,
        error: MarketError,
        partial: PartialState,
        metadata: dict[str, Any],
    ) -> None:
        now = self._clock()
        await self.audit.record_error(
            ErrorContext(
                operation=operation,
                kind=error.kind,
                message=error.message,
                timestamp=now,
                user_id=user_id,
                metadata={**metadata, "code": error.code.value, "detail": error.detail},
            )
        )
        if partial.transaction_started:
            await self.audit.record_rollback(
                RollbackLog(
                    operation=operation,
                    user_id=user_id,
                    reason=error.message,
                    kind=error.kind,
                    timestamp=now,
                    partial_state=partial.flags(),
                    metadata=metadata,
                )
            )


def _parse_contents(contents: list[dict[str, Any]] | None) -> list[tuple[CardScarcity, int]]:
    parsed: list[tuple[CardScarcity, int]] = []
    for entry in contents or []:
        try:
            scarcity = CardScarcity(entry["scarcity"])
            count = int(entry["count"])
        except (KeyError, TypeError, ValueError) as e:
            raise InternalError("Pack contents are malformed.", detail=repr(entry)) from e
        if count < 0:
            raise InternalError("Pack contents are malformed.", detail=repr(entry))
        parsed.append((scarcity, count))
    return parsed
