"""
Tests for the marketplace trade engine.

INVARIANTS:
- Buyer pays price, seller receives net_seller; the difference is the tax
- A traded card has exactly one owner afterwards and is unlocked
- A listed card is locked until its listing is sold or cancelled
- Sold and cancelled listings are terminal
- Failed operations change no balances, stock or cards
- Duplicate submissions are blocked before any ledger mutation
"""

import random

import pytest
from sqlalchemy import select

from matchbank.models.db import (
    AccountDB,
    AuditRecordDB,
    CardDB,
    ListingDB,
    PackDB,
    PlayerReferenceDB,
)
from matchbank.models.enums import AuditRecordType, ListingStatus, OperationType
from matchbank.models.failure import (
    ErrorKind,
    InternalError,
    InvalidArgument,
    NotFound,
    PermissionDenied,
    PreconditionFailed,
    ResourceExhausted,
    Unauthenticated,
)
from matchbank.services.audit import DatabaseAuditSink
from matchbank.services.idempotency import IdempotencyGuard
from matchbank.services.marketplace import MarketplaceEngine, net_seller_amount
from matchbank.services.player_pool import DatabasePlayerPool

PACK_CONTENTS = [{"scarcity": "COMMON", "count": 3}, {"scarcity": "RARE", "count": 1}]


class FailingPool:
    async def sample(self, session, n):
        raise RuntimeError("player feed unavailable")


@pytest.fixture
def audit(session_factory, clock) -> DatabaseAuditSink:
    return DatabaseAuditSink(session_factory, clock=clock)


@pytest.fixture
def market(session_factory, audit, clock) -> MarketplaceEngine:
    return MarketplaceEngine(
        session_factory,
        guard=IdempotencyGuard(session_factory, clock=clock),
        audit=audit,
        player_pool=DatabasePlayerPool(rng=random.Random(42)),
        clock=clock,
        tax_rate=0.10,
    )


@pytest.fixture
async def trading_floor(seed) -> None:
    """A seller with one card and a buyer with 500 coins."""
    await seed(
        AccountDB(user_id="seller", display_name="Sam", coins=0),
        AccountDB(user_id="buyer", display_name="Bea", coins=500),
        CardDB(
            id="card-1",
            owner_id="seller",
            scarcity="RARE",
            player_reference_id="ref-9",
            player_name="Striker",
            player_club="United",
            position="FWD",
        ),
    )


async def cards_owned_by(session_factory, owner_id: str) -> list[CardDB]:
    async with session_factory() as session:
        result = await session.execute(select(CardDB).where(CardDB.owner_id == owner_id))
        return list(result.scalars().all())


class TestNetSellerAmount:
    def test_ten_percent_tax(self) -> None:
        assert net_seller_amount(100, 0.10) == 90

    def test_rounds_down(self) -> None:
        """Fractional coins go to the house."""
        assert net_seller_amount(15, 0.10) == 13
        assert net_seller_amount(1, 0.10) == 0

    def test_zero_tax(self) -> None:
        assert net_seller_amount(77, 0.0) == 77


class TestListCard:
    async def test_creates_active_listing_and_locks_card(
        self, market, trading_floor, fetch
    ) -> None:
        result = await market.list_card("seller", "card-1", 100)

        assert result.net_seller == 90
        listing = await fetch(ListingDB, result.listing_id)
        assert listing.status == ListingStatus.ACTIVE.value
        assert listing.seller_display_name == "Sam"
        assert listing.card_snapshot["player_name"] == "Striker"
        assert (await fetch(CardDB, "card-1")).is_locked is True

    async def test_locked_card_cannot_be_listed_twice(self, market, trading_floor) -> None:
        await market.list_card("seller", "card-1", 100)

        with pytest.raises(PreconditionFailed) as exc_info:
            await market.list_card("seller", "card-1", 120)

        assert exc_info.value.kind == ErrorKind.CARD_LOCKED

    async def test_card_of_another_user(self, market, trading_floor) -> None:
        """Listing someone else's card looks like a missing card."""
        with pytest.raises(NotFound) as exc_info:
            await market.list_card("buyer", "card-1", 100)

        assert exc_info.value.kind == ErrorKind.CARD_NOT_FOUND

    @pytest.mark.parametrize("price", [0, -5, 10.5, True])
    async def test_invalid_price(self, market, trading_floor, fetch, price) -> None:
        with pytest.raises(InvalidArgument):
            await market.list_card("seller", "card-1", price)

        assert (await fetch(CardDB, "card-1")).is_locked is False

    async def test_requires_caller(self, market, trading_floor) -> None:
        with pytest.raises(Unauthenticated):
            await market.list_card(None, "card-1", 100)


class TestBuyMarketListing:
    async def test_purchase_moves_coins_and_card(
        self, market, trading_floor, session_factory, fetch
    ) -> None:
        """Buyer pays 100, seller gets 90, the card changes hands unlocked."""
        listing = await market.list_card("seller", "card-1", 100)

        result = await market.buy_market_listing("buyer", listing.listing_id)

        assert result.price == 100
        assert result.net_seller == 90
        buyer = await fetch(AccountDB, "buyer")
        seller = await fetch(AccountDB, "seller")
        assert buyer.coins == 400
        assert seller.coins == 90
        # Coins conserved minus tax
        assert 500 - (buyer.coins + seller.coins) == 10

        card = await fetch(CardDB, "card-1")
        assert card.owner_id == "buyer"
        assert card.is_locked is False
        assert await cards_owned_by(session_factory, "seller") == []

        sold = await fetch(ListingDB, listing.listing_id)
        assert sold.status == ListingStatus.SOLD.value
        assert sold.buyer_id == "buyer"
        assert sold.sold_at is not None

    async def test_net_seller_fixed_at_listing_time(
        self, market, trading_floor, session_factory, audit, clock, fetch
    ) -> None:
        """A tax change after listing does not alter the seller's proceeds."""
        listing = await market.list_card("seller", "card-1", 100)
        taxed_harder = MarketplaceEngine(
            session_factory,
            guard=IdempotencyGuard(session_factory, clock=clock),
            audit=audit,
            player_pool=DatabasePlayerPool(),
            clock=clock,
            tax_rate=0.50,
        )

        await taxed_harder.buy_market_listing("buyer", listing.listing_id)

        assert (await fetch(AccountDB, "seller")).coins == 90

    async def test_sold_listing_is_terminal(self, market, trading_floor, seed) -> None:
        await seed(AccountDB(user_id="late", coins=500))
        listing = await market.list_card("seller", "card-1", 100)
        await market.buy_market_listing("buyer", listing.listing_id)

        with pytest.raises(PreconditionFailed) as exc_info:
            await market.buy_market_listing("late", listing.listing_id)

        assert exc_info.value.kind == ErrorKind.LISTING_INACTIVE

    async def test_self_purchase_rejected(self, market, trading_floor, fetch) -> None:
        listing = await market.list_card("seller", "card-1", 100)

        with pytest.raises(PreconditionFailed) as exc_info:
            await market.buy_market_listing("seller", listing.listing_id)

        assert exc_info.value.kind == ErrorKind.SELF_PURCHASE
        assert (await fetch(CardDB, "card-1")).owner_id == "seller"

    async def test_insufficient_balance_changes_nothing(
        self, market, trading_floor, seed, fetch
    ) -> None:
        await seed(AccountDB(user_id="poor", coins=99))
        listing = await market.list_card("seller", "card-1", 100)

        with pytest.raises(PreconditionFailed) as exc_info:
            await market.buy_market_listing("poor", listing.listing_id)

        assert exc_info.value.kind == ErrorKind.INSUFFICIENT_BALANCE
        assert (await fetch(AccountDB, "poor")).coins == 99
        assert (await fetch(AccountDB, "seller")).coins == 0
        assert (await fetch(ListingDB, listing.listing_id)).status == ListingStatus.ACTIVE.value

    async def test_missing_listing(self, market, trading_floor) -> None:
        with pytest.raises(NotFound) as exc_info:
            await market.buy_market_listing("buyer", "no-such-listing")

        assert exc_info.value.kind == ErrorKind.LISTING_NOT_FOUND

    async def test_missing_card_minted_from_snapshot(
        self, market, trading_floor, session_factory, fetch
    ) -> None:
        """If the seller's card row vanished, the buyer gets one built from the listing."""
        listing = await market.list_card("seller", "card-1", 100)
        async with session_factory() as session:
            await session.delete(await session.get(CardDB, "card-1"))
            await session.commit()

        await market.buy_market_listing("buyer", listing.listing_id)

        card = await fetch(CardDB, "card-1")
        assert card.owner_id == "buyer"
        assert card.player_name == "Striker"
        assert card.position == "FWD"
        assert card.is_locked is False

    async def test_failure_records_error_and_rollback(
        self, market, audit, trading_floor, seed, session_factory
    ) -> None:
        """A failure inside the transaction is audited as an error and a rollback."""
        await seed(AccountDB(user_id="poor", coins=1))
        listing = await market.list_card("seller", "card-1", 100)

        with pytest.raises(PreconditionFailed):
            await market.buy_market_listing("poor", listing.listing_id)

        op = OperationType.BUY_MARKET_LISTING
        stats = await audit.error_stats(op)
        assert stats.errors_by_kind == {"INSUFFICIENT_BALANCE": 1}
        assert await audit.rollback_count(op) == 1

        async with session_factory() as session:
            rollback = (
                await session.execute(
                    select(AuditRecordDB).where(
                        AuditRecordDB.record_type == AuditRecordType.ROLLBACK.value
                    )
                )
            ).scalar_one()
        assert rollback.partial_state["transaction_started"] is True
        assert rollback.partial_state["balance_deducted"] is False

    async def test_duplicate_purchases_blocked(self, market, trading_floor, seed) -> None:
        """Repeating a failing purchase is blocked on the 3rd attempt."""
        await seed(AccountDB(user_id="poor", coins=1))
        listing = await market.list_card("seller", "card-1", 100)

        for _ in range(2):
            with pytest.raises(PreconditionFailed):
                await market.buy_market_listing("poor", listing.listing_id)

        with pytest.raises(ResourceExhausted):
            await market.buy_market_listing("poor", listing.listing_id)


class TestCancelListing:
    async def test_cancel_unlocks_card(self, market, trading_floor, fetch) -> None:
        listing = await market.list_card("seller", "card-1", 100)

        result = await market.cancel_listing("seller", listing.listing_id)

        assert result.card_id == "card-1"
        cancelled = await fetch(ListingDB, listing.listing_id)
        assert cancelled.status == ListingStatus.CANCELLED.value
        assert cancelled.cancelled_at is not None
        card = await fetch(CardDB, "card-1")
        assert card.is_locked is False
        assert card.owner_id == "seller"

    async def test_second_cancel_fails(self, market, trading_floor) -> None:
        """A cancelled listing cannot be cancelled again."""
        listing = await market.list_card("seller", "card-1", 100)
        await market.cancel_listing("seller", listing.listing_id)

        with pytest.raises(PreconditionFailed) as exc_info:
            await market.cancel_listing("seller", listing.listing_id)

        assert exc_info.value.kind == ErrorKind.LISTING_INACTIVE

    async def test_cancelled_listing_cannot_be_bought(self, market, trading_floor) -> None:
        listing = await market.list_card("seller", "card-1", 100)
        await market.cancel_listing("seller", listing.listing_id)

        with pytest.raises(PreconditionFailed):
            await market.buy_market_listing("buyer", listing.listing_id)

    async def test_only_seller_may_cancel(self, market, trading_floor, fetch) -> None:
        listing = await market.list_card("seller", "card-1", 100)

        with pytest.raises(PermissionDenied):
            await market.cancel_listing("buyer", listing.listing_id)

        assert (await fetch(ListingDB, listing.listing_id)).status == ListingStatus.ACTIVE.value

    async def test_relist_after_cancel(self, market, trading_floor) -> None:
        """Cancelling frees the card for a new listing."""
        first = await market.list_card("seller", "card-1", 100)
        await market.cancel_listing("seller", first.listing_id)

        second = await market.list_card("seller", "card-1", 80)

        assert second.listing_id != first.listing_id
        assert second.net_seller == 72


class TestBuyPack:
    @pytest.fixture
    async def shop(self, seed) -> None:
        """A 100-coin pack with 5 in stock, a buyer with 150 coins, three players."""
        await seed(
            AccountDB(user_id="buyer", coins=150),
            PackDB(id="starter", name="Starter", price=100, stock=5, contents=PACK_CONTENTS),
            PlayerReferenceDB(id="p1", name="Keeper", club="City", position="GK"),
            PlayerReferenceDB(id="p2", name="Back", club="City", position="DEF"),
            PlayerReferenceDB(id="p3", name="Nine", club="Town", position="FWD"),
        )

    async def test_purchase(self, market, shop, session_factory, fetch) -> None:
        """150 coins become 50, stock 5 becomes 4, and 4 cards are minted."""
        result = await market.buy_pack("buyer", "starter")

        assert (await fetch(AccountDB, "buyer")).coins == 50
        assert (await fetch(PackDB, "starter")).stock == 4

        cards = await cards_owned_by(session_factory, "buyer")
        assert len(cards) == 4
        assert sorted(c.id for c in cards) == sorted(result.card_ids)
        assert sorted(c.scarcity for c in cards) == ["COMMON", "COMMON", "COMMON", "RARE"]
        assert all(not c.is_locked for c in cards)
        assert {c.player_reference_id for c in cards} <= {"p1", "p2", "p3"}

    async def test_successful_purchases_are_not_duplicates(self, market, shop, seed) -> None:
        """Clearing tracking after success lets the user buy again at once."""
        await seed(AccountDB(user_id="whale", coins=1000))

        for _ in range(4):
            await market.buy_pack("whale", "starter")

    async def test_out_of_stock(self, market, seed, fetch) -> None:
        await seed(
            AccountDB(user_id="buyer", coins=500),
            PackDB(id="gone", price=100, stock=0, contents=PACK_CONTENTS),
        )

        with pytest.raises(PreconditionFailed) as exc_info:
            await market.buy_pack("buyer", "gone")

        assert exc_info.value.kind == ErrorKind.PACK_OUT_OF_STOCK
        assert (await fetch(AccountDB, "buyer")).coins == 500

    async def test_insufficient_balance(self, market, shop, seed, fetch) -> None:
        await seed(AccountDB(user_id="poor", coins=99))

        with pytest.raises(PreconditionFailed) as exc_info:
            await market.buy_pack("poor", "starter")

        assert exc_info.value.kind == ErrorKind.INSUFFICIENT_BALANCE
        assert (await fetch(PackDB, "starter")).stock == 5

    async def test_missing_pack(self, market, shop) -> None:
        with pytest.raises(NotFound) as exc_info:
            await market.buy_pack("buyer", "no-such-pack")

        assert exc_info.value.kind == ErrorKind.PACK_NOT_FOUND

    async def test_empty_player_pool_rolls_back(self, market, seed, session_factory, fetch) -> None:
        """Without players nothing is charged and nothing is minted."""
        await seed(
            AccountDB(user_id="buyer", coins=150),
            PackDB(id="starter", price=100, stock=5, contents=PACK_CONTENTS),
        )

        with pytest.raises(PreconditionFailed) as exc_info:
            await market.buy_pack("buyer", "starter")

        assert exc_info.value.kind == ErrorKind.PLAYER_POOL_EMPTY
        assert (await fetch(AccountDB, "buyer")).coins == 150
        assert (await fetch(PackDB, "starter")).stock == 5
        assert await cards_owned_by(session_factory, "buyer") == []

    async def test_unexpected_error_wrapped_and_audited(
        self, shop, session_factory, audit, clock, fetch
    ) -> None:
        """An unclassified failure surfaces as InternalError and leaves the ledger intact."""
        market = MarketplaceEngine(
            session_factory,
            guard=IdempotencyGuard(session_factory, clock=clock),
            audit=audit,
            player_pool=FailingPool(),
            clock=clock,
        )

        with pytest.raises(InternalError) as exc_info:
            await market.buy_pack("buyer", "starter")

        assert exc_info.value.kind == ErrorKind.INTERNAL_ERROR
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert (await fetch(AccountDB, "buyer")).coins == 150
        assert (await fetch(PackDB, "starter")).stock == 5

        stats = await audit.error_stats(OperationType.BUY_PACK)
        assert stats.critical_errors == 1
        assert await audit.rollback_count(OperationType.BUY_PACK) == 1

    async def test_requires_caller(self, market, shop) -> None:
        with pytest.raises(Unauthenticated):
            await market.buy_pack("", "starter")
