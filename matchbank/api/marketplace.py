"""
Marketplace API endpoints.

Listing, buying and cancelling cards, and buying packs. Every endpoint
returns an `ApiResponse` envelope; failures are converted by the
application's MarketError handler.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from matchbank.api.dependencies import CallerId, get_marketplace_engine
from matchbank.models.failure import ApiResponse
from matchbank.services.marketplace import MarketplaceEngine

router = APIRouter(prefix="/marketplace", tags=["marketplace"])

Engine = Annotated[MarketplaceEngine, Depends(get_marketplace_engine)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ListCardRequest(CamelModel):
    """Request body for putting a card on the market."""

    card_id: str = Field(..., min_length=1, description="Card to list")
    price: int = Field(..., strict=True, description="Asking price in coins, must be positive")


class ListingCreated(CamelModel):
    listing_id: str
    card_id: str
    price: int
    net_seller: int


class ListingSold(CamelModel):
    listing_id: str
    card_id: str
    seller_id: str
    price: int
    net_seller: int


class ListingCancelled(CamelModel):
    listing_id: str
    card_id: str


class PackBought(CamelModel):
    pack_id: str
    price: int
    card_ids: list[str] = Field(default_factory=list)


@router.post("/listings", response_model=ApiResponse[ListingCreated])
async def list_card(
    request: ListCardRequest,
    caller_id: CallerId,
    engine: Engine,
) -> ApiResponse[ListingCreated]:
    """Lock an owned card and create an ACTIVE listing for it."""
    result = await engine.list_card(caller_id, request.card_id, request.price)
    return ApiResponse[ListingCreated].success(
        ListingCreated(
            listing_id=result.listing_id,
            card_id=result.card_id,
            price=result.price,
            net_seller=result.net_seller,
        )
    )


@router.post("/listings/{listing_id}/buy", response_model=ApiResponse[ListingSold])
async def buy_listing(
    listing_id: str,
    caller_id: CallerId,
    engine: Engine,
) -> ApiResponse[ListingSold]:
    """Buy an active listing at its price."""
    result = await engine.buy_market_listing(caller_id, listing_id)
    return ApiResponse[ListingSold].success(
        ListingSold(
            listing_id=result.listing_id,
            card_id=result.card_id,
            seller_id=result.seller_id,
            price=result.price,
            net_seller=result.net_seller,
        )
    )


@router.post("/listings/{listing_id}/cancel", response_model=ApiResponse[ListingCancelled])
async def cancel_listing(
    listing_id: str,
    caller_id: CallerId,
    engine: Engine,
) -> ApiResponse[ListingCancelled]:
    """Withdraw the caller's own active listing and unlock the card."""
    result = await engine.cancel_listing(caller_id, listing_id)
    return ApiResponse[ListingCancelled].success(
        ListingCancelled(listing_id=result.listing_id, card_id=result.card_id)
    )


@router.post("/packs/{pack_id}/buy", response_model=ApiResponse[PackBought])
async def buy_pack(
    pack_id: str,
    caller_id: CallerId,
    engine: Engine,
) -> ApiResponse[PackBought]:
    """Buy one pack and receive its freshly minted cards."""
    result = await engine.buy_pack(caller_id, pack_id)
    return ApiResponse[PackBought].success(
        PackBought(pack_id=result.pack_id, price=result.price, card_ids=list(result.card_ids))
    )
