import uuid

from fastapi import APIRouter, status

from milkcart.api.deps import DB, CurrentUser
from milkcart.schemas.wishlist import WishlistItemResponse, WishlistResponse
from milkcart.services.wishlist_service import WishlistService

router = APIRouter(prefix="/wishlist", tags=["Wishlist"])


def _build_wishlist_response(items) -> WishlistResponse:
    return WishlistResponse(
        items=[WishlistItemResponse.model_validate(item) for item in items],
        total=len(items),
    )


@router.get("", response_model=WishlistResponse)
async def get_wishlist(db: DB, current_user: CurrentUser):
    return _build_wishlist_response(await WishlistService(db).get_items(current_user))


@router.post("/{product_id}", response_model=WishlistResponse, status_code=status.HTTP_201_CREATED)
async def add_to_wishlist(product_id: uuid.UUID, db: DB, current_user: CurrentUser):
    """Saving a product twice keeps a single entry."""
    items = await WishlistService(db).add_item(current_user, product_id)
    return _build_wishlist_response(items)


@router.delete("/{product_id}", response_model=WishlistResponse)
async def remove_from_wishlist(product_id: uuid.UUID, db: DB, current_user: CurrentUser):
    items = await WishlistService(db).remove_item(current_user, product_id)
    return _build_wishlist_response(items)
