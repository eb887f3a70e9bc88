import uuid

from fastapi import APIRouter, status

from milkcart.api.deps import DB, CurrentUser
from milkcart.schemas.cart import CartItemAdd, CartItemUpdate, CartResponse
from milkcart.services.cart_service import CartService

router = APIRouter(prefix="/cart", tags=["Cart"])


def _build_cart_response(cart) -> CartResponse:
    if cart is None:
        return CartResponse()
    return CartResponse.model_validate(cart)


@router.get("", response_model=CartResponse)
async def get_cart(db: DB, current_user: CurrentUser):
    return _build_cart_response(await CartService(db).get_cart(current_user))


@router.post("/items", response_model=CartResponse, status_code=status.HTTP_201_CREATED)
async def add_item(data: CartItemAdd, db: DB, current_user: CurrentUser):
    cart = await CartService(db).add_item(current_user, data.product_id, data.quantity)
    return _build_cart_response(cart)


@router.put("/items/{item_id}", response_model=CartResponse)
async def update_item(item_id: uuid.UUID, data: CartItemUpdate, db: DB, current_user: CurrentUser):
    cart = await CartService(db).update_item(current_user, item_id, data.quantity)
    return _build_cart_response(cart)


@router.delete("/items/{item_id}", response_model=CartResponse)
async def remove_item(item_id: uuid.UUID, db: DB, current_user: CurrentUser):
    cart = await CartService(db).remove_item(current_user, item_id)
    return _build_cart_response(cart)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def clear_cart(db: DB, current_user: CurrentUser):
    await CartService(db).clear(current_user)
