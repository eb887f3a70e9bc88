import uuid
from decimal import Decimal

import pytest

from milkcart.core.exceptions import NotFoundError
from milkcart.schemas.wishlist import WishlistItemResponse
from milkcart.services.wishlist_service import WishlistService
from tests.factories import make_product, make_user


async def test_saving_twice_keeps_one_entry(db):
    user = await make_user(db)
    product = await make_product(db)
    service = WishlistService(db)

    await service.add_item(user, product.id)
    items = await service.add_item(user, product.id)

    assert len(items) == 1
    assert items[0].product.name == "Toned Milk"
    assert items[0].price_when_added == Decimal("60.00")


async def test_unknown_product_rejected(db):
    user = await make_user(db)

    with pytest.raises(NotFoundError):
        await WishlistService(db).add_item(user, uuid.uuid4())


async def test_remove(db):
    user = await make_user(db)
    milk = await make_product(db)
    curd = await make_product(db, name="Curd", price="40.00")
    service = WishlistService(db)
    await service.add_item(user, milk.id)
    await service.add_item(user, curd.id)

    items = await service.remove_item(user, milk.id)

    assert [item.product_id for item in items] == [curd.id]
    with pytest.raises(NotFoundError, match="not in wishlist"):
        await service.remove_item(user, milk.id)


async def test_wishlists_are_per_customer(db):
    asha = await make_user(db)
    ravi = await make_user(db, email="ravi@milkcart.in", name="Ravi")
    product = await make_product(db)
    await WishlistService(db).add_item(asha, product.id)

    assert await WishlistService(db).get_items(ravi) == []


async def test_price_drop_flagged(db):
    user = await make_user(db)
    product = await make_product(db)
    items = await WishlistService(db).add_item(user, product.id)
    assert WishlistItemResponse.model_validate(items[0]).price_dropped is False

    product.discount_price = Decimal("55.00")
    await db.commit()

    items = await WishlistService(db).get_items(user)
    assert WishlistItemResponse.model_validate(items[0]).price_dropped is True
