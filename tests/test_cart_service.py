from decimal import Decimal

import pytest

from milkcart.core.exceptions import BusinessRuleError, InsufficientStockError, NotFoundError, ValidationError
from milkcart.services.cart_service import CartService
from milkcart.services.order_service import OrderService
from tests.factories import NOW, make_product, make_user, order_request


async def test_adding_same_product_merges_lines(db):
    user = await make_user(db)
    product = await make_product(db)
    service = CartService(db)

    await service.add_item(user, product.id, 1)
    cart = await service.add_item(user, product.id, 2)

    assert len(cart.items) == 1
    assert cart.items[0].quantity == 3
    assert cart.total_items == 3
    assert cart.total_amount == Decimal("180.00")


async def test_quantity_capped_by_stock(db):
    user = await make_user(db)
    product = await make_product(db, stock=2)

    with pytest.raises(InsufficientStockError):
        await CartService(db).add_item(user, product.id, 3)


async def test_quantity_limits(db):
    user = await make_user(db)
    product = await make_product(db, stock=500)
    service = CartService(db)
    cart = await service.add_item(user, product.id, 100)

    with pytest.raises(ValidationError):
        await service.add_item(user, product.id, 1)
    with pytest.raises(ValidationError):
        await service.update_item(user, cart.items[0].id, 0)


async def test_inactive_product_cannot_be_added(db):
    user = await make_user(db)
    product = await make_product(db)
    product.status = "inactive"
    await db.commit()

    with pytest.raises(BusinessRuleError):
        await CartService(db).add_item(user, product.id, 1)


async def test_update_and_remove(db):
    user = await make_user(db)
    product = await make_product(db)
    service = CartService(db)
    cart = await service.add_item(user, product.id, 1)
    item_id = cart.items[0].id

    cart = await service.update_item(user, item_id, 4)
    assert cart.items[0].quantity == 4

    cart = await service.remove_item(user, item_id)
    assert cart.items == []

    with pytest.raises(NotFoundError):
        await service.remove_item(user, item_id)


async def test_checkout_can_clear_the_cart(db):
    user = await make_user(db)
    product = await make_product(db)
    service = CartService(db)
    await service.add_item(user, product.id, 2)

    await OrderService(db).create_order(user, order_request(product.id, clear_cart=True), NOW)

    assert (await service.get_cart(user)).items == []
