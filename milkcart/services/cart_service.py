from typing import Optional
import uuid
import logging

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from milkcart.core.exceptions import BusinessRuleError, NotFoundError, ValidationError, InsufficientStockError
from milkcart.models.cart import Cart, CartItem, MIN_CART_QUANTITY, MAX_CART_QUANTITY
from milkcart.models.product import Product, ProductStatus
from milkcart.models.user import User

logger = logging.getLogger(__name__)


class CartService:
    """Per-user shopping cart. Prices are read live from the catalogue."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_cart(self, user: User) -> Optional[Cart]:
        stmt = (
            select(Cart)
            .where(Cart.user_id == user.id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_or_create_cart(self, user: User) -> Cart:
        cart = await self.get_cart(user)
        if cart is None:
            cart = Cart(user_id=user.id, items=[])
            self.db.add(cart)
            await self.db.flush()
        return cart

    async def _get_orderable_product(self, product_id: uuid.UUID, quantity: int) -> Product:
        product = await self.db.get(Product, product_id)
        if not product:
            raise NotFoundError("Product not found")
        if product.status == ProductStatus.INACTIVE.value:
            raise BusinessRuleError(f"{product.name} is not available")
        if product.stock < quantity:
            raise InsufficientStockError(product.name, product.stock, quantity)
        return product

    @staticmethod
    def _check_quantity(quantity: int) -> None:
        if quantity < MIN_CART_QUANTITY or quantity > MAX_CART_QUANTITY:
            raise ValidationError(
                f"Quantity must be between {MIN_CART_QUANTITY} and {MAX_CART_QUANTITY}"
            )

    async def add_item(self, user: User, product_id: uuid.UUID, quantity: int) -> Cart:
        """Add a product; an existing line for the same product gets the quantities merged."""
        cart = await self._get_or_create_cart(user)
        existing = next((item for item in cart.items if item.product_id == product_id), None)
        new_quantity = quantity + (existing.quantity if existing else 0)

        self._check_quantity(new_quantity)
        await self._get_orderable_product(product_id, new_quantity)

        if existing:
            existing.quantity = new_quantity
        else:
            cart.items.append(CartItem(product_id=product_id, quantity=quantity))

        await self.db.commit()
        return await self.get_cart(user)

    async def update_item(self, user: User, item_id: uuid.UUID, quantity: int) -> Cart:
        self._check_quantity(quantity)
        cart = await self.get_cart(user)
        item = next((item for item in cart.items if item.id == item_id), None) if cart else None
        if item is None:
            raise NotFoundError("Cart item not found")

        await self._get_orderable_product(item.product_id, quantity)
        item.quantity = quantity
        await self.db.commit()
        return await self.get_cart(user)

    async def remove_item(self, user: User, item_id: uuid.UUID) -> Cart:
        cart = await self.get_cart(user)
        item = next((item for item in cart.items if item.id == item_id), None) if cart else None
        if item is None:
            raise NotFoundError("Cart item not found")

        cart.items.remove(item)
        await self.db.commit()
        return await self.get_cart(user)

    async def clear(self, user: User) -> None:
        cart = await self.get_cart(user)
        if cart is None:
            return
        await self.db.execute(delete(CartItem).where(CartItem.cart_id == cart.id))
        await self.db.commit()
