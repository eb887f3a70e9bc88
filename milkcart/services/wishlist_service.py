from typing import List
import uuid
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from milkcart.core.exceptions import NotFoundError
from milkcart.models.product import Product
from milkcart.models.user import User
from milkcart.models.wishlist import WishlistItem

logger = logging.getLogger(__name__)


class WishlistService:
    """Saved products. Adding the same product twice keeps one entry."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_items(self, user: User) -> List[WishlistItem]:
        stmt = (
            select(WishlistItem)
            .where(WishlistItem.user_id == user.id)
            .order_by(WishlistItem.created_at.desc())
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.unique().scalars().all())

    async def _get_item(self, user: User, product_id: uuid.UUID):
        result = await self.db.execute(
            select(WishlistItem).where(
                WishlistItem.user_id == user.id,
                WishlistItem.product_id == product_id,
            )
        )
        return result.unique().scalar_one_or_none()

    async def add_item(self, user: User, product_id: uuid.UUID) -> List[WishlistItem]:
        product = await self.db.get(Product, product_id)
        if not product:
            raise NotFoundError("Product not found")

        if await self._get_item(user, product_id) is None:
            self.db.add(
                WishlistItem(
                    user_id=user.id,
                    product_id=product_id,
                    price_when_added=product.effective_price,
                )
            )
            await self.db.commit()
            logger.info(f"{user.email} saved {product.name} to wishlist")
        return await self.get_items(user)

    async def remove_item(self, user: User, product_id: uuid.UUID) -> List[WishlistItem]:
        item = await self._get_item(user, product_id)
        if item is None:
            raise NotFoundError("Product not in wishlist")
        await self.db.delete(item)
        await self.db.commit()
        return await self.get_items(user)
