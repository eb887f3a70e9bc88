from typing import List, Optional, Tuple
import uuid
import logging

from sqlalchemy import select, func, or_, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from milkcart.core.exceptions import ConflictError, NotFoundError, ValidationError
from milkcart.models.product import Category, Product, ProductStatus
from milkcart.schemas.product import CategoryCreate, CategoryUpdate, ProductCreate, ProductUpdate
from milkcart.services.stock_service import StockService

logger = logging.getLogger(__name__)


class ProductService:
    """Service for managing the catalogue."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== CATEGORY METHODS ====================

    async def get_categories(self, include_inactive: bool = False) -> List[Category]:
        stmt = select(Category).order_by(Category.name)
        if not include_inactive:
            stmt = stmt.where(Category.is_active == True)  # noqa: E712
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_category_by_id(self, category_id: uuid.UUID) -> Optional[Category]:
        return await self.db.get(Category, category_id)

    async def create_category(self, data: CategoryCreate) -> Category:
        category = Category(**data.model_dump())
        self.db.add(category)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(f"Category '{data.name}' already exists")
        await self.db.refresh(category)
        return category

    async def update_category(self, category_id: uuid.UUID, data: CategoryUpdate) -> Category:
        category = await self.get_category_by_id(category_id)
        if not category:
            raise NotFoundError("Category not found")

        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(category, field, value)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("Category name already exists")
        await self.db.refresh(category)
        return category

    # ==================== PRODUCT METHODS ====================

    async def get_products(
        self,
        category_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
        status: Optional[str] = None,
        public_only: bool = True,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Product], int]:
        """Storefront listing hides inactive products; admins see everything."""
        filters = []
        if public_only:
            filters.append(Product.status != ProductStatus.INACTIVE.value)
        elif status:
            filters.append(Product.status == status)
        if category_id:
            filters.append(Product.category_id == category_id)
        if search:
            pattern = f"%{search.strip()}%"
            filters.append(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))

        count_stmt = select(func.count(Product.id))
        stmt = select(Product)
        if filters:
            count_stmt = count_stmt.where(and_(*filters))
            stmt = stmt.where(and_(*filters))

        total = (await self.db.execute(count_stmt)).scalar() or 0
        stmt = stmt.order_by(Product.name).offset(skip).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    async def get_product_by_id(self, product_id: uuid.UUID) -> Optional[Product]:
        stmt = (
            select(Product)
            .where(Product.id == product_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _check_category(self, category_id: Optional[uuid.UUID]) -> None:
        if category_id and not await self.get_category_by_id(category_id):
            raise NotFoundError("Category not found")

    async def create_product(self, data: ProductCreate) -> Product:
        await self._check_category(data.category_id)
        if data.discount_price is not None and data.discount_price > data.price:
            raise ValidationError("Discount price cannot exceed the price")

        product = Product(**data.model_dump())
        product.status = (
            ProductStatus.ACTIVE.value if product.stock > 0 else ProductStatus.OUT_OF_STOCK.value
        )
        self.db.add(product)
        await self.db.commit()

        logger.info(f"Product created: {product.name} (stock {product.stock})")
        return await self.get_product_by_id(product.id)

    async def update_product(self, product_id: uuid.UUID, data: ProductUpdate) -> Product:
        product = await self.get_product_by_id(product_id)
        if not product:
            raise NotFoundError("Product not found")

        update_data = data.model_dump(exclude_unset=True)
        if "category_id" in update_data:
            await self._check_category(update_data["category_id"])
        if "status" in update_data and update_data["status"] is not None:
            update_data["status"] = update_data["status"].value

        for field, value in update_data.items():
            setattr(product, field, value)

        if product.discount_price is not None and product.discount_price > product.price:
            raise ValidationError("Discount price cannot exceed the price")

        await self.db.commit()
        return await self.get_product_by_id(product_id)

    async def set_stock(self, product_id: uuid.UUID, stock: int) -> Product:
        await StockService(self.db).set_stock(product_id, stock)
        await self.db.commit()
        return await self.get_product_by_id(product_id)

    async def deactivate_product(self, product_id: uuid.UUID) -> Product:
        """Soft delete: past orders keep referencing the product."""
        product = await self.get_product_by_id(product_id)
        if not product:
            raise NotFoundError("Product not found")

        product.status = ProductStatus.INACTIVE.value
        await self.db.commit()

        logger.info(f"Product deactivated: {product.name}")
        return await self.get_product_by_id(product_id)
