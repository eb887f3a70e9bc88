"""
Stock ledger operations on products.

Every stock change is a single conditional UPDATE so concurrent
confirmations cannot oversell: the decrement only applies when the row
still holds enough stock. Product status follows stock (out_of_stock at
zero, back to active when replenished). Callers own the transaction and
roll back when a multi-line reservation fails part-way.
"""
import logging
import uuid

from sqlalchemy import select, update, case, and_
from sqlalchemy.ext.asyncio import AsyncSession

from milkcart.core.exceptions import InsufficientStockError, NotFoundError, ValidationError
from milkcart.core.timeutils import utc_now
from milkcart.models.order import Order
from milkcart.models.product import Product, ProductStatus


logger = logging.getLogger(__name__)


class StockService:
    """Atomic stock movements for the product catalogue."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def decrement_stock(self, product_id: uuid.UUID, quantity: int) -> bool:
        """Take ``quantity`` units if available. Returns False when short."""
        remaining = Product.stock - quantity
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(
                stock=remaining,
                status=case(
                    (
                        and_(remaining <= 0, Product.status == ProductStatus.ACTIVE.value),
                        ProductStatus.OUT_OF_STOCK.value,
                    ),
                    else_=Product.status,
                ),
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def increment_stock(self, product_id: uuid.UUID, quantity: int) -> None:
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(
                stock=Product.stock + quantity,
                status=case(
                    (Product.status == ProductStatus.OUT_OF_STOCK.value, ProductStatus.ACTIVE.value),
                    else_=Product.status,
                ),
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            logger.warning(f"Stock restore skipped, product {product_id} no longer exists")

    async def set_stock(self, product_id: uuid.UUID, stock: int) -> Product:
        """Admin stock edit. Status is derived from the new level."""
        if stock < 0:
            raise ValidationError("Stock cannot be negative")

        product = await self.db.get(Product, product_id)
        if not product:
            raise NotFoundError("Product not found")

        product.stock = stock
        if stock == 0 and product.status == ProductStatus.ACTIVE.value:
            product.status = ProductStatus.OUT_OF_STOCK.value
        elif stock > 0 and product.status == ProductStatus.OUT_OF_STOCK.value:
            product.status = ProductStatus.ACTIVE.value

        await self.db.flush()
        logger.info(f"Stock for {product.name} set to {stock}")
        return product

    async def get_available(self, product_id: uuid.UUID) -> tuple[str, int]:
        """Current name and stock straight from the database."""
        result = await self.db.execute(
            select(Product.name, Product.stock).where(Product.id == product_id)
        )
        row = result.one_or_none()
        if row is None:
            raise NotFoundError(f"Product {product_id} not found")
        return row.name, row.stock

    async def reserve_for_order(self, order: Order) -> None:
        """
        Decrement stock for every line of ``order``.

        Raises InsufficientStockError on the first line that cannot be
        covered; decrements already applied stay pending in the current
        transaction and the caller must roll back.
        """
        for item in order.items:
            if await self.decrement_stock(item.product_id, item.quantity):
                continue
            name, available = await self.get_available(item.product_id)
            logger.warning(
                f"Order {order.order_number}: insufficient stock for {name} "
                f"(available {available}, required {item.quantity})"
            )
            raise InsufficientStockError(name, available, item.quantity)

    async def release_for_order(self, order: Order) -> None:
        """Put every line of ``order`` back on the shelf."""
        for item in order.items:
            await self.increment_stock(item.product_id, item.quantity)
