"""Test data builders shared by the test modules."""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select

from milkcart.core.security import get_password_hash
from milkcart.models import (
    DeliveryBoy,
    DeliveryBoyShift,
    DeliveryBoyStatus,
    Product,
    SubscriptionPlan,
    User,
    UserRole,
)
from milkcart.schemas.order import OrderCreate, OrderItemCreate, ShippingAddress
from milkcart.schemas.subscription import SubscriptionCreate

IST = ZoneInfo("Asia/Kolkata")
PASSWORD = "Password123"


def ist(year: int, month: int, day: int, hour: int = 0, minute: int = 0, second: int = 0) -> datetime:
    """Aware instant for a local Indian wall-clock time."""
    return datetime(year, month, day, hour, minute, second, tzinfo=IST)


# 10:00 IST on a Tuesday; tomorrow morning is bookable
NOW = ist(2026, 3, 10, 10, 0)
TOMORROW = date(2026, 3, 11)


async def make_user(
    db,
    email: str = "customer@example.com",
    name: str = "Asha Customer",
    role: str = UserRole.USER.value,
    verified: bool = True,
) -> User:
    user = User(
        name=name,
        email=email,
        phone="9876543210",
        hashed_password=get_password_hash(PASSWORD),
        role=role,
        is_active=True,
        is_email_verified=verified,
    )
    db.add(user)
    await db.commit()
    return user


async def make_delivery_boy(
    db,
    email: str = "ravi@example.com",
    phone: str = "9123456780",
    name: str = "Ravi",
    shift: str = DeliveryBoyShift.BOTH.value,
    status: str = DeliveryBoyStatus.APPROVED.value,
) -> DeliveryBoy:
    delivery_boy = DeliveryBoy(
        name=name,
        email=email,
        phone=phone,
        hashed_password=get_password_hash(PASSWORD),
        shift=shift,
        status=status,
        is_active=True,
    )
    db.add(delivery_boy)
    await db.commit()
    return delivery_boy


async def make_product(
    db,
    name: str = "Toned Milk",
    price: str = "60.00",
    stock: int = 5,
) -> Product:
    product = Product(name=name, price=Decimal(price), unit="1 L", stock=stock)
    db.add(product)
    await db.commit()
    return product


async def make_plan(
    db,
    milk_type: str = "cow",
    volume: str = "1L",
    duration_days: int = 30,
    price: str = "1800.00",
    discount_percent: int = 0,
    is_active: bool = True,
) -> SubscriptionPlan:
    plan = SubscriptionPlan(
        name=f"{milk_type.capitalize()} Milk {volume} / {duration_days} days",
        milk_type=milk_type,
        volume=volume,
        duration_days=duration_days,
        price=Decimal(price),
        daily_price=SubscriptionPlan.compute_daily_price(Decimal(price), duration_days),
        discount_percent=discount_percent,
        features=["Free delivery"],
        is_active=is_active,
    )
    db.add(plan)
    await db.commit()
    return plan


def _address() -> ShippingAddress:
    return ShippingAddress(
        name="Asha Customer",
        phone="9876543210",
        street="12 MG Road",
        city="Pune",
        state="Maharashtra",
        pincode="411001",
    )


def subscription_request(
    plan_id,
    start_date: Optional[date] = None,
    shift: str = "morning",
) -> SubscriptionCreate:
    return SubscriptionCreate(
        plan_id=plan_id,
        shipping_address=_address(),
        delivery_shift=shift,
        start_date=start_date,
    )


def order_request(
    product_id,
    quantity: int = 2,
    delivery_date: date = TOMORROW,
    shift: str = "morning",
    clear_cart: bool = False,
) -> OrderCreate:
    return OrderCreate(
        items=[OrderItemCreate(product_id=product_id, quantity=quantity)],
        shipping_address=_address(),
        delivery_date=delivery_date,
        delivery_shift=shift,
        clear_cart=clear_cart,
    )


async def reload(db, model, pk):
    """Current database state of a row, refreshed in the identity map."""
    result = await db.execute(
        select(model).where(model.id == pk).execution_options(populate_existing=True)
    )
    return result.unique().scalar_one()


def auth_header(token: Optional[str]) -> dict:
    return {"Authorization": f"Bearer {token}"}
