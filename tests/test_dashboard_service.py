from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import update

from milkcart.core.exceptions import ValidationError
from milkcart.models import Order
from milkcart.services.dashboard_service import DashboardService
from milkcart.services.order_service import OrderService
from tests.factories import NOW, ist, make_product, make_user, order_request


async def place_on(db, user, product, moment) -> Order:
    order = await OrderService(db).create_order(user, order_request(product.id), NOW)
    await db.execute(update(Order).where(Order.id == order.id).values(created_at=moment))
    await db.commit()
    return order


async def test_summary_excludes_cancelled_revenue(db):
    user = await make_user(db)
    product = await make_product(db, stock=20)
    await place_on(db, user, product, ist(2026, 3, 2, 8, 0))
    cancelled = await place_on(db, user, product, ist(2026, 3, 2, 9, 0))
    await OrderService(db).cancel_order_by_user(user, cancelled.id, None, NOW)
    # 18:00 UTC, still the 3rd in local time
    await place_on(db, user, product, ist(2026, 3, 3, 23, 30))

    summary = await DashboardService(db).get_report_summary(date(2026, 3, 1), date(2026, 3, 3))

    assert summary["total_orders"] == 3
    assert summary["cancelled_orders"] == 1
    assert summary["total_revenue"] == Decimal("340.00")
    assert summary["total_users"] == 1
    assert [d["orders"] for d in summary["revenue_trend"]] == [0, 2, 1]
    assert [d["revenue"] for d in summary["revenue_trend"]] == [0, Decimal("170.00"), Decimal("170.00")]
    assert summary["status_breakdown"]["cancelled"] == 1
    assert summary["payment_status_breakdown"] == {"pending": 3}


async def test_summary_rejects_inverted_range(db):
    with pytest.raises(ValidationError):
        await DashboardService(db).get_report_summary(date(2026, 3, 5), date(2026, 3, 1))


async def test_metrics_count_todays_orders(db):
    user = await make_user(db)
    product = await make_product(db, stock=20)
    await place_on(db, user, product, ist(2026, 3, 10, 8, 0))
    await place_on(db, user, product, ist(2026, 3, 9, 23, 0))

    metrics = await DashboardService(db).get_metrics(NOW)

    assert metrics["todays_orders_count"] == 1
    assert metrics["pending_today"] == 1
    assert metrics["total_users"] == 1
    assert metrics["top_selling_products"][0]["name"] == "Toned Milk"
    assert metrics["top_selling_products"][0]["quantity"] == 4
    assert metrics["payment_analytics"]["pending_payments"] == 0
