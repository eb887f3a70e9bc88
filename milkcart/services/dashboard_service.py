"""
Admin reporting.

Read-only aggregates over orders, users and payments. Day boundaries are
local (IST) days; the database stores UTC.
"""
from datetime import datetime, date, timedelta
from decimal import Decimal
from typing import Any, Dict
import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from milkcart.core.exceptions import ValidationError
from milkcart.core.timeutils import local_today, local_day_bounds, local_month_start, to_local
from milkcart.models.order import Order, OrderItem, OrderStatus
from milkcart.models.payment import Payment, PaymentSessionStatus, VerificationStatus
from milkcart.models.user import User, UserRole

logger = logging.getLogger(__name__)


TOP_PRODUCTS_LIMIT = 3
MAX_REPORT_DAYS = 366


class DashboardService:
    """Metrics for the admin dashboard."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _sum_payments(self, *filters) -> tuple[int, Decimal]:
        result = await self.db.execute(
            select(func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0)).where(*filters)
        )
        count, amount = result.one()
        return count or 0, Decimal(str(amount or 0))

    async def get_metrics(self, now: datetime) -> Dict[str, Any]:
        """Today's orders, month revenue, user counts, best sellers and payment analytics."""
        day_start, day_end = local_day_bounds(local_today(now))
        month_start = local_month_start(now)

        # Today's orders by status
        result = await self.db.execute(
            select(Order.status, func.count(Order.id))
            .where(Order.created_at >= day_start, Order.created_at < day_end)
            .group_by(Order.status)
        )
        today_by_status = {status: count for status, count in result.all()}

        monthly_revenue = (
            await self.db.execute(
                select(func.coalesce(func.sum(Order.total_amount), 0)).where(
                    Order.created_at >= month_start,
                    Order.status != OrderStatus.CANCELLED.value,
                )
            )
        ).scalar()

        customers = User.role == UserRole.USER.value
        total_users = (await self.db.execute(select(func.count(User.id)).where(customers))).scalar() or 0
        new_users_today = (
            await self.db.execute(
                select(func.count(User.id)).where(
                    customers, User.created_at >= day_start, User.created_at < day_end
                )
            )
        ).scalar() or 0
        new_users_this_month = (
            await self.db.execute(
                select(func.count(User.id)).where(customers, User.created_at >= month_start)
            )
        ).scalar() or 0

        quantity = func.sum(OrderItem.quantity).label("quantity")
        result = await self.db.execute(
            select(OrderItem.product_name, quantity, func.sum(OrderItem.line_total).label("revenue"))
            .join(Order, Order.id == OrderItem.order_id)
            .where(Order.status != OrderStatus.CANCELLED.value)
            .group_by(OrderItem.product_name)
            .order_by(quantity.desc())
            .limit(TOP_PRODUCTS_LIMIT)
        )
        top_products = [
            {"name": name, "quantity": int(qty or 0), "revenue": Decimal(str(revenue or 0))}
            for name, qty, revenue in result.all()
        ]

        awaiting = (
            Payment.payment_status == PaymentSessionStatus.COMPLETED.value,
            Payment.verification_status == VerificationStatus.PENDING.value,
        )
        pending_count, pending_amount = await self._sum_payments(*awaiting)
        today_count, today_amount = await self._sum_payments(
            Payment.payment_status == PaymentSessionStatus.COMPLETED.value,
            Payment.created_at >= day_start,
            Payment.created_at < day_end,
        )
        month_count, month_amount = await self._sum_payments(
            Payment.payment_status == PaymentSessionStatus.COMPLETED.value,
            Payment.verification_status == VerificationStatus.VERIFIED.value,
            Payment.created_at >= month_start,
        )

        return {
            "todays_orders_count": sum(today_by_status.values()),
            "confirmed_today": today_by_status.get(OrderStatus.CONFIRMED.value, 0),
            "pending_today": today_by_status.get(OrderStatus.PENDING.value, 0),
            "monthly_revenue": Decimal(str(monthly_revenue or 0)),
            "total_users": total_users,
            "new_users_today": new_users_today,
            "new_users_this_month": new_users_this_month,
            "top_selling_products": top_products,
            "payment_analytics": {
                "pending_payments": pending_count,
                "total_pending_amount": pending_amount,
                "todays_payment_count": today_count,
                "todays_payment_amount": today_amount,
                "monthly_payment_count": month_count,
                "monthly_payment_amount": month_amount,
            },
            "month_start": month_start,
        }

    async def get_report_summary(self, start_date: date, end_date: date) -> Dict[str, Any]:
        """
        Orders placed between two local dates (inclusive).

        Revenue excludes cancelled orders. The trend has one entry per
        local day, including days without orders.
        """
        if start_date > end_date:
            raise ValidationError("start_date must not be after end_date")
        if (end_date - start_date).days >= MAX_REPORT_DAYS:
            raise ValidationError(f"Report range cannot exceed {MAX_REPORT_DAYS} days")

        range_start, _ = local_day_bounds(start_date)
        _, range_end = local_day_bounds(end_date)

        result = await self.db.execute(
            select(
                Order.created_at,
                Order.status,
                Order.payment_status,
                Order.total_amount,
                Order.user_id,
            ).where(Order.created_at >= range_start, Order.created_at < range_end)
        )
        rows = result.all()

        trend: Dict[date, Dict[str, Any]] = {}
        day = start_date
        while day <= end_date:
            trend[day] = {"date": day, "orders": 0, "revenue": Decimal("0")}
            day += timedelta(days=1)

        status_breakdown: Dict[str, int] = {status.value: 0 for status in OrderStatus}
        payment_breakdown: Dict[str, int] = {}
        total_revenue = Decimal("0")
        customers = set()

        for created_at, status, payment_status, total_amount, user_id in rows:
            bucket = trend.get(to_local(created_at).date())
            status_breakdown[status] = status_breakdown.get(status, 0) + 1
            payment_breakdown[payment_status] = payment_breakdown.get(payment_status, 0) + 1
            customers.add(user_id)
            if bucket is not None:
                bucket["orders"] += 1
            if status != OrderStatus.CANCELLED.value:
                total_revenue += Decimal(total_amount)
                if bucket is not None:
                    bucket["revenue"] += Decimal(total_amount)

        return {
            "start_date": start_date,
            "end_date": end_date,
            "total_orders": len(rows),
            "cancelled_orders": status_breakdown.get(OrderStatus.CANCELLED.value, 0),
            "total_revenue": total_revenue,
            "total_users": len(customers),
            "revenue_trend": list(trend.values()),
            "status_breakdown": status_breakdown,
            "payment_status_breakdown": payment_breakdown,
        }
