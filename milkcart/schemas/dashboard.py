from pydantic import BaseModel
from typing import Dict, List
from datetime import datetime, date
from decimal import Decimal


class TopProduct(BaseModel):
    name: str
    quantity: int
    revenue: Decimal


class PaymentAnalytics(BaseModel):
    pending_payments: int
    total_pending_amount: Decimal
    todays_payment_count: int
    todays_payment_amount: Decimal
    monthly_payment_count: int
    monthly_payment_amount: Decimal


class DashboardMetricsResponse(BaseModel):
    todays_orders_count: int
    confirmed_today: int
    pending_today: int
    monthly_revenue: Decimal
    total_users: int
    new_users_today: int
    new_users_this_month: int
    top_selling_products: List[TopProduct]
    payment_analytics: PaymentAnalytics
    month_start: datetime


class RevenueTrendPoint(BaseModel):
    date: date
    orders: int
    revenue: Decimal


class ReportSummaryResponse(BaseModel):
    start_date: date
    end_date: date
    total_orders: int
    cancelled_orders: int
    total_revenue: Decimal
    total_users: int
    revenue_trend: List[RevenueTrendPoint]
    status_breakdown: Dict[str, int]
    payment_status_breakdown: Dict[str, int]
