from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, Query

from milkcart.api.deps import DB, CurrentAdmin, Now
from milkcart.core.timeutils import local_today
from milkcart.schemas.dashboard import DashboardMetricsResponse, ReportSummaryResponse
from milkcart.services.dashboard_service import DashboardService

router = APIRouter(prefix="/admin/dashboard", tags=["Admin Dashboard"])

DEFAULT_REPORT_DAYS = 30


@router.get("/metrics", response_model=DashboardMetricsResponse)
async def get_dashboard_metrics(db: DB, now: Now, admin: CurrentAdmin):
    """Today's orders, this month's revenue, customers, top products and payment totals."""
    return await DashboardService(db).get_metrics(now)


@router.get("/reports/summary", response_model=ReportSummaryResponse)
async def get_report_summary(
    db: DB,
    now: Now,
    admin: CurrentAdmin,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
):
    """Order and revenue summary between two local dates; defaults to the last 30 days."""
    end_date = end_date or local_today(now)
    start_date = start_date or end_date - timedelta(days=DEFAULT_REPORT_DAYS - 1)
    return await DashboardService(db).get_report_summary(start_date, end_date)
