"""Read-only aggregates for the admin dashboard."""
from dataclasses import dataclass
from datetime import datetime, time, timezone
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy import func, select

from core.status import REVENUE_STATUSES, OrderStatus
from database import Database, Order, Product
from database.models import utcnow

logger = structlog.get_logger(__name__)


@dataclass
class DashboardSummary:
    """Counts and revenue at one point in time."""

    total_orders: int
    total_revenue: Decimal
    pending_orders: int
    total_products: int
    today_revenue: Decimal
    total_customers: int


class ReportingService:
    """
    Dashboard aggregates.

    Revenue counts orders that are confirmed or delivered. All aggregates are
    read in one transaction so they describe the same snapshot.
    """

    def __init__(self, database: Database):
        self.database = database

    async def dashboard_summary(self, now: Optional[datetime] = None) -> DashboardSummary:
        """
        Compute the dashboard summary.

        Args:
            now: Reference time for "today" (defaults to current UTC time)

        Returns:
            DashboardSummary: Order, revenue, product and customer totals
        """
        now = now or utcnow()
        start_of_day = datetime.combine(now.astimezone(timezone.utc).date(), time.min, timezone.utc)

        revenue = func.coalesce(func.sum(Order.total), 0)
        async with self.database.transaction() as db:
            total_orders = await db.scalar(select(func.count()).select_from(Order))
            total_revenue = await db.scalar(
                select(revenue).where(Order.status.in_(REVENUE_STATUSES))
            )
            pending_orders = await db.scalar(
                select(func.count())
                .select_from(Order)
                .where(Order.status == OrderStatus.PENDING.value)
            )
            total_products = await db.scalar(select(func.count()).select_from(Product))
            today_revenue = await db.scalar(
                select(revenue).where(
                    Order.status.in_(REVENUE_STATUSES),
                    Order.created_at >= start_of_day,
                )
            )
            total_customers = await db.scalar(select(func.count(func.distinct(Order.email))))

        summary = DashboardSummary(
            total_orders=int(total_orders or 0),
            total_revenue=Decimal(str(total_revenue or 0)),
            pending_orders=int(pending_orders or 0),
            total_products=int(total_products or 0),
            today_revenue=Decimal(str(today_revenue or 0)),
            total_customers=int(total_customers or 0),
        )
        logger.debug("dashboard_summary_computed", total_orders=summary.total_orders)
        return summary
