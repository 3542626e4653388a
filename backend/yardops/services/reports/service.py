"""
Sales and financial reporting.

Aggregates are computed over order rows in the business timezone, so "day"
and "month" mean the calendar day and month the sales floor sees. Dashboard
results are cached in Redis for a short TTL.
"""

from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional, Sequence

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from yardops.cache.redis_client import (
    CacheKeyManager,
    RedisClient,
    get_cache_key_manager,
    get_redis_client,
)
from yardops.core.config import get_settings
from yardops.core.logging import get_logger, log_performance
from yardops.core.timeutils import (
    MONTH_ABBREVIATIONS,
    day_window,
    local_midnight_utc,
    month_number,
    month_window,
    resolve_window,
    to_business_time,
    utcnow,
)
from yardops.database.models.order import Order
from yardops.services.orders.repository import OrderRepository

logger = get_logger(__name__)

ZERO = Decimal("0")

# Report name -> order column holding the event date.
DATED_REPORTS = {
    "cancelled": "cancelled_date",
    "refunded": "cust_refund_date",
    "disputes": "disputed_date",
    "reimbursed": "reimbursement_date",
}

_SUMMARY_COLUMNS = (
    Order.order_date,
    Order.order_status,
    Order.sold_price,
    Order.gross_profit,
    Order.actual_gp,
    Order.sales_agent,
)


class ReportError(Exception):
    """Base exception for report errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class ReportValidationError(ReportError):
    """Raised for missing or malformed report parameters."""

    pass


def _dec(value: Optional[Decimal]) -> Decimal:
    return value if value is not None else ZERO


def parse_month(month: Any) -> int:
    """
    Accept ``10``, ``"10"``, ``"Oct"`` or ``"October"``.

    Raises:
        ReportValidationError: If the month is not recognised
    """
    try:
        value = int(month) if str(month).strip().isdigit() else month_number(str(month))
    except ValueError as e:
        raise ReportValidationError(f"Invalid month: {month}") from e
    if not 1 <= value <= 12:
        raise ReportValidationError(f"Invalid month: {month}")
    return value


def year_window(year: int) -> tuple[datetime, datetime]:
    return local_midnight_utc(date(year, 1, 1)), local_midnight_utc(date(year + 1, 1, 1))


class ReportService:
    """Dashboard and date-range reports."""

    def __init__(
        self,
        session: AsyncSession,
        cache: Optional[RedisClient] = None,
        keys: Optional[CacheKeyManager] = None,
        use_cache: bool = True,
    ):
        self.session = session
        self.repository = OrderRepository(session)
        self._cache = cache
        self._keys = keys or get_cache_key_manager()
        self._ttl = get_settings().report_cache_ttl_seconds
        self._use_cache = use_cache and self._ttl > 0

    async def _summary_rows(self, start: datetime, end: datetime) -> Sequence[Any]:
        stmt = select(*_SUMMARY_COLUMNS).where(
            and_(Order.order_date >= start, Order.order_date < end)
        )
        result = await self.session.execute(stmt)
        return result.all()

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    async def _get_cache(self) -> Optional[RedisClient]:
        if not self._use_cache:
            return None
        if self._cache is None:
            try:
                self._cache = await get_redis_client()
            except (RedisConnectionError, RedisError) as e:
                logger.warning("Report cache unavailable", error=str(e))
                self._use_cache = False
                return None
        return self._cache

    async def _cached(self, key: str) -> Optional[Any]:
        cache = await self._get_cache()
        if cache is None:
            return None
        try:
            return await cache.get_json(key)
        except RedisError as e:
            logger.warning("Report cache read failed", key=key, error=str(e))
            return None

    async def _store(self, key: str, value: Any) -> None:
        cache = await self._get_cache()
        if cache is None:
            return
        try:
            await cache.set_json(key, value, ex=self._ttl)
        except RedisError as e:
            logger.warning("Report cache write failed", key=key, error=str(e))

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def yearly(self, year: Optional[int]) -> list[dict[str, Any]]:
        """
        Actual GP per month for a year; months without orders are omitted.

        Raises:
            ReportValidationError: If no year is given
        """
        if not year:
            raise ReportValidationError("Year is required")

        start, end = year_window(int(year))
        totals: dict[int, Decimal] = defaultdict(lambda: ZERO)
        for row in await self._summary_rows(start, end):
            totals[to_business_time(row.order_date).month] += _dec(row.actual_gp)

        return [
            {"month": month, "total_actual_gp": totals[month]} for month in sorted(totals)
        ]

    async def dashboard(self, month: Any, year: Optional[int]) -> dict[str, Any]:
        """
        Month dashboard.

        Returns:
            Totals (orders, sales, GP, actual GP), a per-day breakdown, a
            status breakdown, yearly actual GP by month, GP per sales agent,
            the best day of the month and today's top agent.

        Raises:
            ReportValidationError: If month or year is missing
        """
        if not month or not year:
            raise ReportValidationError("Month and year are required")
        month_no = parse_month(month)
        year = int(year)

        key = self._keys.report_key("dashboard", year, month_no)
        cached = await self._cached(key)
        if cached is not None:
            logger.debug("Dashboard served from cache", key=key)
            return cached

        with log_performance(logger, "dashboard_report", month=month_no, year=year):
            result = await self._build_dashboard(month_no, year)

        await self._store(key, result)
        return result

    async def _build_dashboard(self, month: int, year: int) -> dict[str, Any]:
        start, end = month_window(year, month)
        rows = await self._summary_rows(start, end)

        total_sales = total_gp = actual_gp = ZERO
        daily: dict[int, dict[str, Any]] = {}
        statuses: dict[str, int] = defaultdict(int)
        agents: dict[str, Decimal] = defaultdict(lambda: ZERO)
        by_date: dict[str, Decimal] = defaultdict(lambda: ZERO)

        for row in rows:
            local = to_business_time(row.order_date)
            gp = _dec(row.gross_profit)
            total_sales += _dec(row.sold_price)
            total_gp += gp
            actual_gp += _dec(row.actual_gp)

            day = daily.setdefault(local.day, {"orders": 0, "gp": ZERO})
            day["orders"] += 1
            day["gp"] += gp

            status = row.order_status.value if row.order_status else "Unknown"
            statuses[status] += 1
            agents[row.sales_agent or "Unknown"] += gp
            by_date[local.date().isoformat()] += gp

        best_day = None
        if by_date:
            best = max(by_date.items(), key=lambda item: item[1])
            best_day = [best[0], best[1]]

        return {
            "month": month,
            "year": year,
            "total_orders": len(rows),
            "total_sales": total_sales,
            "total_gp": total_gp,
            "actual_gp": actual_gp,
            "daily_data": dict(sorted(daily.items())),
            "status_breakdown": dict(statuses),
            "yearly_gp": await self._yearly_gp(year),
            "monthly_agent_gp": dict(agents),
            "best_day": best_day,
            "top_agent_today": await self._top_agent_today(),
        }

    async def _yearly_gp(self, year: int) -> list[dict[str, Any]]:
        totals = {entry["month"]: entry["total_actual_gp"] for entry in await self.yearly(year)}
        return [
            {"month": name, "actual_gp": totals.get(index + 1, ZERO)}
            for index, name in enumerate(MONTH_ABBREVIATIONS)
        ]

    async def _top_agent_today(self) -> Optional[list[Any]]:
        start, end = day_window(to_business_time(utcnow()).date())
        agents: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for row in await self._summary_rows(start, end):
            agents[row.sales_agent or "Unknown"] += _dec(row.gross_profit)
        if not agents:
            return None
        agent, gp = max(agents.items(), key=lambda item: item[1])
        return [agent, gp]

    async def orders_by_date(
        self,
        report: str,
        start: Optional[str] = None,
        end: Optional[str] = None,
        month: Optional[str] = None,
        year: Optional[int] = None,
    ) -> Sequence[Order]:
        """
        Orders whose cancellation, refund, dispute or reimbursement date falls
        in the window (start/end days, else month/year, else this month).

        Raises:
            ReportValidationError: If the report or window is invalid
        """
        column = DATED_REPORTS.get(report)
        if column is None:
            raise ReportValidationError(f"Unknown report: {report}", report=report)
        try:
            window_start, window_end = resolve_window(start, end, month, year)
        except ValueError as e:
            raise ReportValidationError(str(e), report=report) from e

        orders = await self.repository.orders_between(column, window_start, window_end)
        logger.info(
            "Dated report generated",
            report=report,
            start=window_start.isoformat(),
            end=window_end.isoformat(),
            count=len(orders),
        )
        return orders
