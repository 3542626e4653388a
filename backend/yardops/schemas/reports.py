"""Report response schemas."""

from decimal import Decimal
from typing import Optional

from pydantic import Field

from yardops.schemas.orders import WireModel


class YearlyGPEntry(WireModel):
    month: int = Field(..., ge=1, le=12)
    total_actual_gp: Decimal = Field(..., alias="totalActualGP")


class DailyStat(WireModel):
    orders: int
    gp: Decimal


class MonthlyGP(WireModel):
    month: str
    actual_gp: Decimal = Field(..., alias="actualGP")


class DashboardResponse(WireModel):
    """Month dashboard: totals, breakdowns and leaders."""

    month: int
    year: int
    total_orders: int
    total_sales: Decimal
    total_gp: Decimal
    actual_gp: Decimal
    daily_data: dict[int, DailyStat]
    status_breakdown: dict[str, int]
    yearly_gp: list[MonthlyGP] = Field(..., alias="yearlyGP")
    monthly_agent_gp: dict[str, Decimal] = Field(..., alias="monthlyAgentGP")
    best_day: Optional[tuple[str, Decimal]] = None
    top_agent_today: Optional[tuple[str, Decimal]] = None
