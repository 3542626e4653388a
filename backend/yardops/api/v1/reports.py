"""
Sales report endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Query

from yardops.api.deps import CurrentUser, ReportServiceDep, to_http_exception
from yardops.core.logging import get_logger
from yardops.schemas.orders import OrderResponse
from yardops.schemas.reports import DashboardResponse, YearlyGPEntry

logger = get_logger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/yearly", response_model=list[YearlyGPEntry], summary="Actual GP by month")
async def yearly(
    current_user: CurrentUser,
    service: ReportServiceDep,
    year: Optional[int] = Query(None, ge=2000, le=2100),
) -> list[YearlyGPEntry]:
    try:
        entries = await service.yearly(year)
    except Exception as e:
        raise to_http_exception(e, "Yearly report") from e
    return [YearlyGPEntry(**entry) for entry in entries]


@router.get("/dashboard", response_model=DashboardResponse, summary="Month dashboard")
async def dashboard(
    current_user: CurrentUser,
    service: ReportServiceDep,
    month: Optional[str] = Query(None, description="Month abbreviation or number"),
    year: Optional[int] = Query(None, ge=2000, le=2100),
) -> DashboardResponse:
    try:
        data = await service.dashboard(month, year)
    except Exception as e:
        raise to_http_exception(e, "Dashboard report") from e
    return DashboardResponse.model_validate(data)


async def _dated_report(
    service: ReportServiceDep,
    report: str,
    start: Optional[str],
    end: Optional[str],
    month: Optional[str],
    year: Optional[int],
) -> list[OrderResponse]:
    try:
        orders = await service.orders_by_date(report, start, end, month, year)
    except Exception as e:
        raise to_http_exception(e, f"{report.title()} report") from e
    return [OrderResponse.model_validate(order) for order in orders]


@router.get("/cancelled-by-date", response_model=list[OrderResponse], summary="Orders cancelled in a window")
async def cancelled_by_date(
    current_user: CurrentUser,
    service: ReportServiceDep,
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    month: Optional[str] = Query(None),
    year: Optional[int] = Query(None),
) -> list[OrderResponse]:
    return await _dated_report(service, "cancelled", start, end, month, year)


@router.get("/refunded-by-date", response_model=list[OrderResponse], summary="Orders refunded in a window")
async def refunded_by_date(
    current_user: CurrentUser,
    service: ReportServiceDep,
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    month: Optional[str] = Query(None),
    year: Optional[int] = Query(None),
) -> list[OrderResponse]:
    return await _dated_report(service, "refunded", start, end, month, year)


@router.get("/disputes-by-date", response_model=list[OrderResponse], summary="Orders disputed in a window")
async def disputes_by_date(
    current_user: CurrentUser,
    service: ReportServiceDep,
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    month: Optional[str] = Query(None),
    year: Optional[int] = Query(None),
) -> list[OrderResponse]:
    return await _dated_report(service, "disputes", start, end, month, year)


@router.get("/reimbursed-by-date", response_model=list[OrderResponse], summary="Orders reimbursed in a window")
async def reimbursed_by_date(
    current_user: CurrentUser,
    service: ReportServiceDep,
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    month: Optional[str] = Query(None),
    year: Optional[int] = Query(None),
) -> list[OrderResponse]:
    return await _dated_report(service, "reimbursed", start, end, month, year)
