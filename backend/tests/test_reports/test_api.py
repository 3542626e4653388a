"""
Tests for the report endpoints with the report service stubbed out.
"""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from yardops.api.deps import get_report_service
from yardops.main import app
from yardops.services.reports.service import ReportService, ReportValidationError

BASE = "/api/v1/reports"


@pytest.fixture
def report_service() -> MagicMock:
    service = MagicMock(spec=ReportService)
    service.yearly = AsyncMock()
    service.dashboard = AsyncMock()
    service.orders_by_date = AsyncMock()
    app.dependency_overrides[get_report_service] = lambda: service
    return service


class TestReportEndpoints:
    def test_yearly(self, test_client: TestClient, auth_headers, report_service) -> None:
        report_service.yearly.return_value = [
            {"month": 9, "total_actual_gp": Decimal("120.50")},
            {"month": 10, "total_actual_gp": Decimal("60")},
        ]

        response = test_client.get(f"{BASE}/yearly?year=2025", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()[0] == {"month": 9, "totalActualGP": "120.50"}
        report_service.yearly.assert_awaited_once_with(2025)

    def test_dashboard(self, test_client: TestClient, auth_headers, report_service) -> None:
        report_service.dashboard.return_value = {
            "month": 10,
            "year": 2025,
            "total_orders": 3,
            "total_sales": Decimal("1000"),
            "total_gp": Decimal("360"),
            "actual_gp": Decimal("60"),
            "daily_data": {3: {"orders": 2, "gp": Decimal("160")}},
            "status_breakdown": {"Placed": 2, "Dispute": 1},
            "yearly_gp": [{"month": "Oct", "actual_gp": Decimal("60")}],
            "monthly_agent_gp": {"Ana": Decimal("310")},
            "best_day": ("2025-10-10", Decimal("200")),
            "top_agent_today": None,
        }

        response = test_client.get(
            f"{BASE}/dashboard?month=Oct&year=2025", headers=auth_headers
        )

        assert response.status_code == 200
        body = response.json()
        assert body["totalOrders"] == 3
        assert body["dailyData"]["3"]["orders"] == 2
        assert body["monthlyAgentGP"] == {"Ana": "310"}
        assert body["bestDay"] == ["2025-10-10", "200"]
        assert body["topAgentToday"] is None

    def test_bad_month(self, test_client: TestClient, auth_headers, report_service) -> None:
        report_service.dashboard.side_effect = ReportValidationError("Invalid month: Smarch")

        response = test_client.get(f"{BASE}/dashboard?month=Smarch", headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid month: Smarch"

    def test_cancelled_by_date(
        self, test_client: TestClient, auth_headers, report_service, order_factory
    ) -> None:
        report_service.orders_by_date.return_value = [
            order_factory(
                "ORD-300", cancelled_date=datetime(2025, 10, 4, 15, tzinfo=timezone.utc)
            )
        ]

        response = test_client.get(
            f"{BASE}/cancelled-by-date?start=2025-10-01&end=2025-10-31",
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()[0]["orderNo"] == "ORD-300"
        assert report_service.orders_by_date.await_args.args == (
            "cancelled", "2025-10-01", "2025-10-31", None, None
        )

    def test_requires_token(self, test_client: TestClient, report_service) -> None:
        assert test_client.get(f"{BASE}/yearly").status_code == 401
