"""
Test suite for the order HTTP API.

Services are replaced through FastAPI dependency overrides, so these tests
cover authentication, request validation, error mapping and response shape.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from yardops.api.deps import get_order_service, get_search_service
from yardops.core.timeutils import month_window
from yardops.main import app
from yardops.services.orders.repository import (
    DuplicateOrderError,
    OrderNotFoundError,
    YardVersionConflictError,
)
from yardops.services.orders.service import OrderService, WorkflowResult
from yardops.services.orders.state_machine import YardValidationError
from yardops.services.search.search_service import OrderPage, OrderSearchService

BASE = "/api/v1/orders"


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def order_service() -> MagicMock:
    service = MagicMock(spec=OrderService)
    for name in ("get_order", "create_order", "update_yard", "void_leg", "cust_refund"):
        setattr(service, name, AsyncMock())
    app.dependency_overrides[get_order_service] = lambda: service
    return service


@pytest.fixture
def search_service() -> MagicMock:
    service = MagicMock(spec=OrderSearchService)
    service.list_orders = AsyncMock()
    app.dependency_overrides[get_search_service] = lambda: service
    return service


# ============================================================================
# Authentication Tests
# ============================================================================


class TestAuthentication:
    def test_missing_token(self, test_client: TestClient, order_service) -> None:
        response = test_client.get(f"{BASE}/ORD-100")

        assert response.status_code == 401
        order_service.get_order.assert_not_awaited()

    def test_invalid_token(self, test_client: TestClient, order_service) -> None:
        response = test_client.get(
            f"{BASE}/ORD-100", headers={"Authorization": "Bearer not-a-token"}
        )

        assert response.status_code == 401


# ============================================================================
# Order Endpoint Tests
# ============================================================================


class TestOrderEndpoints:
    def test_get_order(
        self, test_client: TestClient, auth_headers, order_service, order_factory
    ) -> None:
        order_service.get_order.return_value = order_factory("ORD-100", yards=1)

        response = test_client.get(f"{BASE}/ORD-100", headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["orderNo"] == "ORD-100"
        assert body["soldP"] == "500.00"
        assert body["additionalInfo"][0]["status"] == "Yard located"

    def test_unknown_order(self, test_client: TestClient, auth_headers, order_service) -> None:
        order_service.get_order.side_effect = OrderNotFoundError(
            "Order not found", order_no="ORD-404"
        )

        response = test_client.get(f"{BASE}/ORD-404", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["detail"] == "Order not found"

    def test_create_order_uses_acting_first_name(
        self, test_client: TestClient, auth_headers, order_service, order_factory
    ) -> None:
        order_service.create_order.return_value = order_factory("ORD-200")

        response = test_client.post(
            f"{BASE}?firstName=Mia",
            json={"orderNo": "ORD-200", "orderDate": "2025-10-15T17:00:00Z", "soldP": 500},
            headers=auth_headers,
        )

        assert response.status_code == 201
        assert order_service.create_order.await_args.args[1] == "Mia"

    def test_create_order_defaults_to_token_name(
        self, test_client: TestClient, auth_headers, order_service, order_factory
    ) -> None:
        order_service.create_order.return_value = order_factory("ORD-200")

        test_client.post(
            BASE,
            json={"orderNo": "ORD-200", "orderDate": "2025-10-15T17:00:00Z"},
            headers=auth_headers,
        )

        assert order_service.create_order.await_args.args[1] == "Ana"

    def test_duplicate_order(self, test_client: TestClient, auth_headers, order_service) -> None:
        order_service.create_order.side_effect = DuplicateOrderError(
            "Order No already exists", order_no="ORD-100"
        )

        response = test_client.post(
            BASE,
            json={"orderNo": "ORD-100", "orderDate": "2025-10-15T17:00:00Z"},
            headers=auth_headers,
        )

        assert response.status_code == 409

    def test_missing_fields_are_listed(
        self, test_client: TestClient, auth_headers, order_service
    ) -> None:
        response = test_client.post(BASE, json={"soldP": -1}, headers=auth_headers)

        assert response.status_code == 400
        body = response.json()
        assert body["message"].startswith("Invalid or missing fields:")
        assert "orderNo" in body["fields"]
        order_service.create_order.assert_not_awaited()

    def test_unexpected_error_is_generic(
        self, test_client: TestClient, auth_headers, order_service
    ) -> None:
        order_service.get_order.side_effect = RuntimeError("connection pool exhausted")

        response = test_client.get(f"{BASE}/ORD-100", headers=auth_headers)

        assert response.status_code == 500
        assert response.json()["detail"] == "An unexpected error occurred"


# ============================================================================
# Yard Endpoint Tests
# ============================================================================


class TestYardEndpoints:
    def test_status_update(
        self, test_client: TestClient, auth_headers, order_service, order_factory
    ) -> None:
        order = order_factory("ORD-100", yards=1)
        order_service.update_yard.return_value = WorkflowResult(
            "Yard 1 status updated to Part shipped, email sent", order, "sent"
        )

        response = test_client.put(
            f"{BASE}/ORD-100/additionalInfo/1?firstName=Ana",
            json={"status": "Part shipped", "expectedVersion": 1},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["emailStatus"] == "sent"
        request = order_service.update_yard.await_args.args[2]
        assert request.expected_version == 1

    def test_missing_tracking_fields(
        self, test_client: TestClient, auth_headers, order_service
    ) -> None:
        order_service.update_yard.side_effect = YardValidationError(
            "Missing required fields for Label created: trackingLink",
            fields=["trackingLink"],
        )

        response = test_client.put(
            f"{BASE}/ORD-100/additionalInfo/1",
            json={"status": "Label created", "trackingNo": "1Z9", "trackingLink": ""},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["detail"]["fields"] == ["trackingLink"]

    def test_stale_version(self, test_client: TestClient, auth_headers, order_service) -> None:
        order_service.update_yard.side_effect = YardVersionConflictError(
            "Yard was modified by another user; reload and try again"
        )

        response = test_client.put(
            f"{BASE}/ORD-100/additionalInfo/1",
            json={"status": "Yard PO Sent", "expectedVersion": 3},
            headers=auth_headers,
        )

        assert response.status_code == 409

    def test_two_intents_rejected(
        self, test_client: TestClient, auth_headers, order_service
    ) -> None:
        response = test_client.put(
            f"{BASE}/ORD-100/additionalInfo/1",
            json={"status": "Yard PO Sent", "voidLabel": True},
            headers=auth_headers,
        )

        assert response.status_code == 400
        order_service.update_yard.assert_not_awaited()

    def test_junked_escalation_payload(
        self, test_client: TestClient, auth_headers, order_service, order_factory
    ) -> None:
        order_service.update_yard.return_value = WorkflowResult(
            "Yard 1 escalation saved", order_factory("ORD-101", yards=1)
        )

        response = test_client.put(
            f"{BASE}/ORD-101/additionalInfo/1",
            json={
                "escalation": {
                    "escalationProcess": "Replacement",
                    "escalationCause": "Defective",
                    "custReason": "Junked",
                    "yardLeg": {"method": "Yard shipping", "shipper": "UPS"},
                }
            },
            headers=auth_headers,
        )

        assert response.status_code == 200
        escalation = order_service.update_yard.await_args.args[2].escalation
        assert escalation.cust_reason == "Junked"
        assert escalation.yard_leg.shipper == "UPS"

    def test_void_customer_leg(
        self, test_client: TestClient, auth_headers, order_service, order_factory
    ) -> None:
        order_service.void_leg.return_value = WorkflowResult(
            "Replacement (Part from customer) label voided for Yard 1",
            order_factory("ORD-100", yards=1),
        )

        response = test_client.put(
            f"{BASE}/voidLabelRepCust/ORD-100/1", headers=auth_headers
        )

        assert response.status_code == 200
        assert order_service.void_leg.await_args.args == ("ORD-100", 1, "customer", "Ana")


# ============================================================================
# Listing Tests
# ============================================================================


class TestMonthlyOrders:
    def test_listing(
        self, test_client: TestClient, auth_headers, search_service, order_factory
    ) -> None:
        start, end = month_window(2025, 10)
        search_service.list_orders.return_value = OrderPage(
            orders=[order_factory("ORD-100")],
            total_pages=1,
            total_orders=1,
            current_page=1,
            start=start,
            end=end,
        )

        response = test_client.get(
            f"{BASE}/monthlyOrders?month=Oct&year=2025&searchTerm=maria",
            headers=auth_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["totalOrders"] == 1
        assert body["orders"][0]["orderNo"] == "ORD-100"
        assert datetime.fromisoformat(body["start"].replace("Z", "+00:00")) == datetime(
            2025, 10, 1, 5, tzinfo=timezone.utc
        )
        kwargs = search_service.list_orders.await_args.kwargs
        assert kwargs["search_term"] == "maria"
        assert kwargs["month"] == "Oct"
        assert kwargs["view"] is None


class TestViewListings:
    def _page(self, order_factory) -> OrderPage:
        start, end = month_window(2025, 10)
        return OrderPage(
            orders=[order_factory("ORD-100")],
            total_pages=1,
            total_orders=1,
            current_page=1,
            start=start,
            end=end,
        )

    def test_ongoing_escalations(
        self, test_client: TestClient, auth_headers, search_service, order_factory
    ) -> None:
        search_service.list_orders.return_value = self._page(order_factory)

        response = test_client.get(
            f"{BASE}/ongoingEscalationOrders?month=Oct&year=2025&page=2",
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["orders"][0]["orderNo"] == "ORD-100"
        kwargs = search_service.list_orders.await_args.kwargs
        assert kwargs["view"] == "ongoingEscalations"
        assert kwargs["page"] == 2

    def test_overall_escalations_with_search_term(
        self, test_client: TestClient, auth_headers, search_service, order_factory
    ) -> None:
        search_service.list_orders.return_value = self._page(order_factory)

        response = test_client.get(
            f"{BASE}/overallEscalationOrders?start=2025-10-01&end=2025-10-07&searchTerm=hond",
            headers=auth_headers,
        )

        assert response.status_code == 200
        kwargs = search_service.list_orders.await_args.kwargs
        assert kwargs["view"] == "overallEscalations"
        assert kwargs["search_term"] == "hond"
        assert (kwargs["start"], kwargs["end"]) == ("2025-10-01", "2025-10-07")

    def test_status_listing_is_not_shadowed_by_order_lookup(
        self, test_client: TestClient, auth_headers, search_service, order_factory
    ) -> None:
        search_service.list_orders.return_value = self._page(order_factory)

        response = test_client.get(f"{BASE}/disputedOrders", headers=auth_headers)

        assert response.status_code == 200
        assert search_service.list_orders.await_args.kwargs["view"] == "disputed"

    def test_view_listing_requires_auth(self, test_client: TestClient) -> None:
        response = test_client.get(f"{BASE}/ongoingEscalationOrders")

        assert response.status_code == 401
