"""
Tests for the e-mail endpoints: multipart uploads, the escalation form field
and the attachment size limit.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from yardops.api.deps import get_order_service
from yardops.api.v1.emails import MAX_ATTACHMENT_BYTES
from yardops.main import app
from yardops.schemas.orders import ReplacementEscalation
from yardops.services.notifications.service import NotificationValidationError
from yardops.services.orders.enums import ReplacementLeg
from yardops.services.orders.service import OrderService, WorkflowResult

BASE = "/api/v1/emails"


@pytest.fixture
def order_service(order_factory) -> MagicMock:
    service = MagicMock(spec=OrderService)
    result = WorkflowResult("Email sent", order_factory("ORD-100", yards=1), "sent")
    for name in (
        "send_tracking_email",
        "send_replacement_email",
        "send_po_email",
        "send_cancellation_email",
    ):
        setattr(service, name, AsyncMock(return_value=result))
    app.dependency_overrides[get_order_service] = lambda: service
    return service


class TestEmailEndpoints:
    def test_tracking(self, test_client: TestClient, auth_headers, order_service) -> None:
        response = test_client.post(
            f"{BASE}/orders/sendTrackingInfo/ORD-100?yardIndex=1", headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["emailStatus"] == "sent"
        order_service.send_tracking_email.assert_awaited_once_with("ORD-100", 1, "Ana")

    def test_missing_yard_index(
        self, test_client: TestClient, auth_headers, order_service
    ) -> None:
        response = test_client.post(
            f"{BASE}/orders/sendTrackingInfo/ORD-100", headers=auth_headers
        )

        assert response.status_code == 400
        assert "yardIndex" in response.json()["message"]

    def test_replacement_with_escalation_and_label(
        self, test_client: TestClient, auth_headers, order_service
    ) -> None:
        escalation = {
            "escalationProcess": "Replacement",
            "escalationCause": "Damaged",
            "customerLeg": {"method": "Own shipping", "shipper": "FedEx"},
        }

        response = test_client.post(
            f"{BASE}/orders/sendReplacementEmail/ORD-100?yardIndex=1&leg=customer",
            data={"escalation": json.dumps(escalation), "expectedVersion": "2"},
            files={"pdfFile": ("label.pdf", b"%PDF-1.4", "application/pdf")},
            headers=auth_headers,
        )

        assert response.status_code == 200
        call = order_service.send_replacement_email.await_args
        assert call.args[:3] == ("ORD-100", 1, ReplacementLeg.CUSTOMER)
        assert isinstance(call.kwargs["escalation"], ReplacementEscalation)
        assert call.kwargs["escalation"].customer_leg.shipper == "FedEx"
        assert call.kwargs["attachment"].filename == "label.pdf"
        assert call.kwargs["expected_version"] == 2

    def test_malformed_escalation(
        self, test_client: TestClient, auth_headers, order_service
    ) -> None:
        response = test_client.post(
            f"{BASE}/orders/sendReplacementEmail/ORD-100?yardIndex=1",
            data={"escalation": json.dumps({"escalationProcess": "Teleport"})},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["detail"]["message"] == "Invalid escalation"
        order_service.send_replacement_email.assert_not_awaited()

    def test_oversized_attachment(
        self, test_client: TestClient, auth_headers, order_service
    ) -> None:
        response = test_client.post(
            f"{BASE}/sendPOEmailYard/ORD-100?yardIndex=1",
            files=[("images", ("po.pdf", b"x" * (MAX_ATTACHMENT_BYTES + 1), "application/pdf"))],
            headers=auth_headers,
        )

        assert response.status_code == 413
        order_service.send_po_email.assert_not_awaited()

    def test_po_attachments(self, test_client: TestClient, auth_headers, order_service) -> None:
        response = test_client.post(
            f"{BASE}/sendPOEmailYard/ORD-100?yardIndex=1",
            files=[
                ("images", ("front.jpg", b"jpeg-bytes", "image/jpeg")),
                ("images", ("back.jpg", b"jpeg-bytes", "image/jpeg")),
            ],
            headers=auth_headers,
        )

        assert response.status_code == 200
        attachments = order_service.send_po_email.await_args.args[3]
        assert [a.filename for a in attachments] == ["front.jpg", "back.jpg"]

    def test_unbuildable_email(
        self, test_client: TestClient, auth_headers, order_service
    ) -> None:
        order_service.send_cancellation_email.side_effect = NotificationValidationError(
            "Customer email is missing"
        )

        response = test_client.post(
            f"{BASE}/order-cancel/ORD-100?cancelledRefAmount=120", headers=auth_headers
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Customer email is missing"
