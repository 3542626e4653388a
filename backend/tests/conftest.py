"""
Pytest configuration and shared test fixtures.

Settings are read once per process, so the environment is pinned here
before anything from ``yardops`` is imported: search and report caching are
switched off and a fixed signing key is used for bearer tokens.
"""

import os

os.environ.setdefault("APP_ENVIRONMENT", "development")
os.environ.setdefault("APP_SECRET_KEY", "test-secret-key-with-at-least-32-characters")
os.environ.setdefault("APP_ELASTICSEARCH_ENABLED", "false")
os.environ.setdefault("APP_REPORT_CACHE_TTL_SECONDS", "0")
os.environ.setdefault("APP_LOG_LEVEL", "WARNING")

from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Callable, Generator
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from yardops.core.security import create_access_token
from yardops.database.models.order import Order, Yard
from yardops.main import app
from yardops.services.orders.enums import (
    CheckboxState,
    CustomerReason,
    OrderStatus,
    YardStatus,
)
from yardops.services.orders.escalation import (
    CUSTOMER_LEG_FIELDS,
    RETURN_LEG_FIELDS,
    YARD_LEG_FIELDS,
    blank_value,
)


# ============================================================================
# Clients
# ============================================================================


@pytest.fixture(scope="function")
def test_client() -> Generator[TestClient, None, None]:
    """
    Synchronous test client; dependency overrides are cleared afterwards.

    Example:
        def test_health_endpoint(test_client):
            response = test_client.get("/health")
            assert response.status_code == 200
    """
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def async_client() -> AsyncGenerator[AsyncClient, None]:
    """Asynchronous client bound to the ASGI app without a network socket."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_token() -> str:
    return create_access_token("user-1", "Ana", email="ana@example.com")


@pytest.fixture
def auth_headers(auth_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {auth_token}"}


# ============================================================================
# Database doubles
# ============================================================================


@pytest.fixture
def mock_session() -> AsyncMock:
    """Async session double; commits and flushes are recorded, never executed."""
    session = AsyncMock(spec=AsyncSession)
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.flush = AsyncMock()
    session.refresh = AsyncMock()
    return session


# ============================================================================
# Model builders
# ============================================================================


def _blank_legs() -> dict:
    return {
        field: blank_value(field)
        for field in (*CUSTOMER_LEG_FIELDS, *YARD_LEG_FIELDS, *RETURN_LEG_FIELDS)
    }


@pytest.fixture
def yard_factory() -> Callable[..., Yard]:
    """Build a transient yard with the column defaults a fresh row would have."""

    def _build(position: int = 1, **overrides) -> Yard:
        values = {
            "id": position,
            "position": position,
            "version": 1,
            "yard_name": f"Yard {position}",
            "agent_name": "Joe",
            "email": "yard@example.com",
            "status": YardStatus.YARD_LOCATED,
            "shipping_details": "",
            "tracking_no": "",
            "eta": "",
            "shipper_name": "",
            "tracking_link": "",
            "collect_refund_checkbox": CheckboxState.UNTICKED,
            "ups_claim_checkbox": CheckboxState.UNTICKED,
            "store_credit_checkbox": CheckboxState.UNTICKED,
            "esc_ticked": "",
            "cust_reason": CustomerReason.NONE,
            "notes": [],
            "label_history": [],
            **_blank_legs(),
        }
        values.update(overrides)
        return Yard(**values)

    return _build


@pytest.fixture
def order_factory(yard_factory) -> Callable[..., Order]:
    """Build a transient order; ``yards`` may be yards or a count of default yards."""

    def _build(order_no: str = "ORD-100", yards=0, **overrides) -> Order:
        values = {
            "id": 1,
            "order_no": order_no,
            "order_date": datetime(2025, 10, 15, 17, 0, tzinfo=timezone.utc),
            "customer_name": "Maria Lopez",
            "email": "maria@example.com",
            "sales_agent": "Ana",
            "billing": {},
            "shipping": {},
            "year": "2015",
            "make": "Honda",
            "model": "Accord",
            "part_required": "Engine",
            "sold_price": Decimal("500.00"),
            "cost_price": Decimal("300.00"),
            "shipping_fee": Decimal("50.00"),
            "sales_tax": Decimal("40.00"),
            "gross_profit": Decimal("110.00"),
            "order_status": OrderStatus.PLACED,
            "order_history": [],
            "support_notes": [],
        }
        values.update(overrides)
        order = Order(**values)
        if isinstance(yards, int):
            yards = [yard_factory(position) for position in range(1, yards + 1)]
        order.yards = list(yards)
        return order

    return _build
