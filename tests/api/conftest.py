"""API test fixtures: TestClient over the fully wired ledger services."""

from datetime import timedelta

import pytest
from starlette.testclient import TestClient

from api.app import create_app
from factories import TEST_USER_ID
from utils.timezone import today_utc


@pytest.fixture
def app(services):
    return create_app(services)


@pytest.fixture
def client(app):
    """Client acting as the primary test user."""
    return TestClient(app, headers={"X-User-Id": TEST_USER_ID})


@pytest.fixture
def anonymous_client(app):
    return TestClient(app)


@pytest.fixture
def invoice_body():
    """JSON body for POST /api/invoices: $449.00 total."""
    return {
        "title": "Kitchen remodel - phase 1",
        "client_id": "client-1",
        "project_id": "project-1",
        "customer_email": "client@example.test",
        "line_items": [
            {"description": "Cabinet install", "quantity": 2, "unit_price_cents": 15000},
            {"description": "Countertop templating", "quantity": 1, "unit_price_cents": 10000},
            {"description": "Hardware", "quantity": 1, "unit_price_cents": 2500},
        ],
        "tax_rate": "0.08",
        "discount_cents": 1000,
        "due_date": (today_utc() + timedelta(days=30)).isoformat(),
    }
