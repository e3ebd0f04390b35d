"""Shared fixtures: an app wired to an in-memory MongoDB and a test Stripe key."""

import mongomock
import pytest

from cyclestore import create_app
from cyclestore.auth import issue_access_token
from cyclestore.payments import StripePayments
from cyclestore.storage import MongoStore

TEST_SECRET = "unit-test-signing-secret-at-least-32-bytes"


@pytest.fixture
def store():
    client = mongomock.MongoClient()
    return MongoStore(client["bicycle-manufacture"], client=client)


@pytest.fixture
def payments():
    return StripePayments("sk_test_123")


@pytest.fixture
def app(store, payments):
    return create_app(
        {
            "TESTING": True,
            "JWT_SECRET_KEY": TEST_SECRET,
            "PAYMENT_VERIFY_TRANSACTIONS": False,
        },
        store=store,
        payments=payments,
    )


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(app):
    def make(email):
        with app.app_context():
            token = issue_access_token(email)
        return {"Authorization": f"Bearer {token}"}

    return make


@pytest.fixture
def admin_headers(store, auth_headers):
    store.users.insert_one({"email": "admin@example.com", "role": "admin"})
    return auth_headers("admin@example.com")


@pytest.fixture
def user_headers(store, auth_headers):
    store.users.insert_one({"email": "rider@example.com", "role": "user"})
    return auth_headers("rider@example.com")
