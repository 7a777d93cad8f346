"""
Pytest configuration and fixtures.
"""
from types import SimpleNamespace

import pytest
import stripe
from sqlalchemy.orm import Session

from storefront import create_app
from storefront.auth import create_user
from storefront.models import Product

PASSWORD = "s3cret-pass"

CHECKOUT_FORM = {
    "full_name": "Ana Buyer",
    "email": "ana@example.com",
    "phone": "555-0100",
    "address": "1 Main St",
    "city": "Springfield",
    "postal_code": "12345",
    "country": "US",
}


@pytest.fixture
def app(tmp_path):
    """Create an app bound to a throwaway sqlite database."""
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "DATABASE_URL": f"sqlite:///{tmp_path / 'test.db'}",
        "LOG_FILE": None,
        "UPLOAD_DIR": str(tmp_path / "uploads"),
        "PUBLIC_BASE_URL": "http://shop.test",
        "STRIPE_SECRET_KEY": "sk_test_fake_key_for_testing",
        "STRIPE_WEBHOOK_SECRET": "whsec_test_fake_secret",
        "SLACK_WEBHOOK_URL": None,
        "SMTP_HOST": None,
        "ALERT_EMAIL_TO": None,
        "ORDER_NOTIFY_EMAIL": None,
        "CORS_ALLOW_ORIGIN": "*",
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    """Session on the app engine, used outside any request."""
    with Session(app.extensions["storefront.engine"], expire_on_commit=False) as session:
        yield session


@pytest.fixture
def request_ctx(app):
    with app.test_request_context() as ctx:
        yield ctx


@pytest.fixture
def make_product(db):
    def _make(**overrides):
        data = dict(
            name="Widget",
            description="A useful widget",
            price_cents=1000,
            stock=10,
            category="Tools",
            images=["https://img.test/widget.png"],
        )
        data.update(overrides)
        product = Product(**data)
        db.add(product)
        db.commit()
        return product
    return _make


@pytest.fixture
def make_user(db):
    def _make(email="user@example.com", role="customer", full_name="Test User"):
        return create_user(db, email, PASSWORD, full_name, role=role)
    return _make


def login(client, email):
    return client.post("/login", data={"email": email, "password": PASSWORD})


@pytest.fixture
def admin_client(client, make_user):
    make_user("admin@example.com", role="admin", full_name="Admin")
    login(client, "admin@example.com")
    return client


@pytest.fixture
def stripe_checkout(monkeypatch):
    """Replace Stripe Checkout session creation; returns the recorded calls."""
    calls = []

    def fake_create(**params):
        calls.append(params)
        return SimpleNamespace(id="cs_test_123", url="https://checkout.stripe.test/pay/cs_test_123")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    return calls


@pytest.fixture
def stripe_down(monkeypatch):
    def fake_create(**params):
        raise stripe.StripeError("gateway unavailable")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
