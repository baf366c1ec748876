import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

import hashlib
import hmac
import json
import time

import pytest
from retainr import create_app
from retainr.extensions import db, mail
from retainr.models import User

WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture(scope="session")
def app():
    app = create_app({
        "TESTING": True,
        "STRIPE_SECRET_KEY": "sk_test_x",
        "STRIPE_PUBLISHABLE_KEY": "pk_test_x",
        "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
        "STRIPE_PRICE_ID": "price_retainr_monthly",
        "APP_BASE_URL": "http://example.test",
        "MAIL_SUPPRESS_SEND": True,
        "WTF_CSRF_ENABLED": False,
        "RATELIMIT_ENABLED": False,
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()


class FakeGateway:
    """Stands in for PaymentGateway; records every processor call."""

    def __init__(self):
        self.calls = []
        self.emails = {}
        self.email_error = None
        self.confirm_status = "succeeded"
        self.confirm_error = None
        self.on_confirm = None

    def customer_email(self, customer_id):
        self.calls.append(("customer_email", customer_id))
        if self.email_error:
            raise self.email_error
        return self.emails.get(customer_id)

    def set_default_payment_method(self, customer_id, payment_method_id):
        self.calls.append(("set_default_payment_method", customer_id, payment_method_id))

    def confirm_payment_intent(self, payment_intent_id, payment_method_id):
        self.calls.append(("confirm_payment_intent", payment_intent_id, payment_method_id))
        if self.on_confirm:
            self.on_confirm()
        if self.confirm_error:
            raise self.confirm_error
        return {"id": payment_intent_id, "status": self.confirm_status, "client_secret": f"{payment_intent_id}_secret"}

    def create_checkout_session(self, **kwargs):
        self.calls.append(("create_checkout_session", kwargs))
        return {"id": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}


@pytest.fixture()
def gateway(app):
    original = app.extensions["payment_gateway"]
    fake = FakeGateway()
    app.extensions["payment_gateway"] = fake
    yield fake
    app.extensions["payment_gateway"] = original


@pytest.fixture()
def outbox(app):
    with mail.record_messages() as messages:
        yield messages


@pytest.fixture()
def make_user(app):
    def _make(email="merchant@example.com", username="merchant", account="acct_merchant1", password="s3cret-pass"):
        with app.app_context():
            user = User(email=email, username=username, stripe_account_id=account, is_connected=bool(account))
            user.set_password(password)
            db.session.add(user)
            db.session.commit()
            return user.id
    return _make


def login(client, user_id: int):
    # Simulate Flask-Login session
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user_id)


def stripe_signature(payload: str, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    # Stripe scheme: v1 = HMAC-SHA256(secret, "<t>.<payload>")
    ts = int(time.time()) if timestamp is None else timestamp
    sig = hmac.new(secret.encode("utf-8"), f"{ts}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def make_event(event_type: str, obj: dict, event_id: str = "evt_1") -> dict:
    return {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}


def post_event(client, event: dict, signature=None):
    body = json.dumps(event)
    headers = {"Stripe-Signature": signature if signature is not None else stripe_signature(body)}
    return client.post("/webhooks/stripe", data=body, headers=headers, content_type="application/json")
