from datetime import datetime, timezone

from flask_login import login_user

from retainr.extensions import _rate_limit_key, db
from retainr.models import DunningLog, EmailTemplate, FailedPayment, User
from conftest import login


def _payment(user_id, pi, status="failed", amount=1000):
    fp = FailedPayment(
        user_id=user_id,
        stripe_payment_intent_id=pi,
        stripe_customer_id="cus_1",
        customer_email="buyer@example.com",
        amount=amount,
        currency="usd",
        status=status,
        attempt_count=1,
        recovered_at=datetime.now(timezone.utc) if status == "recovered" else None,
    )
    db.session.add(fp)
    return fp


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}


def test_dashboard_requires_login(client):
    assert client.get("/api/failed-payments").status_code == 401
    assert client.get("/api/stats").status_code == 401


def test_failed_payments_are_scoped_to_account(app, client, make_user):
    uid = make_user()
    other = make_user(email="other@example.com", username="other", account="acct_other")
    with app.app_context():
        _payment(uid, "pi_a")
        _payment(uid, "pi_b", status="recovered")
        _payment(other, "pi_c")
        db.session.commit()

    login(client, uid)
    rows = client.get("/api/failed-payments").get_json()
    assert {r["stripe_payment_intent_id"] for r in rows} == {"pi_a", "pi_b"}

    rows = client.get("/api/failed-payments?status=recovered").get_json()
    assert [r["stripe_payment_intent_id"] for r in rows] == ["pi_b"]

    assert client.get("/api/failed-payments?status=bogus").status_code == 400


def test_payment_logs_hide_other_accounts(app, client, make_user):
    uid = make_user()
    other = make_user(email="other@example.com", username="other", account="acct_other")
    with app.app_context():
        mine = _payment(uid, "pi_a")
        theirs = _payment(other, "pi_b")
        db.session.flush()
        db.session.add(DunningLog(failed_payment_id=mine.id, email_template="first_failure", status="sent"))
        db.session.commit()
        mine_id, theirs_id = mine.id, theirs.id

    login(client, uid)
    logs = client.get(f"/api/failed-payments/{mine_id}/logs").get_json()
    assert [entry["email_template"] for entry in logs] == ["first_failure"]
    assert client.get(f"/api/failed-payments/{theirs_id}/logs").status_code == 404


def test_stats(app, client, make_user):
    uid = make_user()
    with app.app_context():
        _payment(uid, "pi_a", amount=1000)
        _payment(uid, "pi_b", status="recovered", amount=4999)
        _payment(uid, "pi_c", status="recovered", amount=1)
        _payment(uid, "pi_d", amount=500)
        db.session.commit()

    login(client, uid)
    data = client.get("/api/stats").get_json()
    assert data == {
        "total": 4,
        "failed": 2,
        "recovered": 2,
        "outstanding_amount": 1500,
        "recovered_amount": 5000,
        "recovery_rate": 0.5,
    }


def test_stats_empty_account(client, make_user):
    login(client, make_user())
    data = client.get("/api/stats").get_json()
    assert data["total"] == 0
    assert data["recovery_rate"] == 0.0


def test_create_template_replaces_active_one(app, client, make_user):
    uid = make_user()
    login(client, uid)

    first = client.post("/api/templates", json={"type": "first_failure", "subject": "A", "body": "a {{amount}}"})
    assert first.status_code == 201
    second = client.post("/api/templates", json={"type": "first_failure", "subject": "B", "body": "b {{amount}}"})
    assert second.status_code == 201

    with app.app_context():
        enabled = EmailTemplate.query.filter_by(user_id=uid, type="first_failure", is_enabled=True).all()
        assert [t.subject for t in enabled] == ["B"]

    rows = client.get("/api/templates").get_json()
    assert len(rows) == 2


def test_template_validation(client, make_user):
    login(client, make_user())
    resp = client.post("/api/templates", json={"type": "weekly_digest", "subject": "", "body": ""})
    assert resp.status_code == 400
    assert len(resp.get_json()["errors"]) == 3


def test_update_template(app, client, make_user):
    uid = make_user()
    other = make_user(email="other@example.com", username="other", account="acct_other")
    with app.app_context():
        t = EmailTemplate(user_id=uid, type="first_failure", subject="Old", body="old")
        foreign = EmailTemplate(user_id=other, type="first_failure", subject="Theirs", body="x")
        db.session.add_all([t, foreign])
        db.session.commit()
        tid, foreign_id = t.id, foreign.id

    login(client, uid)
    resp = client.put(f"/api/templates/{tid}", json={"subject": "New", "is_enabled": False})
    assert resp.status_code == 200
    assert resp.get_json()["subject"] == "New"
    assert resp.get_json()["is_enabled"] is False

    assert client.put(f"/api/templates/{foreign_id}", json={"subject": "Mine now"}).status_code == 404


def test_link_stripe_account(app, client, make_user):
    uid = make_user(account=None)
    make_user(email="other@example.com", username="other", account="acct_taken")
    login(client, uid)

    assert client.put("/api/account/stripe", json={"stripe_account_id": "cus_nope"}).status_code == 400
    assert client.put("/api/account/stripe", json={"stripe_account_id": "acct_taken"}).status_code == 409

    resp = client.put("/api/account/stripe", json={"stripe_account_id": "acct_new123"})
    assert resp.status_code == 200
    with app.app_context():
        user = db.session.get(User, uid)
        assert user.stripe_account_id == "acct_new123"
        assert user.is_connected is True


def test_checkout_returns_stripe_url(app, client, gateway, make_user):
    uid = make_user()
    login(client, uid)

    resp = client.post("/billing/checkout")
    assert resp.status_code == 200
    assert resp.get_json()["url"].startswith("https://checkout.stripe.test/")
    name, kwargs = gateway.calls[0]
    assert name == "create_checkout_session"
    assert kwargs["price_id"] == "price_retainr_monthly"
    assert kwargs["user_id"] == uid


def test_checkout_conflict_when_active(app, client, gateway, make_user):
    uid = make_user()
    with app.app_context():
        db.session.get(User, uid).subscription_status = "active"
        db.session.commit()
    login(client, uid)

    assert client.post("/billing/checkout").status_code == 409
    assert gateway.calls == []


def test_rate_limit_key_is_per_account_when_signed_in(app, make_user):
    uid = make_user()
    with app.test_request_context("/api/stats", environ_base={"REMOTE_ADDR": "10.0.0.7"}):
        assert _rate_limit_key() == "10.0.0.7"
        login_user(db.session.get(User, uid))
        assert _rate_limit_key() == f"user:{uid}"
