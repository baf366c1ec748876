from datetime import datetime, timedelta, timezone

from retainr.extensions import db
from retainr.models import EmailTemplate, FailedPayment, User, WebhookEvent


def test_users_create(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=[
        "users", "create",
        "--email", "Ops@Example.com",
        "--username", "ops",
        "--password", "long-password",
        "--stripe-account", "acct_ops1",
    ])
    assert result.exit_code == 0, result.output
    assert "User created" in result.output

    with app.app_context():
        user = User.query.filter_by(email="ops@example.com").one()
        assert user.is_connected is True
        assert EmailTemplate.query.filter_by(user_id=user.id).count() == 3

    again = runner.invoke(args=[
        "users", "create", "--email", "ops@example.com", "--username", "ops2", "--password", "long-password",
    ])
    assert again.exit_code != 0
    assert "already exists" in again.output


def test_templates_seed_unknown_user(app):
    result = app.test_cli_runner().invoke(args=["templates", "seed", "--email", "ghost@example.com"])
    assert result.exit_code != 0
    assert "User not found" in result.output


def test_templates_seed(app, make_user):
    uid = make_user()
    result = app.test_cli_runner().invoke(args=["templates", "seed", "--email", "merchant@example.com"])
    assert result.exit_code == 0, result.output
    assert "Seeded 3 template(s)" in result.output
    with app.app_context():
        assert EmailTemplate.query.filter_by(user_id=uid).count() == 3


def test_dunning_run_due(app, make_user, outbox):
    uid = make_user()
    with app.app_context():
        db.session.add(EmailTemplate(
            user_id=uid, type="retry_reminder", subject="Reminder", body="Still {{amount}} due",
        ))
        db.session.add(FailedPayment(
            user_id=uid,
            stripe_payment_intent_id="pi_due",
            customer_email="buyer@example.com",
            amount=1500,
            currency="usd",
            next_retry_at=datetime.now(timezone.utc) - timedelta(minutes=5),
        ))
        db.session.commit()

    result = app.test_cli_runner().invoke(args=["dunning", "run-due"])
    assert result.exit_code == 0, result.output
    assert "due=1 sent=1" in result.output
    assert len(outbox) == 1
    assert outbox[0].recipients == ["buyer@example.com"]


def test_webhooks_failed_listing(app):
    runner = app.test_cli_runner()
    assert "No failed webhook events" in runner.invoke(args=["webhooks", "failed"]).output

    with app.app_context():
        db.session.add(WebhookEvent(
            stripe_event_id="evt_bad", type="invoice.payment_failed", status="failed", notes="handler_error:KeyError",
        ))
        db.session.add(WebhookEvent(stripe_event_id="evt_ok", type="payment_intent.succeeded", status="processed"))
        db.session.commit()

    result = runner.invoke(args=["webhooks", "failed"])
    assert result.exit_code == 0
    assert "evt_bad" in result.output
    assert "evt_ok" not in result.output
