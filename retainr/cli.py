from datetime import datetime, timezone

import click
from flask.cli import with_appcontext

from retainr.extensions import db
from retainr.models import User, WebhookEvent
from retainr.models.webhook_event import EVENT_FAILED
from retainr.services.dunning import run_due_reminders, seed_default_templates
from retainr.utils.validators import registration_errors


def _user_by_email(email: str) -> User:
    user = db.session.query(User).filter_by(email=email.strip().lower()).one_or_none()
    if not user:
        raise click.ClickException("User not found")
    return user


@click.group()
def users():
    """User management."""


@users.command("create")
@click.option("--email", required=True)
@click.option("--username", required=True)
@click.option("--password", required=True)
@click.option("--stripe-account", default=None, help="Connected Stripe account id (acct_...)")
@with_appcontext
def users_create(email, username, password, stripe_account):
    email = email.strip().lower()
    errors = registration_errors(email, username, password)
    if errors:
        raise click.ClickException(" ".join(errors))
    if db.session.query(User).filter((User.email == email) | (User.username == username)).count():
        raise click.ClickException("User already exists")

    user = User(email=email, username=username, stripe_account_id=stripe_account, is_connected=bool(stripe_account))
    user.set_password(password)
    db.session.add(user)
    db.session.flush()
    seed_default_templates(user.id)
    db.session.commit()

    click.echo(f"User created id={user.id} email={user.email}")


@click.group()
def templates():
    """Email template ops."""


@templates.command("seed")
@click.option("--email", required=True)
@with_appcontext
def templates_seed(email):
    user = _user_by_email(email)
    added = seed_default_templates(user.id)
    db.session.commit()
    click.echo(f"Seeded {added} template(s) for {user.email}")


@click.group()
def dunning():
    """Dunning jobs (run from cron)."""


@dunning.command("run-due")
@with_appcontext
def dunning_run_due():
    counts = run_due_reminders(now=datetime.now(timezone.utc))
    click.echo(
        f"due={counts['due']} sent={counts['sent']} failed={counts['failed']} skipped={counts['skipped']}"
    )


@click.group()
def webhooks():
    """Webhook audit."""


@webhooks.command("failed")
@click.option("--limit", type=int, default=50)
@with_appcontext
def webhooks_failed(limit):
    rows = (
        WebhookEvent.query.filter_by(status=EVENT_FAILED)
        .order_by(WebhookEvent.id.desc())
        .limit(limit)
        .all()
    )
    if not rows:
        click.echo("No failed webhook events")
        return
    for row in rows:
        click.echo(f"{row.stripe_event_id}\t{row.type}\tdeliveries={row.deliveries}\t{row.notes or ''}")


def register_cli(app):
    app.cli.add_command(users)
    app.cli.add_command(templates)
    app.cli.add_command(dunning)
    app.cli.add_command(webhooks)
