from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Dict, Optional

from flask import current_app
from sqlalchemy import update

from retainr.extensions import db
from retainr.models import DunningLog, EmailTemplate, FailedPayment
from retainr.models.email_template import (
    TEMPLATE_FIRST_FAILURE,
    TEMPLATE_PAYMENT_RECOVERED,
    TEMPLATE_RETRY_REMINDER,
)
from retainr.models.failed_payment import STATUS_FAILED, utcnow
from retainr.observability import log_event
from . import email as email_service
from . import tokens

Sender = Callable[[str, str, str], bool]

RECOVERY_TOKEN_KIND = "recover"

CURRENCY_SYMBOLS = {
    "usd": "$",
    "cad": "$",
    "aud": "$",
    "nzd": "$",
    "eur": "€",
    "gbp": "£",
    "inr": "₹",
}

DEFAULT_TEMPLATES = {
    TEMPLATE_FIRST_FAILURE: (
        "Your payment didn't go through",
        "<p>Hi {{customerEmail}},</p>"
        "<p>We couldn't process your payment of {{amount}}.</p>"
        "<p><a href=\"{{updateLink}}\">Update your payment method</a> and we'll retry it right away.</p>",
    ),
    TEMPLATE_RETRY_REMINDER: (
        "Reminder: your payment of {{amount}} is still outstanding",
        "<p>Hi {{customerEmail}},</p>"
        "<p>Your payment of {{amount}} still needs attention.</p>"
        "<p><a href=\"{{updateLink}}\">Update your payment method</a></p>",
    ),
    TEMPLATE_PAYMENT_RECOVERED: (
        "Payment received, thank you",
        "<p>Hi {{customerEmail}},</p><p>Your payment of {{amount}} went through. Thanks!</p>",
    ),
}


def format_amount(amount: int, currency: str) -> str:
    """4999, 'usd' -> '$49.99'. Unknown currencies fall back to 'SEK 49.99'."""
    major = (Decimal(int(amount or 0)) / 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    code = (currency or "").lower()
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol is None:
        return f"{code.upper()} {major}"
    return f"{symbol}{major}"


def recovery_token(payment: FailedPayment) -> str:
    return tokens.generate(RECOVERY_TOKEN_KIND, payment.id)


def payment_for_token(token: str) -> Optional[FailedPayment]:
    max_age = int(current_app.config.get("RECOVERY_LINK_MAX_AGE_DAYS", 30)) * 86400
    payment_id = tokens.verify(RECOVERY_TOKEN_KIND, token, max_age_seconds=max_age)
    if not isinstance(payment_id, int):
        return None
    return db.session.get(FailedPayment, payment_id)


def recovery_url(payment: FailedPayment) -> str:
    return email_service.absolute_url(f"payment/{recovery_token(payment)}")


def render(text: str, payment: FailedPayment, update_link: str) -> str:
    # Plain token replacement: bodies are user-authored, never fed to Jinja
    return (
        text.replace("{{updateLink}}", update_link)
        .replace("{{amount}}", format_amount(payment.amount, payment.currency))
        .replace("{{customerEmail}}", payment.customer_email)
    )


def active_template(user_id: int, template_type: str) -> Optional[EmailTemplate]:
    return (
        EmailTemplate.query.filter_by(user_id=user_id, type=template_type, is_enabled=True)
        .order_by(EmailTemplate.id.desc())
        .first()
    )


def enable_exclusively(template: EmailTemplate) -> None:
    """Keep at most one enabled template per (user, type)."""
    db.session.execute(
        update(EmailTemplate)
        .where(
            EmailTemplate.user_id == template.user_id,
            EmailTemplate.type == template.type,
            EmailTemplate.id != template.id,
        )
        .values(is_enabled=False)
    )
    template.is_enabled = True


def seed_default_templates(user_id: int) -> int:
    """Install any missing default template types for a user. Returns how many were added."""
    added = 0
    for template_type, (subject, body) in DEFAULT_TEMPLATES.items():
        if EmailTemplate.query.filter_by(user_id=user_id, type=template_type).first():
            continue
        db.session.add(EmailTemplate(user_id=user_id, type=template_type, subject=subject, body=body, is_enabled=True))
        added += 1
    return added


def _deliver(payment: FailedPayment, template: EmailTemplate, sender: Optional[Sender]) -> DunningLog:
    sender = sender or email_service.send_email
    link = recovery_url(payment)
    subject = render(template.subject, payment, link)
    body = render(template.body, payment, link)

    delivered = sender(payment.customer_email, subject, body)

    entry = DunningLog(
        failed_payment_id=payment.id,
        email_template=template.type,
        status="sent" if delivered else "failed",
    )
    db.session.add(entry)
    db.session.commit()

    log_event(
        "dunning_email",
        level="info" if delivered else "warning",
        failed_payment_id=payment.id,
        template=template.type,
        outcome=entry.status,
    )
    return entry


def notify_failure(failed_payment_id: int, user_id: int, sender: Optional[Sender] = None) -> Optional[DunningLog]:
    """First dunning email for a new failure. No enabled template means the account opted out."""
    payment = db.session.get(FailedPayment, failed_payment_id)
    if payment is None:
        return None

    template = active_template(user_id, TEMPLATE_FIRST_FAILURE)
    if template is None:
        log_event("dunning_email", failed_payment_id=payment.id, template=TEMPLATE_FIRST_FAILURE, outcome="no_template")
        return None

    return _deliver(payment, template, sender)


def notify_recovered(payment: FailedPayment, sender: Optional[Sender] = None) -> Optional[DunningLog]:
    """Only call after winning persistence.mark_recovered, so the notice goes out once."""
    template = active_template(payment.user_id, TEMPLATE_PAYMENT_RECOVERED)
    if template is None:
        return None
    return _deliver(payment, template, sender)


def run_due_reminders(now: Optional[datetime] = None, sender: Optional[Sender] = None) -> Dict[str, int]:
    """
    Reminder poller over next_retry_at. Each due payment gets one reminder cycle:
    send the retry_reminder template if enabled, then reschedule or stop after the max.
    """
    now = now or utcnow()
    interval = timedelta(hours=int(current_app.config.get("DUNNING_RETRY_INTERVAL_HOURS", 24)))
    max_reminders = int(current_app.config.get("DUNNING_MAX_REMINDERS", 3))

    due = (
        FailedPayment.query.filter(
            FailedPayment.status == STATUS_FAILED,
            FailedPayment.next_retry_at.isnot(None),
            FailedPayment.next_retry_at <= now,
        )
        .order_by(FailedPayment.id)
        .all()
    )

    counts = {"due": len(due), "sent": 0, "failed": 0, "skipped": 0}
    for payment in due:
        template = active_template(payment.user_id, TEMPLATE_RETRY_REMINDER)
        if template is None:
            counts["skipped"] += 1
        else:
            entry = _deliver(payment, template, sender)
            counts[entry.status] += 1

        payment.reminders_sent = (payment.reminders_sent or 0) + 1
        payment.next_retry_at = None if payment.reminders_sent >= max_reminders else now + interval
        db.session.commit()

    log_event("dunning_reminders", **counts)
    return counts
