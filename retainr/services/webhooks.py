"""
Stripe event handlers.

Each handler takes the event's data.object (a plain dict) and the payment gateway.
Raising SkipEvent means "understood, nothing to do": the route acknowledges it and
records the note. Any other exception is a processing failure (dead-lettered).
"""
from __future__ import annotations

from datetime import timedelta
from typing import Any, Callable, Dict, Optional

from flask import current_app

from retainr.extensions import db
from retainr.models import FailedPayment, User
from retainr.models.user import (
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_CANCELED,
    SUBSCRIPTION_PAST_DUE,
    SUBSCRIPTION_TRIAL,
)
from retainr.observability import log_event
from . import dunning, persistence
from .payments import PaymentGateway


class SkipEvent(Exception):
    """Event acknowledged without a state change."""


# Stripe subscription.status -> User.subscription_status; unlisted statuses leave the account as is
_SUBSCRIPTION_STATUS_MAP = {
    "trialing": SUBSCRIPTION_TRIAL,
    "active": SUBSCRIPTION_ACTIVE,
    "past_due": SUBSCRIPTION_PAST_DUE,
    "unpaid": SUBSCRIPTION_PAST_DUE,
    "canceled": SUBSCRIPTION_CANCELED,
    "incomplete_expired": SUBSCRIPTION_CANCELED,
}


def _id(value: Any) -> Optional[str]:
    """Expandable Stripe fields arrive either as an id string or as the expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def handle_payment_failed(intent: Dict[str, Any], gateway: PaymentGateway) -> None:
    intent_id = intent.get("id")
    account_id = _id(intent.get("on_behalf_of"))
    if not account_id:
        raise SkipEvent("no_connected_account")

    user = User.query.filter_by(stripe_account_id=account_id).first()
    if user is None:
        raise SkipEvent("user_not_found")

    customer_id = _id(intent.get("customer"))
    customer_email = intent.get("receipt_email")
    if not customer_email and customer_id:
        customer_email = gateway.customer_email(customer_id)
    if not customer_email:
        raise SkipEvent("no_customer_email")

    error = intent.get("last_payment_error") or {}
    interval = timedelta(hours=int(current_app.config.get("DUNNING_RETRY_INTERVAL_HOURS", 24)))

    payment, created = persistence.record_failure(
        user_id=user.id,
        payment_intent_id=intent_id,
        customer_id=customer_id,
        customer_email=customer_email,
        amount=int(intent.get("amount") or 0),
        currency=intent.get("currency") or "usd",
        failure_reason=error.get("message"),
        retry_interval=interval,
    )
    if not created:
        # Already tracked: the first delivery sent the email
        log_event("failed_payment_repeat", failed_payment_id=payment.id, payment_intent=intent_id)
        return

    log_event("failed_payment_created", failed_payment_id=payment.id, payment_intent=intent_id, user_id=user.id)
    dunning.notify_failure(payment.id, user.id)


def handle_payment_succeeded(intent: Dict[str, Any], gateway: PaymentGateway) -> None:
    payment = FailedPayment.query.filter_by(stripe_payment_intent_id=intent.get("id")).first()
    if payment is None:
        raise SkipEvent("untracked_payment_intent")

    if not persistence.mark_recovered(payment.id):
        raise SkipEvent("already_recovered")

    log_event("payment_recovered", failed_payment_id=payment.id, source="webhook")
    dunning.notify_recovered(payment)


def _user_from_reference(obj: Dict[str, Any]) -> Optional[User]:
    raw = obj.get("client_reference_id") or (obj.get("metadata") or {}).get("user_id")
    if raw:
        try:
            return db.session.get(User, int(raw))
        except (TypeError, ValueError):
            return None
    customer_id = _id(obj.get("customer"))
    if customer_id:
        return User.query.filter_by(stripe_customer_id=customer_id).first()
    return None


def handle_checkout_completed(session: Dict[str, Any], gateway: PaymentGateway) -> None:
    user = _user_from_reference(session)
    if user is None:
        raise SkipEvent("user_not_found")

    user.subscription_status = SUBSCRIPTION_ACTIVE
    customer_id = _id(session.get("customer"))
    if customer_id:
        user.stripe_customer_id = customer_id
    db.session.commit()
    log_event("subscription_activated", user_id=user.id)


def handle_subscription_changed(subscription: Dict[str, Any], gateway: PaymentGateway) -> None:
    user = _user_from_reference(subscription)
    if user is None:
        raise SkipEvent("user_not_found")

    status = _SUBSCRIPTION_STATUS_MAP.get(subscription.get("status") or "")
    if status is None:
        raise SkipEvent(f"unmapped_status:{subscription.get('status')}")

    user.subscription_status = status
    db.session.commit()
    log_event("subscription_status", user_id=user.id, status=status)


HANDLERS: Dict[str, Callable[[Dict[str, Any], PaymentGateway], None]] = {
    "payment_intent.payment_failed": handle_payment_failed,
    "payment_intent.succeeded": handle_payment_succeeded,
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.updated": handle_subscription_changed,
    "customer.subscription.deleted": handle_subscription_changed,
}


def handle_event(event: Dict[str, Any], gateway: PaymentGateway) -> None:
    handler = HANDLERS.get(event.get("type") or "")
    if handler is None:
        raise SkipEvent("unhandled_type")
    obj = (event.get("data") or {}).get("object") or {}
    handler(obj, gateway)
