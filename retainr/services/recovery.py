from __future__ import annotations

from typing import Any, Dict

import stripe
from flask import current_app

from retainr.extensions import db
from retainr.models import FailedPayment
from retainr.observability import log_event
from . import dunning, persistence
from .payments import PaymentGateway


class RecoveryError(Exception):
    """Recovery attempt that the caller should see as an HTTP error."""

    def __init__(self, status_code: int, error: str, **extra: Any):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error, **self.extra}


def payment_summary(payment: FailedPayment) -> Dict[str, Any]:
    """What the public payment page needs; no internal ids beyond the token in the URL."""
    return {
        "amount": payment.amount,
        "currency": payment.currency,
        "amount_display": dunning.format_amount(payment.amount, payment.currency),
        "customer_email": payment.customer_email,
        "status": payment.status,
        "publishable_key": current_app.config.get("STRIPE_PUBLISHABLE_KEY"),
    }


def recover(payment: FailedPayment, payment_method_id: str, gateway: PaymentGateway) -> Dict[str, Any]:
    """
    Make the new payment method the customer's default and retry the original intent.
    Safe to call again after recovery: no processor call, no second notice.
    """
    if payment.is_recovered:
        return {"success": True, "already_recovered": True}

    if not payment.stripe_customer_id:
        raise RecoveryError(409, "no_customer_on_file")

    try:
        gateway.set_default_payment_method(payment.stripe_customer_id, payment_method_id)
        intent = gateway.confirm_payment_intent(payment.stripe_payment_intent_id, payment_method_id)
    except stripe.CardError as exc:
        log_event("recovery_attempt", level="warning", failed_payment_id=payment.id, outcome="card_error")
        raise RecoveryError(402, "card_declined", message=getattr(exc, "user_message", None) or str(exc))
    except Exception:
        # A concurrent attempt or the succeeded webhook may have won while we were calling out
        db.session.refresh(payment)
        if payment.is_recovered:
            return {"success": True, "already_recovered": True}
        current_app.logger.exception("recovery.processor_call_failed", extra={"failed_payment_id": payment.id})
        raise RecoveryError(502, "processor_error")

    status = intent.get("status")
    if status == "succeeded":
        if persistence.mark_recovered(payment.id):
            log_event("payment_recovered", failed_payment_id=payment.id, source="recovery_flow")
            dunning.notify_recovered(payment)
        return {"success": True}

    if status == "processing":
        # payment_intent.succeeded will mark it recovered
        return {"success": True, "pending": True}

    if status == "requires_action":
        raise RecoveryError(402, "requires_action", client_secret=intent.get("client_secret"))

    log_event("recovery_attempt", level="warning", failed_payment_id=payment.id, outcome=status)
    raise RecoveryError(402, "payment_not_completed", status=status)
