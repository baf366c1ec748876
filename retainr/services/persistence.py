from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from retainr.extensions import db
from retainr.models import FailedPayment
from retainr.models.failed_payment import STATUS_FAILED, STATUS_RECOVERED, utcnow


def record_failure(
    *,
    user_id: int,
    payment_intent_id: str,
    customer_id: Optional[str],
    customer_email: str,
    amount: int,
    currency: str,
    failure_reason: Optional[str],
    retry_interval: timedelta,
) -> Tuple[FailedPayment, bool]:
    """
    Idempotent upsert keyed by payment intent id.
    Returns (row, created). A known intent only gets its attempt_count bumped.
    """
    existing = FailedPayment.query.filter_by(stripe_payment_intent_id=payment_intent_id).first()
    if existing is not None:
        increment_attempt(payment_intent_id)
        return existing, False

    now = utcnow()
    row = FailedPayment(
        user_id=user_id,
        stripe_payment_intent_id=payment_intent_id,
        stripe_customer_id=customer_id,
        customer_email=customer_email,
        amount=amount,
        currency=(currency or "").lower(),
        status=STATUS_FAILED,
        failure_reason=failure_reason,
        attempt_count=1,
        next_retry_at=now + retry_interval,
        created_at=now,
    )
    db.session.add(row)
    try:
        db.session.commit()
    except IntegrityError:
        # A concurrent delivery inserted the same intent first
        db.session.rollback()
        increment_attempt(payment_intent_id)
        return FailedPayment.query.filter_by(stripe_payment_intent_id=payment_intent_id).one(), False
    return row, True


def increment_attempt(payment_intent_id: str) -> None:
    """attempt_count + 1 evaluated in SQL so concurrent redeliveries don't lose updates."""
    db.session.execute(
        update(FailedPayment)
        .where(FailedPayment.stripe_payment_intent_id == payment_intent_id)
        .values(attempt_count=FailedPayment.attempt_count + 1)
    )
    db.session.commit()


def mark_recovered(payment_id: int, now: Optional[datetime] = None) -> bool:
    """
    Compare-and-set failed -> recovered. True only for the caller that made the transition;
    the webhook and the recovery endpoint may race here.
    """
    result = db.session.execute(
        update(FailedPayment)
        .where(FailedPayment.id == payment_id, FailedPayment.status == STATUS_FAILED)
        .values(status=STATUS_RECOVERED, recovered_at=now or utcnow(), next_retry_at=None)
    )
    db.session.commit()
    return result.rowcount == 1
