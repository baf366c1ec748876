from datetime import datetime, timezone
from retainr.extensions import db

STATUS_FAILED = "failed"
STATUS_RECOVERED = "recovered"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FailedPayment(db.Model):
    """One row per Stripe payment intent that failed; re-failures bump attempt_count."""

    __tablename__ = "failed_payments"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)

    stripe_payment_intent_id = db.Column(db.String(64), nullable=False, unique=True, index=True)
    stripe_customer_id = db.Column(db.String(64), nullable=True)
    customer_email = db.Column(db.String(320), nullable=False)

    amount = db.Column(db.Integer, nullable=False)  # minor currency units
    currency = db.Column(db.String(3), nullable=False)

    status = db.Column(db.String(20), nullable=False, default=STATUS_FAILED, index=True)  # failed|recovered
    failure_reason = db.Column(db.Text, nullable=True)
    attempt_count = db.Column(db.Integer, nullable=False, default=1)

    # Drives the reminder poller (services.dunning.run_due_reminders)
    next_retry_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    reminders_sent = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    recovered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", back_populates="failed_payments")
    dunning_logs = db.relationship(
        "DunningLog", back_populates="failed_payment", lazy="dynamic", order_by="DunningLog.id"
    )

    @property
    def is_recovered(self) -> bool:
        return self.status == STATUS_RECOVERED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stripe_payment_intent_id": self.stripe_payment_intent_id,
            "customer_email": self.customer_email,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "failure_reason": self.failure_reason,
            "attempt_count": self.attempt_count,
            "next_retry_at": self.next_retry_at.isoformat() if self.next_retry_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "recovered_at": self.recovered_at.isoformat() if self.recovered_at else None,
        }

    def __repr__(self) -> str:
        return f"<FailedPayment id={self.id} pi={self.stripe_payment_intent_id!r} status={self.status!r}>"
