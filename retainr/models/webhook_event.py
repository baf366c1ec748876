from retainr.extensions import db
from .failed_payment import utcnow

EVENT_RECEIVED = "received"
EVENT_PROCESSED = "processed"
EVENT_SKIPPED = "skipped"
EVENT_FAILED = "failed"


class WebhookEvent(db.Model):
    """Audit row per verified Stripe delivery; status=failed rows are the dead-letter queue."""

    __tablename__ = "webhook_events"

    id = db.Column(db.Integer, primary_key=True)
    stripe_event_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    type = db.Column(db.String(80), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default=EVENT_RECEIVED, index=True)
    deliveries = db.Column(db.Integer, nullable=False, default=1)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<WebhookEvent {self.stripe_event_id} ({self.type}) status={self.status}>"
