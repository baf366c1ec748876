from retainr.extensions import db
from .failed_payment import utcnow


class DunningLog(db.Model):
    __tablename__ = "dunning_logs"

    id = db.Column(db.Integer, primary_key=True)
    failed_payment_id = db.Column(
        db.Integer, db.ForeignKey("failed_payments.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    email_template = db.Column(db.String(32), nullable=False)  # template type used
    status = db.Column(db.String(20), nullable=False, default="sent")  # sent|failed
    sent_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    failed_payment = db.relationship("FailedPayment", back_populates="dunning_logs")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "failed_payment_id": self.failed_payment_id,
            "email_template": self.email_template,
            "status": self.status,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }

    def __repr__(self) -> str:
        return f"<DunningLog id={self.id} payment={self.failed_payment_id} status={self.status}>"
