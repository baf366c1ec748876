from retainr.extensions import db

TEMPLATE_FIRST_FAILURE = "first_failure"
TEMPLATE_RETRY_REMINDER = "retry_reminder"
TEMPLATE_PAYMENT_RECOVERED = "payment_recovered"
TEMPLATE_TYPES = (TEMPLATE_FIRST_FAILURE, TEMPLATE_RETRY_REMINDER, TEMPLATE_PAYMENT_RECOVERED)


class EmailTemplate(db.Model):
    __tablename__ = "email_templates"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    type = db.Column(db.String(32), nullable=False)
    subject = db.Column(db.String(200), nullable=False)
    body = db.Column(db.Text, nullable=False)  # HTML with {{updateLink}} / {{amount}} / {{customerEmail}}
    is_enabled = db.Column(db.Boolean, nullable=False, default=True)

    user = db.relationship("User", back_populates="email_templates")

    __table_args__ = (
        db.Index("ix_email_templates_user_type", "user_id", "type"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "subject": self.subject,
            "body": self.body,
            "is_enabled": bool(self.is_enabled),
        }

    def __repr__(self) -> str:
        return f"<EmailTemplate id={self.id} user={self.user_id} type={self.type!r}>"
