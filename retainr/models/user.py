from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from sqlalchemy import func
from retainr.extensions import db, login_manager

SUBSCRIPTION_TRIAL = "trial"
SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_PAST_DUE = "past_due"
SUBSCRIPTION_CANCELED = "canceled"


class User(db.Model, UserMixin):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    username = db.Column(db.String(64), nullable=False, unique=True)
    password_hash = db.Column(db.String(255), nullable=False)

    # Connected Stripe account whose payment intents we watch (PaymentIntent.on_behalf_of)
    stripe_account_id = db.Column(db.String(64), nullable=True, unique=True, index=True)
    is_connected = db.Column(db.Boolean, nullable=False, default=False)

    # Our own subscription with the account holder
    stripe_customer_id = db.Column(db.String(64), nullable=True, index=True)
    subscription_status = db.Column(db.String(20), nullable=False, default=SUBSCRIPTION_TRIAL)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    failed_payments = db.relationship("FailedPayment", back_populates="user", lazy="dynamic")
    email_templates = db.relationship("EmailTemplate", back_populates="user", lazy="dynamic")

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def get_id(self) -> str:
        return str(self.id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "stripe_account_id": self.stripe_account_id,
            "is_connected": bool(self.is_connected),
            "subscription_status": self.subscription_status,
        }

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r}>"


@login_manager.user_loader
def load_user(user_id: str):
    try:
        return db.session.get(User, int(user_id))
    except Exception:
        return None
