import smtplib

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_wtf import CSRFProtect
from flask_login import LoginManager, current_user
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_mail import Connection, Mail

db = SQLAlchemy()
migrate = Migrate()
csrf = CSRFProtect()
login_manager = LoginManager()


def _rate_limit_key():
    """Per-account buckets for signed-in merchants, per-IP for the public and webhook surface."""
    if current_user.is_authenticated:
        return f"user:{current_user.id}"
    return get_remote_address()


# Storage is configured in create_app() via limiter.init_app(...).
limiter = Limiter(key_func=_rate_limit_key)


class TimeoutConnection(Connection):
    """Flask-Mail connection whose SMTP socket gives up after MAIL_TIMEOUT_SECONDS."""

    def __init__(self, mail, timeout):
        super().__init__(mail)
        self.timeout = timeout

    def configure_host(self):
        smtp = smtplib.SMTP_SSL if self.mail.use_ssl else smtplib.SMTP
        host = smtp(self.mail.server, self.mail.port, timeout=self.timeout)
        host.set_debuglevel(int(self.mail.debug))
        if self.mail.use_tls:
            resp, _ = host.starttls()
            if resp != 220:
                raise smtplib.SMTPException("STARTTLS refused by mail server")
        if self.mail.username and self.mail.password:
            host.login(self.mail.username, self.mail.password)
        return host


class TimeoutMail(Mail):
    def connect(self):
        app = getattr(self, "app", None) or current_app
        return TimeoutConnection(app.extensions["mail"], app.config.get("MAIL_TIMEOUT_SECONDS", 10))


mail = TimeoutMail()
