from .user import User
from .failed_payment import FailedPayment
from .dunning_log import DunningLog
from .email_template import EmailTemplate
from .webhook_event import WebhookEvent

__all__ = ["User", "FailedPayment", "DunningLog", "EmailTemplate", "WebhookEvent"]
