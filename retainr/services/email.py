import re
import time
from urllib.parse import urljoin

from flask import current_app
from flask_mail import Message

from retainr.extensions import mail
from retainr.observability import log_event

_TAG_RE = re.compile(r"<[^>]+>")
_BLANK_RE = re.compile(r"\n\s*\n+")


def absolute_url(path: str) -> str:
    base = current_app.config["APP_BASE_URL"].rstrip("/") + "/"
    path = path.lstrip("/")
    return urljoin(base, path)


def html_to_text(html: str) -> str:
    """Plaintext alternative for clients that skip HTML; tags dropped, blank runs collapsed."""
    text = re.sub(r"<br\s*/?>|</p>", "\n", html or "", flags=re.IGNORECASE)
    text = _TAG_RE.sub("", text)
    return _BLANK_RE.sub("\n\n", text).strip()


def send_email(to_email: str, subject: str, html: str) -> bool:
    """
    Hand one HTML message to the mail provider.
    Returns True when accepted, False on any error; never raises.
    """
    start = time.perf_counter()
    try:
        msg = Message(recipients=[to_email], subject=subject)
        msg.html = html
        msg.body = html_to_text(html)
        mail.send(msg)
    except Exception as ex:
        log_event(
            "mail_send",
            level="warning",
            to=to_email,
            subject=subject,
            outcome="error",
            error=f"{type(ex).__name__}: {ex}",
            latency_ms=int((time.perf_counter() - start) * 1000),
        )
        return False

    log_event(
        "mail_send",
        to=to_email,
        subject=subject,
        outcome="sent",
        latency_ms=int((time.perf_counter() - start) * 1000),
    )
    return True
