import socket
import time

from retainr.extensions import mail
from retainr.services.email import absolute_url, html_to_text, send_email


def test_send_email_hands_message_to_mail(app, outbox):
    with app.app_context():
        assert send_email("buyer@example.com", "Payment failed", "<p>Update your card</p>") is True
    assert len(outbox) == 1
    msg = outbox[0]
    assert msg.recipients == ["buyer@example.com"]
    assert msg.subject == "Payment failed"
    assert msg.html == "<p>Update your card</p>"
    assert msg.body == "Update your card"


def test_send_email_never_raises(app, monkeypatch):
    def _boom(msg):
        raise ConnectionRefusedError("smtp down")

    monkeypatch.setattr(mail, "send", _boom)
    with app.app_context():
        assert send_email("buyer@example.com", "Payment failed", "<p>x</p>") is False


def test_html_to_text():
    html = "<p>Hello</p><p>Your payment of <b>$10.00</b> failed.</p><br/><a href='x'>Fix it</a>"
    assert html_to_text(html) == "Hello\nYour payment of $10.00 failed.\n\nFix it"
    assert html_to_text(None) == ""


def test_absolute_url(app):
    with app.app_context():
        assert absolute_url("/payment/abc") == "http://example.test/payment/abc"
        assert absolute_url("billing/cancelled") == "http://example.test/billing/cancelled"


def test_send_email_gives_up_on_silent_smtp_server(app, monkeypatch):
    # Accepts the TCP connection (kernel backlog) but never sends an SMTP banner
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(1)
    state = app.extensions["mail"]
    monkeypatch.setattr(state, "server", "127.0.0.1")
    monkeypatch.setattr(state, "port", server.getsockname()[1])
    monkeypatch.setattr(state, "use_tls", False)
    monkeypatch.setattr(state, "use_ssl", False)
    monkeypatch.setattr(state, "suppress", False)
    monkeypatch.setitem(app.config, "MAIL_TIMEOUT_SECONDS", 1)

    try:
        with app.app_context():
            start = time.monotonic()
            assert send_email("buyer@example.com", "Payment failed", "<p>x</p>") is False
            assert time.monotonic() - start < 5
    finally:
        server.close()
