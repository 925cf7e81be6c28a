import smtplib

import pytest

from storefront.adapters import mailer
from storefront.adapters.smtp_mailer import SmtpMailerAdapter, render_email

ITEMS = [{"name": "Training Tee", "quantity": 2, "price": "299.00 SEK", "line_total": "598.00 SEK"}]

MAIL_DATA = {
    mailer.ABANDONED_CART: {
        "name": "Rita",
        "items": ITEMS,
        "total": "598.00 SEK",
        "recovery_url": "https://shop.test/cart?recover=web-1",
    },
    mailer.ABANDONED_CHECKOUT: {
        "name": "Rita",
        "items": ITEMS,
        "total": "598.00 SEK",
        "recovery_url": "https://shop.test/checkout?recover=abc",
    },
    mailer.ABANDONED_CHECKOUT_FOLLOWUP: {
        "name": "Rita",
        "items": ITEMS,
        "total": "598.00 SEK",
        "recovery_url": "https://shop.test/checkout?recover=abc",
    },
    mailer.PAYMENT_FAILED: {
        "name": "Rita",
        "order_number": "ORD-77",
        "items": ITEMS,
        "total": "598.00 SEK",
        "retry_url": "https://shop.test/checkout?orderId=ORD-77",
    },
    mailer.DISCOUNT_REMINDER: {
        "name": "Rita",
        "code": "PEAK10-AB12CD",
        "percentage": 10,
        "expires_at": "2026-03-16",
        "days_remaining": 7,
        "shop_url": "https://shop.test",
    },
    mailer.NEWSLETTER_WELCOME: {
        "name": "Rita",
        "code": "PEAK10-AB12CD",
        "percentage": 10,
        "expires_at": "2026-03-16",
        "days_remaining": 14,
        "shop_url": "https://shop.test",
    },
}


class RecordingSMTP:
    sent = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def ehlo(self):
        pass

    def starttls(self):
        pass

    def login(self, user, password):
        pass

    def sendmail(self, sender, recipients, body):
        RecordingSMTP.sent.append((sender, recipients, body))


def _failing_smtp(error):
    class FailingSMTP(RecordingSMTP):
        def sendmail(self, sender, recipients, body):
            raise error

    return FailingSMTP


@pytest.fixture
def adapter():
    return SmtpMailerAdapter(host="smtp.test", port=25, mail_from="Shop <shop@shop.test>")


@pytest.mark.parametrize("kind", sorted(MAIL_DATA))
def test_every_kind_renders(kind):
    html = render_email(kind, **MAIL_DATA[kind])
    assert "Rita" in html
    assert "<html" in html.lower()


def test_rendered_content_carries_links_and_codes():
    html = render_email(mailer.ABANDONED_CART, **MAIL_DATA[mailer.ABANDONED_CART])
    assert "https://shop.test/cart?recover=web-1" in html
    assert "Training Tee" in html

    html = render_email(mailer.NEWSLETTER_WELCOME, **MAIL_DATA[mailer.NEWSLETTER_WELCOME])
    assert "PEAK10-AB12CD" in html


def test_send_delivers_over_smtp(adapter, monkeypatch):
    RecordingSMTP.sent = []
    monkeypatch.setattr(smtplib, "SMTP", RecordingSMTP)

    result = adapter.send(mailer.ABANDONED_CART, "rita@example.com", MAIL_DATA[mailer.ABANDONED_CART])

    assert result.success is True
    assert result.id.endswith("@shop.test>")
    sender, recipients, body = RecordingSMTP.sent[0]
    assert sender == "shop@shop.test"
    assert recipients == ["rita@example.com"]
    assert mailer.SUBJECTS[mailer.ABANDONED_CART] in body


@pytest.mark.parametrize(
    "error",
    [
        smtplib.SMTPRecipientsRefused({"rita@example.com": (550, b"no such user")}),
        smtplib.SMTPServerDisconnected("connection lost"),
        ConnectionRefusedError("refused"),
        TimeoutError("timed out"),
    ],
)
def test_transport_failures_are_returned(adapter, monkeypatch, error):
    monkeypatch.setattr(smtplib, "SMTP", _failing_smtp(error))

    result = adapter.send(mailer.PAYMENT_FAILED, "rita@example.com", MAIL_DATA[mailer.PAYMENT_FAILED])

    assert result.success is False
    assert result.id is None
    assert result.error


def test_missing_template_is_returned(adapter, monkeypatch):
    RecordingSMTP.sent = []
    monkeypatch.setattr(smtplib, "SMTP", RecordingSMTP)

    result = adapter.send("no_such_kind", "rita@example.com", {})

    assert result.success is False
    assert "Template error" in result.error
    assert RecordingSMTP.sent == []


def test_unconfigured_adapter_does_not_connect(monkeypatch):
    monkeypatch.setattr(smtplib, "SMTP", _failing_smtp(AssertionError("must not connect")))

    result = SmtpMailerAdapter(host="", mail_from="").send(mailer.ABANDONED_CART, "rita@example.com", {})

    assert result.success is False
    assert result.error == "SMTP not configured"
