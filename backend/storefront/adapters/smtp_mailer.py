import logging
import os
import smtplib
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, parseaddr
from typing import Dict, Optional

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from storefront.adapters.mailer import SUBJECTS, SendResult

log = logging.getLogger("storefront.mailer")

_templates_dir = os.path.join(os.path.dirname(__file__), "..", "templates")
_jinja_env = Environment(
    loader=FileSystemLoader(_templates_dir),
    autoescape=select_autoescape(["html", "xml"]),
)

APP_NAME = os.getenv("APP_NAME", "Storefront")


def render_email(kind: str, **context) -> str:
    base = {"app_name": APP_NAME}
    base.update(context or {})
    return _jinja_env.get_template(f"{kind}.html").render(**base)


class SmtpMailerAdapter:
    """Renders templates/<kind>.html and sends it over SMTP. Never raises."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        user: str = "",
        password: str = "",
        mail_from: str = "",
        timeout: float = 15.0,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.mail_from = mail_from
        self.timeout = timeout

    def _message(self, kind: str, to_addr: str, html: str, subject: Optional[str]):
        sender = parseaddr(self.mail_from)[1] or self.mail_from
        domain = sender.split("@")[-1] if "@" in sender else "localhost"
        message_id = f"<{uuid.uuid4()}@{domain}>"

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject or SUBJECTS.get(kind, APP_NAME)
        msg["From"] = self.mail_from
        msg["To"] = to_addr
        msg["Message-ID"] = message_id
        msg["Date"] = formatdate(usegmt=True)
        msg.attach(MIMEText("Open this message in an HTML-capable email client.", "plain", _charset="utf-8"))
        msg.attach(MIMEText(html, "html", _charset="utf-8"))
        return msg, message_id

    def send(self, kind: str, address: str, data: Optional[Dict] = None) -> SendResult:
        if not self.host or not self.mail_from:
            log.error("SMTP not configured; cannot send %s", kind)
            return SendResult(success=False, error="SMTP not configured")
        data = dict(data or {})
        try:
            html = render_email(kind, **data)
        except TemplateError as e:
            log.error("template %s failed to render: %s", kind, e)
            return SendResult(success=False, error=f"Template error: {e}")

        msg, message_id = self._message(kind, address, html, data.get("subject"))
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.ehlo()
                if self.port == 587:
                    server.starttls()
                    server.ehlo()
                if self.user:
                    server.login(self.user, self.password)
                server.sendmail(parseaddr(self.mail_from)[1], [address], msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            log.error("SMTP send of %s to %s failed: %s", kind, address, e)
            return SendResult(success=False, error=str(e))
        return SendResult(success=True, id=message_id)

    def health_check(self) -> bool:
        return bool(self.host and self.mail_from)
