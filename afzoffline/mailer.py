"""Mail transport for contact and newsletter notifications."""

import html
import logging
import re
import smtplib
import time
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid

from .config import SmtpConfig

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")
_BREAK_RE = re.compile(r"<br\s*/?>|</p>|</h\d>", re.IGNORECASE)


class MailError(Exception):
    """Raised when a message could not be handed to the mail server."""

    pass


@dataclass(frozen=True)
class EmailMessage:
    """A single HTML email."""

    from_addr: str
    to_addr: str
    subject: str
    html_body: str


def html_to_text(body: str) -> str:
    """Rough plain-text rendering of an HTML body for the text/plain part."""
    text = _BREAK_RE.sub("\n", body)
    text = _TAG_RE.sub("", text)
    lines = [line.strip() for line in html.unescape(text).splitlines()]
    return "\n".join(line for line in lines if line)


class Mailer:
    """Sends email over SMTP, or only logs it in development mode.

    Development mode is used when SMTP is disabled or credentials are
    missing; the message is logged and a ``dev_<millis>`` id is returned.
    """

    def __init__(self, config: SmtpConfig) -> None:
        self._config = config

    @property
    def is_development(self) -> bool:
        return self._config.is_development

    def send(self, message: EmailMessage) -> str:
        """Deliver a message and return its message id.

        Raises:
            MailError: If the SMTP exchange fails.
        """
        if self.is_development:
            return self._simulate(message)

        message_id = make_msgid(domain=message.from_addr.rpartition("@")[2] or None)

        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = message.from_addr
        msg["To"] = message.to_addr
        msg["Message-ID"] = message_id

        msg.attach(MIMEText(html_to_text(message.html_body), "plain"))
        msg.attach(MIMEText(message.html_body, "html"))

        smtp = self._config
        try:
            server = smtplib.SMTP(smtp.host, smtp.port, timeout=30)
            try:
                if smtp.use_tls:
                    server.starttls()
                if smtp.username and smtp.password:
                    server.login(smtp.username, smtp.password)
                server.sendmail(message.from_addr, [message.to_addr], msg.as_string())
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email to %s failed: %s", message.to_addr, e)
            raise MailError(f"Failed to send email to {message.to_addr}: {e}")

        logger.info("Email sent to %s (%s)", message.to_addr, message_id)
        return message_id

    def _simulate(self, message: EmailMessage) -> str:
        logger.info(
            "Email simulation (development mode)\nFrom: %s\nTo: %s\nSubject: %s\nContent: %s",
            message.from_addr,
            message.to_addr,
            message.subject,
            message.html_body,
        )
        return f"dev_{int(time.time() * 1000)}"

    def verify(self) -> bool:
        """Check that the SMTP server accepts a connection and our login."""
        if self.is_development:
            logger.warning("SMTP is not configured, running in development mode")
            return False

        smtp = self._config
        try:
            server = smtplib.SMTP(smtp.host, smtp.port, timeout=30)
            try:
                if smtp.use_tls:
                    server.starttls()
                server.login(smtp.username, smtp.password)
                server.noop()
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email service connection failed: %s", e)
            return False

        logger.info("Email service connected successfully")
        return True
