"""
core/mailer.py -- Outbound email adapters.

Two implementations share one send() signature:
  SMTPMailer    -- smtplib over SSL (port 465) or STARTTLS (any other port).
  LoggingMailer -- writes the message to the log. Used when SMTP is not
                   configured. With keep_outbox=True (tests only) it also
                   keeps every message, which is how a test reads an OTP
                   or reset link. The default keeps nothing, so codes and
                   links never pile up in process memory.

build_mailer() picks one from Settings. Services receive the mailer through
their constructor; nothing here is a module-level singleton.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from core.config import Settings

logger = logging.getLogger("gatekeeper.mailer")


@dataclass
class OutgoingMail:
    to: str
    subject: str
    html_body: str
    text_body: str


class SMTPMailer:
    def __init__(self, host: str, port: int, user: str, password: str, sender: str) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender

    def send(self, to: str, subject: str, html_body: str, text_body: str | None = None) -> bool:
        """Send one message. Returns False (and logs) on any SMTP failure."""
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        msg.attach(MIMEText(text_body or html_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))
        try:
            if self.port == 465:
                with smtplib.SMTP_SSL(self.host, self.port, context=ssl.create_default_context()) as server:
                    server.login(self.user, self.password)
                    server.sendmail(self.sender, [to], msg.as_string())
            else:
                with smtplib.SMTP(self.host, self.port) as server:
                    server.ehlo()
                    server.starttls(context=ssl.create_default_context())
                    server.login(self.user, self.password)
                    server.sendmail(self.sender, [to], msg.as_string())
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send mail to %s", to)
            return False
        logger.info("Mail sent to %s (%s)", to, subject)
        return True


@dataclass
class LoggingMailer:
    keep_outbox: bool = False
    outbox: list[OutgoingMail] = field(default_factory=list)

    def send(self, to: str, subject: str, html_body: str, text_body: str | None = None) -> bool:
        if self.keep_outbox:
            self.outbox.append(
                OutgoingMail(to=to, subject=subject, html_body=html_body, text_body=text_body or html_body)
            )
        logger.info("SMTP not configured; mail to %s logged only (%s)", to, subject)
        return True

    def last_to(self, to: str) -> OutgoingMail | None:
        """Most recent message addressed to `to`, or None."""
        for mail in reversed(self.outbox):
            if mail.to == to:
                return mail
        return None


def build_mailer(settings: Settings) -> SMTPMailer | LoggingMailer:
    if settings.smtp_host and settings.smtp_user and settings.smtp_password:
        return SMTPMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            sender=settings.smtp_from or settings.smtp_user,
        )
    return LoggingMailer()
