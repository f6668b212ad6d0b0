"""Outbound mail: an injectable sender plus fire-and-forget dispatch."""

from __future__ import annotations

import html
import logging
import smtplib
import ssl
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

from .config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MailMessage:
    to: str
    subject: str
    text_body: str
    html_body: str | None = None


class MailSender(Protocol):
    def send(self, message: MailMessage) -> None: ...


def redact_email(email: str) -> str:
    """Mask an address for logs (``jo***@acme.com``)."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpMailSender:
    """Deliver messages over SMTP, using STARTTLS or implicit TLS."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        user: str | None,
        password: str | None,
        use_tls: bool,
        from_email: str,
        from_name: str = "TalentGate",
        timeout: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._use_tls = use_tls
        self._from_email = from_email
        self._from_name = from_name
        self._timeout = timeout

    def send(self, message: MailMessage) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = f"{self._from_name} <{self._from_email}>"
        msg["To"] = message.to
        msg.attach(MIMEText(message.text_body, "plain"))
        if message.html_body:
            msg.attach(MIMEText(message.html_body, "html"))

        context = ssl.create_default_context()
        if self._use_tls:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
                server.starttls(context=context)
                self._login(server)
                server.sendmail(self._from_email, message.to, msg.as_string())
        else:
            with smtplib.SMTP_SSL(self._host, self._port, context=context, timeout=self._timeout) as server:
                self._login(server)
                server.sendmail(self._from_email, message.to, msg.as_string())
        logger.info("mail sent to=%s subject=%s", redact_email(message.to), message.subject)

    def _login(self, server: smtplib.SMTP) -> None:
        if self._user and self._password:
            server.login(self._user, self._password)


class LoggingMailSender:
    """Development sender that only logs what would have been delivered."""

    def send(self, message: MailMessage) -> None:
        logger.info(
            "mail not configured, skipping delivery to=%s subject=%s preview=%s",
            redact_email(message.to),
            message.subject,
            message.text_body[:200],
        )


def build_mail_sender(settings: Settings) -> MailSender:
    if not settings.smtp_host:
        return LoggingMailSender()
    return SmtpMailSender(
        host=settings.smtp_host,
        port=settings.smtp_port,
        user=settings.smtp_user or None,
        password=settings.smtp_password or None,
        use_tls=settings.smtp_use_tls,
        from_email=settings.mail_from,
    )


class MailDispatcher:
    """Send mail outside the caller's critical path.

    With an executor, delivery runs on a worker thread; without one, it runs
    inline. Either way a delivery failure is logged and never raised.
    """

    def __init__(self, sender: MailSender, executor: Executor | None = None) -> None:
        self._sender = sender
        self._executor = executor

    def dispatch(self, message: MailMessage) -> Future | None:
        if self._executor is None:
            self._deliver(message)
            return None
        return self._executor.submit(self._deliver, message)

    def _deliver(self, message: MailMessage) -> None:
        try:
            self._sender.send(message)
        except Exception:
            logger.warning(
                "mail delivery failed to=%s subject=%s",
                redact_email(message.to),
                message.subject,
                exc_info=True,
            )


def invitation_message(
    *, to: str, company_name: str, inviter_name: str, role_name: str, token: str, frontend_url: str
) -> MailMessage:
    link = f"{frontend_url}/accept-invitation?token={token}"
    return MailMessage(
        to=to,
        subject=f"You're invited to join {company_name} on TalentGate",
        text_body=(
            f"{inviter_name} has invited you to join {company_name} as {role_name}.\n\n"
            f"Accept the invitation and set your password:\n{link}\n"
        ),
        html_body=(
            f"<p>{html.escape(inviter_name)} has invited you to join "
            f"<strong>{html.escape(company_name)}</strong> as {html.escape(role_name)}.</p>"
            f'<p><a href="{html.escape(link)}">Accept invitation</a></p>'
        ),
    )


def password_reset_message(*, to: str, token: str, frontend_url: str, ttl_minutes: int) -> MailMessage:
    link = f"{frontend_url}/reset-password?token={token}"
    return MailMessage(
        to=to,
        subject="Reset your TalentGate password",
        text_body=(
            f"Use the link below to reset your password. It expires in {ttl_minutes} minutes.\n\n{link}\n\n"
            "If you did not request a reset you can ignore this message.\n"
        ),
        html_body=(
            f'<p>Reset your password: <a href="{html.escape(link)}">{html.escape(link)}</a></p>'
            f"<p>Expires in {ttl_minutes} minutes.</p>"
        ),
    )


def verification_message(*, to: str, first_name: str | None, token: str, frontend_url: str) -> MailMessage:
    link = f"{frontend_url}/verify-email?token={token}"
    greeting = f"Hi {first_name}," if first_name else "Hi,"
    return MailMessage(
        to=to,
        subject="Verify your TalentGate email address",
        text_body=f"{greeting}\n\nConfirm your email address to finish setting up your account:\n{link}\n",
        html_body=f'<p>{html.escape(greeting)}</p><p><a href="{html.escape(link)}">Verify email address</a></p>',
    )


def payment_confirmation_message(
    *, to: str, company_name: str, plan: str, amount: int, currency: str, payment_id: str, period_end: str
) -> MailMessage:
    return MailMessage(
        to=to,
        subject=f"Payment received - {company_name} subscription is active",
        text_body=(
            f"We received your payment of {amount} {currency} for the {plan} plan.\n"
            f"Payment reference: {payment_id}\n"
            f"Your subscription is active until {period_end}.\n"
        ),
    )
