from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate
from html import escape as html_escape
from typing import Any

import boto3
import resend
from botocore.exceptions import BotoCoreError, ClientError

from otp_service.core.config import settings

logger = logging.getLogger(__name__)


class EmailNotConfiguredError(RuntimeError):
    pass


class EmailDeliveryError(RuntimeError):
    """
    Raised when a provider is configured but delivery fails.
    Message is safe to surface to clients.
    """


SUPPORTED_PROVIDERS = {"resend", "ses", "smtp"}


def _normalize_provider(raw: str | None) -> str:
    provider = (raw or "").strip().lower()
    if not provider:
        return "resend"
    if provider == "gmail":
        return "smtp"
    if provider in SUPPORTED_PROVIDERS:
        return provider
    raise EmailNotConfiguredError(
        f"Unsupported EMAIL_PROVIDER={provider!r}. Supported: resend (default), ses, smtp."
    )


def _require_from_email() -> str:
    if not settings.FROM_EMAIL:
        raise EmailNotConfiguredError("FROM_EMAIL is not set")
    return settings.FROM_EMAIL


def render_otp_email(code: str, expires_minutes: int) -> tuple[str, str, str]:
    """Return (subject, text_body, html_body) for a verification code email."""
    brand = settings.EMAIL_BRAND_NAME
    expires_text = f"{expires_minutes} minute{'s' if expires_minutes != 1 else ''}"
    subject = f"Your {brand} verification code"

    text_body = f"""
Verify your {brand} email

Enter this code to finish signing in (expires in {expires_text}):

{code}

If you didn't request this, ignore the message.
""".strip()

    html_body = f"""
    <html>
      <body style="font-family: Arial, sans-serif; padding: 24px;">
        <div style="max-width: 520px; margin: 0 auto;">
          <h2 style="margin-top: 0;">Verify your email</h2>
          <p>Enter the code below to finish signing in to {html_escape(brand)}. It expires in {expires_text}.</p>
          <div style="margin: 24px 0; font-size: 32px; letter-spacing: 8px; text-align: center;">
            {html_escape(code)}
          </div>
          <p style="color: #64748b;">Didn't request this? You can ignore this message.</p>
        </div>
      </body>
    </html>
    """.strip()
    return subject, text_body, html_body


def _send_resend(to_email: str, subject: str, text_body: str, html_body: str) -> str | None:
    api_key = (settings.RESEND_API_KEY or "").strip()
    if not api_key:
        raise EmailNotConfiguredError("RESEND_API_KEY is not set")
    payload: dict[str, Any] = {
        "from": _require_from_email(),
        "to": [to_email],
        "subject": subject,
        "text": text_body,
        "html": html_body,
    }
    try:
        resend.api_key = api_key
        res = resend.Emails.send(payload)  # type: ignore[attr-defined]
    except Exception as exc:  # noqa: BLE001 - resend raises SDK-specific errors
        raise EmailDeliveryError(f"Resend send failed: {exc}") from exc

    msg_id = res.get("id") if isinstance(res, dict) else None
    logger.info("Resend email sent: to=%s msg_id=%s", to_email, msg_id)
    return msg_id


def _send_ses(to_email: str, subject: str, text_body: str, html_body: str) -> str | None:
    region = (settings.AWS_REGION or "").strip()
    if not region:
        raise EmailNotConfiguredError("AWS_REGION is not set (required for SES)")
    client = boto3.client("ses", region_name=region)
    try:
        res = client.send_email(
            Source=_require_from_email(),
            Destination={"ToAddresses": [to_email]},
            Message={
                "Subject": {"Data": subject, "Charset": "UTF-8"},
                "Body": {
                    "Text": {"Data": text_body, "Charset": "UTF-8"},
                    "Html": {"Data": html_body, "Charset": "UTF-8"},
                },
            },
        )
    except ClientError as exc:
        logger.exception("SES email failed (client error)")
        code = (exc.response or {}).get("Error", {}).get("Code", "ClientError")
        raise EmailDeliveryError(f"SES email failed: {code}") from exc
    except BotoCoreError as exc:
        logger.exception("SES email failed (botocore)")
        raise EmailDeliveryError("SES email failed") from exc

    msg_id = res.get("MessageId")
    logger.info("SES email sent: to=%s msg_id=%s", to_email, msg_id)
    return msg_id


def _send_smtp(to_email: str, subject: str, text_body: str, html_body: str) -> None:
    if not settings.SMTP_HOST:
        raise EmailNotConfiguredError("SMTP_HOST is not set")
    from_email = _require_from_email()

    msg = MIMEMultipart("alternative")
    msg["From"] = from_email
    msg["To"] = to_email
    msg["Subject"] = subject
    msg["Date"] = formatdate(localtime=True)
    msg.attach(MIMEText(text_body, "plain", "utf-8"))
    msg.attach(MIMEText(html_body, "html", "utf-8"))

    try:
        if settings.SMTP_USE_SSL:
            server: smtplib.SMTP = smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10)
        else:
            server = smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10)
    except (OSError, smtplib.SMTPException) as exc:
        raise EmailDeliveryError("SMTP connection failed") from exc

    try:
        server.ehlo()
        if settings.SMTP_USE_TLS and not settings.SMTP_USE_SSL:
            server.starttls()
            server.ehlo()
        if settings.SMTP_USERNAME:
            server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.sendmail(from_email, [to_email], msg.as_string())
    except smtplib.SMTPException as exc:
        raise EmailDeliveryError("SMTP send failed") from exc
    finally:
        try:
            server.quit()
        except smtplib.SMTPException:
            pass
    logger.info("SMTP email sent: to=%s", to_email)


def send_otp_email(*, to_email: str, code: str, expires_minutes: int) -> str | None:
    """
    Deliver a verification code using the configured provider.
    - EMAIL_PROVIDER=resend (default): Resend API
    - EMAIL_PROVIDER=ses: AWS SES via boto3
    - EMAIL_PROVIDER=smtp: SMTP via stdlib (gmail is accepted as an alias)
    """
    provider = _normalize_provider(settings.EMAIL_PROVIDER)
    subject, text_body, html_body = render_otp_email(code, expires_minutes)
    if provider == "smtp":
        _send_smtp(to_email, subject, text_body, html_body)
        return None
    if provider == "ses":
        return _send_ses(to_email, subject, text_body, html_body)
    return _send_resend(to_email, subject, text_body, html_body)
