"""Outbound email for verification and password reset codes."""

import logging
from email.message import EmailMessage

import aiosmtplib

from ruwwad.core import config

logger = logging.getLogger(__name__)


def is_configured() -> bool:
    return bool(config.SMTP_USER and config.SMTP_PASSWORD)


def build_message(to_email: str, subject: str, text: str) -> EmailMessage:
    message = EmailMessage()
    message["From"] = config.EMAIL_FROM
    message["To"] = to_email
    message["Subject"] = subject
    message.set_content(text)
    return message


async def send_email(to_email: str, subject: str, text: str) -> bool:
    """Send a plain-text email. Returns False instead of raising."""
    if not is_configured():
        logger.warning("SMTP is not configured, skipping email to %s", to_email)
        return False

    try:
        await aiosmtplib.send(
            build_message(to_email, subject, text),
            hostname=config.SMTP_HOST,
            port=config.SMTP_PORT,
            username=config.SMTP_USER,
            password=config.SMTP_PASSWORD,
            start_tls=config.SMTP_START_TLS,
            timeout=15,
        )
    except (aiosmtplib.SMTPException, OSError):
        logger.exception("Failed to send %r to %s", subject, to_email)
        return False

    logger.info("Sent %r to %s", subject, to_email)
    return True


async def send_verification_code(to_email: str, first_name: str, code: str) -> bool:
    return await send_email(
        to_email,
        "Email Verification",
        f"Hello {first_name}, your verification code is: {code}",
    )


async def send_password_reset_code(to_email: str, first_name: str, code: str) -> bool:
    return await send_email(
        to_email,
        "Password Reset",
        f"Hello {first_name}, your password reset code is: {code}. "
        f"This code will expire in {config.VERIFICATION_CODE_TTL_MINUTES} minutes.",
    )
