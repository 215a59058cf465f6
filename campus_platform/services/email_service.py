"""
Outgoing email over SMTP.

When EMAIL_USER / EMAIL_PASS are not set the message is written to the log
instead so local setups still see OTP codes.
"""

from email.message import EmailMessage
import asyncio
import logging
import smtplib

from campus_platform import config
from campus_platform.core.errors import UpstreamFailure

logger = logging.getLogger(__name__)

OTP_SUBJECTS = {
    "signup": "Verify your email",
    "login": "Your login code",
    "reset": "Password reset code",
}


def is_configured() -> bool:
    return bool(config.EMAIL_USER and config.EMAIL_PASS)


def build_message(to: str, subject: str, html: str, text: str = None) -> EmailMessage:
    message = EmailMessage()
    message["From"] = config.EMAIL_FROM
    message["To"] = to
    message["Subject"] = subject
    message.set_content(text or "Please view this email in an HTML capable client.")
    message.add_alternative(html, subtype="html")
    return message


def send_email(to: str, subject: str, html: str, text: str = None) -> bool:
    """
    Send one email. Returns False when it was only logged (console fallback).

    Raises:
        UpstreamFailure: SMTP is configured but delivery failed
    """
    if not is_configured():
        logger.warning("Email not configured, console delivery to %s: %s | %s", to, subject, text or html)
        return False

    message = build_message(to, subject, html, text)

    try:
        with smtplib.SMTP(config.EMAIL_HOST, config.EMAIL_PORT, timeout=20) as smtp:
            smtp.starttls()
            smtp.login(config.EMAIL_USER, config.EMAIL_PASS)
            smtp.send_message(message)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Failed to send '%s' to %s: %s", subject, to, e)
        raise UpstreamFailure("Failed to send email")

    logger.info("Sent '%s' to %s", subject, to)
    return True


def deliver_in_background(to: str, subject: str, html: str, text: str = None):
    """BackgroundTasks entry point for notification mail, failures are only logged"""
    try:
        send_email(to, subject, html, text)
    except UpstreamFailure as e:
        logger.error("Background email to %s dropped: %s", to, e.message)


async def send_otp_email(email: str, otp: str, purpose: str) -> bool:
    subject = OTP_SUBJECTS.get(purpose, "Your verification code")
    minutes = config.OTP_TTL_SECONDS // 60
    text = f"Your verification code is {otp}. It expires in {minutes} minutes."
    html = f"""
    <div style="font-family: Arial, sans-serif; max-width: 480px;">
      <h2>{subject}</h2>
      <p>Use the code below to continue:</p>
      <p style="font-size: 28px; letter-spacing: 6px; font-weight: bold;">{otp}</p>
      <p>This code expires in {minutes} minutes. If you did not request it, ignore this email.</p>
    </div>
    """
    return await asyncio.to_thread(send_email, email, subject, html, text)


def approval_email(full_name: str) -> tuple:
    subject = "Your account has been approved"
    text = f"Hi {full_name}, your account has been approved. You can now log in."
    html = f"<p>Hi {full_name},</p><p>Your account has been <b>approved</b>. You can now log in.</p>"
    return subject, html, text


def rejection_email(full_name: str, reason: str = None) -> tuple:
    subject = "Your registration was not approved"
    detail = f" Reason: {reason}" if reason else ""
    text = f"Hi {full_name}, your registration was not approved.{detail}"
    html = f"<p>Hi {full_name},</p><p>Your registration was not approved.{detail}</p>"
    return subject, html, text
