"""Outbound email (SMTP) and SMS (Twilio) messages."""
import logging
import smtplib
from email.message import EmailMessage

import requests
from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from settings import (
    EMAIL_FROM,
    FRONTEND_URL,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_USER,
    TWILIO_ACCOUNT_SID,
    TWILIO_AUTH_TOKEN,
    TWILIO_PHONE_NUMBER,
)

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    pass


# -------------------- Email --------------------

def send_email(to: str, subject: str, html: str) -> None:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = EMAIL_FROM
    msg["To"] = to
    msg.set_content("This message requires an HTML capable mail client.")
    msg.add_alternative(html, subtype="html")
    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=30) as smtp:
            smtp.starttls()
            if SMTP_USER:
                smtp.login(SMTP_USER, SMTP_PASSWORD)
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Email to %s failed: %s", to, e)
        raise NotificationError("Failed to send email") from e


def _button(url: str, label: str) -> str:
    return (
        f'<a href="{url}" style="display: inline-block; padding: 10px 20px; background-color: #007bff; '
        f'color: white; text-decoration: none; border-radius: 5px;">{label}</a>'
    )


def send_verification_email(email: str, token: str, first_name: str) -> None:
    url = f"{FRONTEND_URL}/verify-email?token={token}"
    html = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h2>Welcome to Staybook, {first_name}!</h2>
      <p>Please verify your email address to complete your registration.</p>
      {_button(url, "Verify Email")}
      <p>If the button doesn't work, paste this link into your browser:</p>
      <p>{url}</p>
    </div>
    """
    send_email(email, "Verify your Staybook account", html)


def send_password_reset_email(email: str, token: str, first_name: str) -> None:
    url = f"{FRONTEND_URL}/reset-password?token={token}"
    html = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h2>Password Reset Request</h2>
      <p>Hello {first_name},</p>
      <p>We received a request to reset your password.</p>
      {_button(url, "Reset Password")}
      <p>If you didn't request a password reset, please ignore this email. The link expires in 1 hour.</p>
    </div>
    """
    send_email(email, "Reset your Staybook password", html)


# -------------------- SMS --------------------

_sms_client = None


def get_sms_client() -> Client:
    global _sms_client
    if _sms_client is None:
        _sms_client = Client(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN)
    return _sms_client


def send_sms(to: str, body: str) -> dict:
    try:
        message = get_sms_client().messages.create(body=body, from_=TWILIO_PHONE_NUMBER, to=to)
    except (TwilioRestException, requests.RequestException) as e:
        logger.error("Twilio error sending to %s: %s", to, e)
        raise NotificationError("Failed to send SMS") from e
    return {"sid": message.sid, "status": message.status}


def send_booking_confirmation(phone: str, details: dict) -> dict:
    body = (
        f"Your booking at {details['property_title']} is confirmed. "
        f"Check-in: {details['check_in']:%Y-%m-%d}, Check-out: {details['check_out']:%Y-%m-%d}. "
        f"Total: ${details['total_amount']:.2f}."
    )
    return send_sms(phone, body)


def send_booking_reminder(phone: str, details: dict) -> dict:
    body = f"Reminder: Your stay at {details['property_title']} starts tomorrow. Check-in time is after 3 PM."
    return send_sms(phone, body)
