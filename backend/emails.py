import logging
from html import escape
from urllib.error import URLError

from fastapi.concurrency import run_in_threadpool
from python_http_client.exceptions import HTTPError
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from config import SENDGRID_API_KEY, SENDGRID_FROM_EMAIL, FRONTEND_URL

logger = logging.getLogger(__name__)


def app_url(path: str) -> str:
    base = FRONTEND_URL if FRONTEND_URL and FRONTEND_URL != "*" else ""
    return f"{base.rstrip('/')}{path}"


def _button(href: str, label: str) -> str:
    return (
        f'<a href="{href}" style="background-color: #2d7d4a; color: white; padding: 10px 20px; '
        f'text-decoration: none; border-radius: 5px; display: inline-block;">{label}</a>'
    )


def request_notification_email(requester_name: str, item_title: str) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h2 style="color: #2d7d4a;">New Request for Your Item!</h2>
      <p>Hi there,</p>
      <p><strong>{escape(requester_name)}</strong> has requested your item: <strong>{escape(item_title)}</strong></p>
      <p>{_button(app_url("/requests"), "View Request")}</p>
      <p>Best regards,<br/>Waste to Wish Team</p>
    </div>
    """


def accepted_notification_email(item_title: str, conversation_id: str) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h2 style="color: #2d7d4a;">Your Request Was Accepted!</h2>
      <p>Great news! Your request for <strong>{escape(item_title)}</strong> has been accepted.</p>
      <p>{_button(app_url(f"/chat/{escape(conversation_id)}"), "Start Chatting")}</p>
      <p>Best regards,<br/>Waste to Wish Team</p>
    </div>
    """


def password_reset_email(token: str) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h2 style="color: #2d7d4a;">Reset Your Password</h2>
      <p>We received a request to reset your Waste to Wish password.</p>
      <p>{_button(app_url(f"/auth/reset-password?token={escape(token)}"), "Reset Password")}</p>
      <p>If you didn't ask for this, you can ignore this email.</p>
    </div>
    """


def _send(to: str, subject: str, html: str):
    message = Mail(from_email=SENDGRID_FROM_EMAIL, to_emails=to, subject=subject, html_content=html)
    SendGridAPIClient(SENDGRID_API_KEY).send(message)


async def send_email(to: str, subject: str, html: str) -> bool:
    """Send one e-mail. Failures are logged, never raised."""
    if not SENDGRID_API_KEY:
        logger.warning("SENDGRID_API_KEY is not set, skipping email to %s", to)
        return False
    try:
        await run_in_threadpool(_send, to, subject, html)
    except (HTTPError, URLError, TimeoutError) as e:
        logger.error("Email send error: %s", e)
        return False
    logger.info("Sent email %r to %s", subject, to)
    return True
