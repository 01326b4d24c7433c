"""Email service using Resend."""

import html as html_lib
import logging
from typing import Optional

import resend

from engine.config import settings

logger = logging.getLogger(__name__)

# Initialize Resend
resend.api_key = settings.resend_api_key

BUTTON_STYLE = (
    "display: inline-block; background-color: #6366f1; color: white; padding: 12px 24px; "
    "text-decoration: none; border-radius: 8px; margin: 16px 0;"
)


async def send_email(
    to: str,
    subject: str,
    html: Optional[str] = None,
    text: Optional[str] = None,
    reply_to: Optional[str] = None,
    require_delivery: bool = False,
) -> bool:
    """Send an email using Resend. Returns False instead of raising on failure.

    Without an API key the message is only logged. That counts as sent unless
    ``require_delivery`` is set, for mail whose delivery is the point.
    """
    if not settings.resend_api_key:
        if require_delivery:
            logger.warning("Resend not configured, cannot deliver to %s: %s", to, subject)
            return False
        logger.info("Resend not configured, would send to %s: %s", to, subject)
        return True

    params = {
        "from": settings.from_email,
        "to": to,
        "subject": subject,
    }
    if html:
        params["html"] = html
    if text:
        params["text"] = text
    if reply_to:
        params["reply_to"] = reply_to

    try:
        resend.Emails.send(params)
        return True
    except Exception:
        logger.exception("Email send to %s failed", to)
        return False


async def send_scan_completed_email(email: str, new_exposures: int) -> bool:
    dashboard_url = f"{settings.frontend_url}/dashboard"
    if new_exposures:
        summary = f"We found <strong>{new_exposures}</strong> new places where your information is listed."
    else:
        summary = "Good news: we didn't find any new listings of your information."

    html = f"""
    <div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
        <h1 style="color: #0f172a;">Your scan is complete</h1>
        <p>{summary}</p>
        <a href="{dashboard_url}" style="{BUTTON_STYLE}">View Results</a>
    </div>
    """

    return await send_email(email, f"Scan complete - {settings.app_name}", html)


async def send_new_exposures_email(email: str, count: int, source_names: list[str]) -> bool:
    """Alert for exposures found by a scan."""
    dashboard_url = f"{settings.frontend_url}/dashboard"
    items = "".join(f"<li>{html_lib.escape(name)}</li>" for name in source_names)

    html = f"""
    <div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
        <h1 style="color: #ef4444;">New Exposures Found</h1>
        <p>We found your personal information in <strong>{count}</strong> new places:</p>
        <ul>{items}</ul>
        <a href="{dashboard_url}" style="{BUTTON_STYLE}">Remove My Data</a>
        <p style="color: #64748b; font-size: 14px;">
            Review each match and start a removal request to protect your privacy.
        </p>
    </div>
    """

    return await send_email(email, f"{count} new exposures found - {settings.app_name}", html)


async def send_removal_complete_email(email: str, broker_name: str) -> bool:
    """Send notification when removal is complete."""
    dashboard_url = f"{settings.frontend_url}/dashboard"

    html = f"""
    <div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
        <h1 style="color: #0f172a;">Removal Complete!</h1>
        <p>Your personal information has been removed from <strong>{html_lib.escape(broker_name)}</strong>.</p>
        <a href="{dashboard_url}" style="{BUTTON_STYLE}">View Dashboard</a>
        <p style="color: #64748b; font-size: 14px;">
            We'll keep monitoring this site to make sure your data doesn't reappear.
        </p>
    </div>
    """

    return await send_email(email, f"Removal Complete: {broker_name} - {settings.app_name}", html)


async def send_operator_ticket_email(title: str, description: str, severity: str) -> bool:
    if not settings.operator_email:
        logger.warning("No operator email configured, ticket not emailed: %s", title)
        return False

    html = f"""
    <div style="font-family: monospace; max-width: 700px;">
        <h2>[{severity.upper()}] {html_lib.escape(title)}</h2>
        <pre>{html_lib.escape(description)}</pre>
    </div>
    """

    return await send_email(settings.operator_email, f"[{severity.upper()}] {title}", html)


async def send_opt_out_email(to: str, subject: str, body: str, reply_to: Optional[str] = None) -> bool:
    """Send a plain-text opt-out letter to a broker's privacy address."""
    return await send_email(to, subject, text=body, reply_to=reply_to, require_delivery=True)
