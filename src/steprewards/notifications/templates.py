"""
Email templates for Step Rewards cashout notifications.

All templates use inline CSS for maximum email client compatibility.

Each template function returns (subject, html_body, text_body).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from html import escape

# Color constants
BG_PAGE = "#F4F7F5"
BG_CARD = "#FFFFFF"
GREEN = "#1DB954"
RED = "#D93F3F"
TEXT_PRIMARY = "#14201A"
TEXT_SECONDARY = "#5B6B63"
BORDER = "#DCE3DF"

APP_NAME = "Step Rewards"
SIGNATURE = f"-- The {APP_NAME} Team"


def _base_layout(content: str) -> str:
    """Wrap content in the base email layout."""
    return f"""\
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{APP_NAME}</title>
</head>
<body style="margin: 0; padding: 0; background-color: {BG_PAGE}; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;">
    <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%" style="background-color: {BG_PAGE};">
        <tr>
            <td align="center" style="padding: 40px 20px;">
                <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="600" style="max-width: 600px; width: 100%;">
                    <tr>
                        <td align="center" style="padding-bottom: 24px;">
                            <span style="font-size: 22px; font-weight: 700; color: {GREEN};">{APP_NAME}</span>
                        </td>
                    </tr>
                    <tr>
                        <td style="background-color: {BG_CARD}; border: 1px solid {BORDER}; border-radius: 12px; padding: 32px;">
                            {content}
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
</body>
</html>"""


def _heading(text: str, color: str = TEXT_PRIMARY) -> str:
    return f'<h2 style="color: {color}; font-size: 22px; font-weight: 700; margin: 0 0 16px 0;">{text}</h2>'


def _para(text: str) -> str:
    return f'<p style="color: {TEXT_SECONDARY}; font-size: 16px; line-height: 1.6; margin: 0 0 12px 0;">{text}</p>'


def _money(amount: Decimal | str) -> str:
    return f"${Decimal(str(amount)):.2f}"


def cashout_requested(
    display_name: str,
    user_email: str,
    amount: Decimal | str,
    paypal_email: str,
    is_premium: bool,
    requested_at: datetime,
) -> tuple[str, str, str]:
    """
    Operator alert for a new cashout request.

    Returns:
        (subject, html_body, text_body)
    """
    tier = "Premium User" if is_premium else "Free User"
    requested = requested_at.strftime("%Y-%m-%d %H:%M UTC")
    subject = f"New Cashout Request: {_money(amount)}"
    content = (
        _heading("New Cashout Request")
        + _para(f"<strong>User:</strong> {escape(display_name)} ({escape(user_email)})")
        + _para(f"<strong>Amount:</strong> {_money(amount)}")
        + _para(f"<strong>PayPal Email:</strong> {escape(paypal_email)}")
        + _para(f"<strong>Status:</strong> {tier}")
        + _para(f"<strong>Requested:</strong> {requested}")
        + _para("Please process this request in the admin dashboard.")
    )
    text_body = (
        f"New cashout request\n\n"
        f"User: {display_name} ({user_email})\n"
        f"Amount: {_money(amount)}\n"
        f"PayPal Email: {paypal_email}\n"
        f"Status: {tier}\n"
        f"Requested: {requested}\n\n"
        f"Please process this request in the admin dashboard."
    )
    return subject, _base_layout(content), text_body


def cashout_approved(display_name: str, amount: Decimal | str, paypal_email: str) -> tuple[str, str, str]:
    """User alert: request approved, payment pending."""
    name = display_name or "there"
    subject = "Your Cashout Request Has Been Approved"
    content = (
        _heading("Cashout Request Approved", GREEN)
        + _para(f"Hello {escape(name)},")
        + _para(f"Your cashout request for {_money(amount)} has been approved and is being processed.")
        + _para(f"You should receive payment to your PayPal account ({escape(paypal_email)}) within 24 hours.")
        + _para(f"Thank you for using {APP_NAME}!")
    )
    text_body = (
        f"Hello {name},\n\n"
        f"Your cashout request for {_money(amount)} has been approved and is being processed.\n"
        f"You should receive payment to your PayPal account ({paypal_email}) within 24 hours.\n\n"
        f"{SIGNATURE}"
    )
    return subject, _base_layout(content), text_body


def cashout_rejected(display_name: str, amount: Decimal | str, reason: str | None) -> tuple[str, str, str]:
    """User alert: request rejected, funds returned."""
    name = display_name or "there"
    reason_text = reason or "No reason provided"
    subject = "Your Cashout Request Has Been Rejected"
    content = (
        _heading("Cashout Request Rejected", RED)
        + _para(f"Hello {escape(name)},")
        + _para(f"Unfortunately, your cashout request for {_money(amount)} has been rejected.")
        + _para(f"<strong>Reason:</strong> {escape(reason_text)}")
        + _para(
            "The funds have been returned to your available balance. "
            "Please reach out to support if you have any questions."
        )
    )
    text_body = (
        f"Hello {name},\n\n"
        f"Unfortunately, your cashout request for {_money(amount)} has been rejected.\n"
        f"Reason: {reason_text}\n\n"
        f"The funds have been returned to your available balance.\n\n"
        f"{SIGNATURE}"
    )
    return subject, _base_layout(content), text_body


def cashout_completed(
    display_name: str, amount: Decimal | str, paypal_email: str, completed_at: datetime,
) -> tuple[str, str, str]:
    name = display_name or "there"
    completed = completed_at.strftime("%Y-%m-%d %H:%M UTC")
    subject = "Your Cashout Has Been Completed"
    content = (
        _heading("Cashout Completed", GREEN)
        + _para(f"Hello {escape(name)},")
        + _para(
            f"Your cashout of {_money(amount)} has been completed and sent to your "
            f"PayPal account ({escape(paypal_email)})."
        )
        + _para(f"<strong>Completed:</strong> {completed}")
        + _para(f"Thank you for using {APP_NAME}!")
    )
    text_body = (
        f"Hello {name},\n\n"
        f"Your cashout of {_money(amount)} has been completed and sent to your "
        f"PayPal account ({paypal_email}).\n"
        f"Completed: {completed}\n\n"
        f"{SIGNATURE}"
    )
    return subject, _base_layout(content), text_body
