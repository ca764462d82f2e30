"""
Notification channels for instant listing alerts.

A channel is anything with ``send(user_id, context) -> bool``. The email
channel sends one alert per match through the Resend API; app push and SMS
are wired in by whoever provides a sender for them.
"""

import html
import os
from typing import Any, Protocol

import resend

from models.search import SavedSearch
from models.types import UserID
from notifications.error_logger import log_notification_error

# Initialize Resend with API key from environment
resend.api_key = os.getenv("RESEND_API_KEY")

# Frontend base URL for links in emails
FRONTEND_BASE_URL = os.getenv("FRONTEND_BASE_URL", "http://localhost:3000")

SUBJECT_PREFIXES = {
    "new_listing": "New Listing",
    "price_drop": "Price Reduced",
    "price_increase": "Price Increased",
    "back_on_market": "Back on Market",
    "open_house": "Open House",
    "coming_soon": "Coming Soon",
    "status_change": "Status Update",
    "updated": "Listing Updated",
    "property_updated": "Listing Updated",
}

# Before/after values copied from the event payload when present
_CHANGE_KEYS = (
    "old_price",
    "new_price",
    "reduction_amount",
    "reduction_percent",
    "increase_amount",
    "increase_percent",
    "old_status",
    "new_status",
    "open_house",
)


class ChannelSender(Protocol):
    """Delivers one alert to one user over one channel."""

    def send(self, user_id: UserID, context: dict[str, Any]) -> bool: ...


def _address(payload: dict[str, Any]) -> str:
    street = " ".join(
        str(payload[k]) for k in ("street_number", "street_name") if payload.get(k)
    )
    if payload.get("unit_number"):
        street = f"{street} #{payload['unit_number']}".strip()
    return ", ".join(p for p in (street, payload.get("city")) if p) or "a listing"


def build_channel_context(
    search: SavedSearch, payload: dict[str, Any], match_type: str
) -> dict[str, Any]:
    """
    Everything a channel needs to render an alert.

    Args:
        search: The saved search that matched
        payload: Listing snapshot plus before/after values for the event
        match_type: Event type that produced the match

    Returns:
        Flat dict of display-ready fields
    """
    listing_id = payload.get("listing_id")
    context = {
        "listing_id": listing_id,
        "address": _address(payload),
        "price": payload.get("price"),
        "beds": payload.get("beds"),
        "baths": payload.get("baths"),
        "sqft": payload.get("sqft"),
        "photo_url": payload.get("photo_url"),
        "url": payload.get("url") or f"{FRONTEND_BASE_URL}/property/{listing_id}",
        "search_id": search.id,
        "search_name": search.name or "your saved search",
        "match_type": match_type,
    }
    for key in _CHANGE_KEYS:
        if payload.get(key) is not None:
            context[key] = payload[key]
    return context


def _format_price(value: Any) -> str:
    try:
        return f"${float(value):,.0f}"
    except (TypeError, ValueError):
        return "Price not listed"


def _headline(context: dict[str, Any]) -> str:
    """One-line description of what changed."""
    match_type = context["match_type"]
    if match_type == "price_drop" and "old_price" in context:
        line = f"Price reduced from {_format_price(context['old_price'])} to {_format_price(context.get('new_price'))}"
        if "reduction_percent" in context:
            line += f" ({context['reduction_percent']}% off)"
        return line
    if match_type == "price_increase" and "old_price" in context:
        return f"Price increased from {_format_price(context['old_price'])} to {_format_price(context.get('new_price'))}"
    if match_type in ("status_change", "back_on_market") and context.get("new_status"):
        old_status = context.get("old_status") or "Unknown"
        return f"Status changed from {old_status} to {context['new_status']}"
    if match_type == "open_house" and context.get("open_house"):
        open_house = context["open_house"]
        when = open_house.get("start_time") or open_house.get("date") or "soon"
        return f"Open house scheduled: {when}"
    return f"{SUBJECT_PREFIXES.get(match_type, 'Listing Alert')} matching {context['search_name']}"


def _details(context: dict[str, Any]) -> str:
    parts = [_format_price(context.get("price"))]
    if context.get("beds") is not None:
        parts.append(f"{context['beds']} bd")
    if context.get("baths") is not None:
        parts.append(f"{context['baths']:g} ba")
    if context.get("sqft"):
        parts.append(f"{float(context['sqft']):,.0f} sqft")
    return " • ".join(parts)


def _build_alert_html(context: dict[str, Any], preferences_url: str) -> str:
    """Build HTML email body for one instant alert."""
    photo = ""
    if context.get("photo_url"):
        photo = f'<img src="{html.escape(context["photo_url"])}" alt="" style="width:100%;border-radius:6px;">'

    return f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{html.escape(SUBJECT_PREFIXES.get(context["match_type"], "Listing Alert"))}</title>
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1 style="font-size: 22px; color: #1e40af;">{html.escape(context["address"])}</h1>
    <p style="color: #6b7280;">{html.escape(_headline(context))}</p>
    {photo}
    <p style="font-size: 16px; font-weight: 600;">{html.escape(_details(context))}</p>
    <a href="{html.escape(context["url"])}" style="color: #2563eb; font-weight: 500;">View listing →</a>
    <div style="margin-top: 30px; padding-top: 20px; border-top: 1px solid #e5e7eb; font-size: 13px; color: #6b7280;">
        You received this email because it matches your saved search
        "{html.escape(context["search_name"])}".
        <br>
        <a href="{html.escape(preferences_url)}">Manage your notification preferences</a>
    </div>
</body>
</html>
"""


def _build_alert_text(context: dict[str, Any], preferences_url: str) -> str:
    """Build plain text email body for one instant alert."""
    return f"""{SUBJECT_PREFIXES.get(context["match_type"], "Listing Alert").upper()}
{context["address"]}

{_headline(context)}
{_details(context)}

View listing: {context["url"]}

---
Matches your saved search "{context["search_name"]}".
Manage your notification preferences: {preferences_url}
"""


def send_instant_alert(
    user_email: str, context: dict[str, Any], preferences_url: str | None = None
) -> dict[str, Any]:
    """
    Send a single instant alert email.

    Args:
        user_email: Recipient email address
        context: Output of build_channel_context()
        preferences_url: URL to preferences page for managing notifications

    Returns:
        Dictionary with 'success' (bool), 'email_id' (str if success), 'error' (str if failed)
    """
    if preferences_url is None:
        preferences_url = f"{FRONTEND_BASE_URL}/preferences"

    from_email = os.getenv("NOTIFICATION_FROM_EMAIL", "alerts@example.com")
    subject = f"{SUBJECT_PREFIXES.get(context['match_type'], 'Listing Alert')}: {context['address']}"

    try:
        response = resend.Emails.send(
            {
                "from": f"Listing Alerts <{from_email}>",
                "to": user_email,
                "subject": subject,
                "html": _build_alert_html(context, preferences_url),
                "text": _build_alert_text(context, preferences_url),
            }
        )
        return {"success": True, "email_id": response.get("id")}

    except Exception as e:
        return {"success": False, "error": str(e)}


class EmailChannelSender:
    """Email channel: looks up the user's address and sends through Resend."""

    def __init__(self, repository: Any):
        self.repository = repository

    def send(self, user_id: UserID, context: dict[str, Any]) -> bool:
        user_email = self.repository.get_user_email(user_id)
        if not user_email:
            print(f"  ⚠️  No email address for user {user_id}, skipping email")
            return False

        result = send_instant_alert(user_email, context)
        if not result["success"]:
            error_file = log_notification_error(
                error_type="dispatch",
                error_message=result.get("error", "Unknown error"),
                context={
                    "channel": "email",
                    "user_id": user_id,
                    "listing_id": context.get("listing_id"),
                    "search_id": context.get("search_id"),
                },
            )
            print(f"  ✗ Email to user {user_id} failed. Details logged to: {error_file}")
            return False

        return True
