"""
Text rendering for SMS replies.

Handlers compose replies through these helpers only, so wording and layout
can change without touching business logic.
"""

from datetime import datetime
from typing import Iterable, Optional

# Twilio concatenated-message limit
SMS_CHAR_LIMIT = 1600

ELLIPSIS = "..."

METERS_PER_MILE = 1609.34


def truncate_for_sms(text: str, max_length: int = SMS_CHAR_LIMIT) -> str:
    """Hard cut plus ellipsis when text exceeds max_length."""
    if len(text) <= max_length:
        return text
    return text[:max_length - len(ELLIPSIS)] + ELLIPSIS


def plural(count: int, singular: str, plural_form: Optional[str] = None) -> str:
    word = singular if count == 1 else (plural_form or f"{singular}s")
    return f"{count} {word}"


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{round(meters)} meters"

    miles = meters / METERS_PER_MILE
    if miles < 10:
        return f"{miles:.1f} miles"

    return f"{round(miles)} miles"


def format_duration(seconds: float) -> str:
    minutes = int(seconds // 60)
    hours = minutes // 60

    if hours > 0:
        remaining = minutes % 60
        if remaining == 0:
            return plural(hours, "hour")
        return f"{hours}h {remaining}m"

    return plural(minutes, "minute")


def format_eta(estimated_arrival: datetime, now: datetime) -> str:
    """Time remaining until arrival, relative to now."""
    diff_minutes = int((estimated_arrival - now).total_seconds() // 60)

    if diff_minutes < 0:
        return "arrived"

    if diff_minutes < 60:
        return f"{diff_minutes} min"

    hours, minutes = divmod(diff_minutes, 60)
    if minutes == 0:
        return plural(hours, "hour")

    return f"{hours}h {minutes}m"


def format_list(list_name: str, items: Iterable) -> str:
    """
    Render list items, one per line, with a completion marker and quantity.

    Items need `content`, `quantity` and `is_completed` attributes.
    """
    items = list(items)
    if not items:
        return f"{list_name} is empty."

    header = f"{list_name} ({plural(len(items), 'item')}):\n\n"
    lines = []
    for index, item in enumerate(items, start=1):
        checkbox = "✓" if item.is_completed else "○"
        quantity = f" ({item.quantity})" if item.quantity else ""
        lines.append(f"{checkbox} {index}. {item.content}{quantity}")

    return truncate_for_sms(header + "\n".join(lines))


def format_contact(contact) -> str:
    text = contact.name
    if contact.relationship:
        text += f" ({contact.relationship})"

    lines = [text]
    if contact.phone_number:
        lines.append(f"Phone: {contact.phone_number}")
    if contact.email:
        lines.append(f"Email: {contact.email}")

    return "\n".join(lines)


def format_location(location) -> str:
    """Address when known, otherwise raw coordinates, plus an optional label."""
    place = location.address or f"{location.latitude}, {location.longitude}"
    if location.label:
        place += f" ({location.label})"
    return place


def format_help() -> str:
    return truncate_for_sms(
        "I can help you with:\n"
        "\n"
        "Contacts\n"
        "- \"What's [name]'s number?\"\n"
        "- \"Send [name] [contact]'s number\"\n"
        "\n"
        "Lists\n"
        "- \"Add [item] to the grocery list\"\n"
        "- \"Show me the grocery list\"\n"
        "- \"Mark [item] as bought\"\n"
        "- \"Remove [item]\"\n"
        "- \"Share the [list] with [name]\"\n"
        "\n"
        "Location\n"
        "- \"I'm at [place]\"\n"
        "- \"Heading to [place]\" / \"Cancel my trip\"\n"
        "- \"Where is [name]?\" / \"When will [name] arrive?\"\n"
        "\n"
        "Reply with your command or question!"
    )
