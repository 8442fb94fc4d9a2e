"""
Text formatting shared by the messaging views.
"""

from datetime import date, datetime, timezone

MINUTES_IN_DAY = 1440
MINUTES_IN_MONTH = 43200
MINUTES_IN_TWO_MONTHS = 86400


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}" if count == 1 else f"{count} {unit}s"


def distance_in_words(then: datetime, now: datetime) -> str:
    """
    Human distance between two instants: "less than a minute", "5 minutes",
    "about 2 hours", "3 days", "about 1 month", "over 1 year"...
    """
    seconds = abs((now - then).total_seconds())
    minutes = round(seconds / 60)

    if minutes < 1:
        return "less than a minute"
    if minutes < 2:
        return "1 minute"
    if minutes < 45:
        return f"{minutes} minutes"
    if minutes < 90:
        return "about 1 hour"
    if minutes < MINUTES_IN_DAY:
        return f"about {_plural(round(minutes / 60), 'hour')}"
    if minutes < 2520:
        return "1 day"
    if minutes < MINUTES_IN_MONTH:
        return _plural(round(minutes / MINUTES_IN_DAY), "day")
    if minutes < MINUTES_IN_TWO_MONTHS:
        return f"about {_plural(round(minutes / MINUTES_IN_MONTH), 'month')}"

    months = minutes // MINUTES_IN_MONTH
    if months < 12:
        return _plural(months, "month")

    years, remainder = divmod(months, 12)
    if remainder < 3:
        return f"about {_plural(years, 'year')}"
    if remainder < 9:
        return f"over {_plural(years, 'year')}"
    return f"almost {years + 1} years"


def relative_time(then: datetime, now: datetime | None = None) -> str:
    """`distance_in_words` with a direction: "5 minutes ago" / "in 5 minutes"."""
    now = now or datetime.now(timezone.utc)
    words = distance_in_words(then, now)
    return f"in {words}" if then > now else f"{words} ago"


def truncate(text: str, limit: int) -> str:
    """Cut `text` to `limit` characters, ending with an ellipsis when cut."""
    if len(text) <= limit:
        return text
    return text[: max(limit - 1, 0)].rstrip() + "…"


def badge_text(count: int) -> str | None:
    """Unread badge text; None hides the badge."""
    if count <= 0:
        return None
    return "99+" if count > 99 else str(count)


def day_label(day: date, today: date) -> str:
    if day == today:
        return "Today"
    if (today - day).days == 1:
        return "Yesterday"
    return f"{day:%b} {day.day}, {day.year}"

