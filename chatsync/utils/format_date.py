from datetime import datetime, timezone
from typing import Optional


def format_timestamp(timestamp: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Relative label such as "5 minutes ago" for the conversation list."""
    if timestamp is None:
        return ""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    seconds = (now - timestamp).total_seconds()
    suffix = "ago"
    if seconds < 0:
        seconds = -seconds
        suffix = "from now"

    minutes = round(seconds / 60)
    if seconds < 30:
        label = "less than a minute"
    elif minutes < 2:
        label = "1 minute"
    elif minutes < 45:
        label = f"{minutes} minutes"
    elif minutes < 90:
        label = "about 1 hour"
    elif minutes < 24 * 60:
        label = f"about {round(minutes / 60)} hours"
    elif minutes < 42 * 60:
        label = "1 day"
    elif minutes < 30 * 24 * 60:
        label = f"{round(minutes / (24 * 60))} days"
    elif minutes < 45 * 24 * 60:
        label = "about 1 month"
    elif minutes < 60 * 24 * 60:
        label = "about 2 months"
    elif minutes < 365 * 24 * 60:
        label = f"{round(minutes / (30 * 24 * 60))} months"
    else:
        years = int(minutes // (365 * 24 * 60))
        label = "about 1 year" if years == 1 else f"about {years} years"

    if suffix == "ago":
        return f"{label} ago"
    return f"in {label}"
