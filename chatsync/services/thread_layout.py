from datetime import datetime, timedelta, timezone, tzinfo
from typing import List, Optional, Sequence

from chatsync.schemas.chat import ThreadRow


# same-sender messages closer than this share one avatar
GROUPING_WINDOW = timedelta(minutes=5)


def _local(ts: datetime, tz: tzinfo) -> datetime:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(tz)


def should_show_avatar(messages: Sequence[dict], index: int, window: timedelta = GROUPING_WINDOW) -> bool:
    if index == 0:
        return True
    current = messages[index]
    previous = messages[index - 1]
    if current.get("sender_id") != previous.get("sender_id"):
        return True
    current_ts = current.get("timestamp")
    previous_ts = previous.get("timestamp")
    if current_ts is not None and previous_ts is not None:
        return abs(current_ts - previous_ts) > window
    return False


def should_show_date_separator(messages: Sequence[dict], index: int, tz: tzinfo = timezone.utc) -> bool:
    if index == 0:
        return True
    current_ts = messages[index].get("timestamp")
    previous_ts = messages[index - 1].get("timestamp")
    # pending server timestamps never split a day
    if current_ts is None or previous_ts is None:
        return False
    return _local(current_ts, tz).date() != _local(previous_ts, tz).date()


def format_message_date(ts: Optional[datetime], now: Optional[datetime] = None, tz: tzinfo = timezone.utc) -> str:
    if ts is None:
        return ""
    day = _local(ts, tz).date()
    today = _local(now or datetime.now(timezone.utc), tz).date()
    if day == today:
        return "Today"
    if day == today - timedelta(days=1):
        return "Yesterday"
    return f"{day:%A}, {day:%B} {day.day}"


def format_message_time(ts: Optional[datetime], tz: tzinfo = timezone.utc) -> str:
    if ts is None:
        return ""
    local = _local(ts, tz)
    hour = local.hour % 12 or 12
    return f"{hour}:{local:%M} {'AM' if local.hour < 12 else 'PM'}"


def build_rows(
    messages: Sequence[dict],
    current_user_id: Optional[str],
    now: Optional[datetime] = None,
    tz: tzinfo = timezone.utc,
    window: timedelta = GROUPING_WINDOW,
) -> List[ThreadRow]:
    """Derive display rows for a thread; recomputed from the full list each time."""
    rows = []
    for index, message in enumerate(messages):
        is_from_me = message.get("sender_id") == current_user_id
        show_separator = should_show_date_separator(messages, index, tz)
        ts = message.get("timestamp")
        rows.append(ThreadRow(
            id=str(message.get("_id")),
            text=message.get("text", ""),
            sender_id=message.get("sender_id", ""),
            timestamp=ts,
            is_from_me=is_from_me,
            show_avatar=not is_from_me and should_show_avatar(messages, index, window),
            show_date_separator=show_separator,
            date_label=format_message_date(ts, now, tz) if show_separator else "",
            time_label=format_message_time(ts, tz),
            read_receipt=is_from_me and bool(message.get("read")),
        ))
    return rows
