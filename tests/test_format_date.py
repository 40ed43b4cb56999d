from datetime import datetime, timedelta, timezone

from chatsync.utils.format_date import format_timestamp


NOW = datetime(2024, 5, 6, 12, 0, tzinfo=timezone.utc)


def test_recent():
    assert format_timestamp(NOW - timedelta(seconds=10), NOW) == "less than a minute ago"
    assert format_timestamp(NOW - timedelta(minutes=1), NOW) == "1 minute ago"
    assert format_timestamp(NOW - timedelta(minutes=5), NOW) == "5 minutes ago"


def test_hours_and_days():
    assert format_timestamp(NOW - timedelta(minutes=60), NOW) == "about 1 hour ago"
    assert format_timestamp(NOW - timedelta(hours=3), NOW) == "about 3 hours ago"
    assert format_timestamp(NOW - timedelta(hours=30), NOW) == "1 day ago"
    assert format_timestamp(NOW - timedelta(days=4), NOW) == "4 days ago"


def test_naive_timestamp_is_utc():
    assert format_timestamp(datetime(2024, 5, 6, 11, 55), NOW) == "5 minutes ago"


def test_missing_timestamp():
    assert format_timestamp(None, NOW) == ""
