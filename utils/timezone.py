# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Timezone utilities - UTC timestamps for storage, Central Time for display
"""
from datetime import datetime
import pytz
from typing import Optional

CENTRAL = pytz.timezone('America/Chicago')


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(pytz.UTC)


def get_central_time() -> datetime:
    """Get current time in Central timezone"""
    return datetime.now(CENTRAL)


def utc_to_central(utc_dt: Optional[datetime]) -> Optional[datetime]:
    """Convert UTC datetime to Central Time"""
    if utc_dt is None:
        return None

    # If the datetime is naive (no timezone), assume it's UTC
    if utc_dt.tzinfo is None:
        utc_dt = pytz.UTC.localize(utc_dt)

    return utc_dt.astimezone(CENTRAL)


def format_central_time(dt: Optional[datetime], include_timezone: bool = True) -> str:
    """Format datetime in Central Time for display"""
    if dt is None:
        return "Never"

    central_dt = utc_to_central(dt)
    if include_timezone:
        return central_dt.strftime('%b %d, %Y at %I:%M %p CT')
    return central_dt.strftime('%b %d, %Y at %I:%M %p')


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from storage or Planning Center into aware UTC.

    Returns None for empty or unparseable values. Naive values are treated as UTC.
    """
    if not value:
        return None

    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'

    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None

    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


def to_iso(dt: datetime) -> str:
    """Serialize an aware datetime as a UTC ISO string for storage"""
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC).isoformat()
