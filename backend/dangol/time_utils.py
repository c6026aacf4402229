from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from flask import current_app, has_app_context


DEFAULT_DEAL_TIMEZONE = "Asia/Seoul"


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def deal_timezone() -> ZoneInfo:
    """Wall-clock zone used for deal deadlines and business hours (KST by default)."""
    if has_app_context():
        return ZoneInfo(current_app.config.get("DEAL_TIMEZONE", DEFAULT_DEAL_TIMEZONE))
    return ZoneInfo(DEFAULT_DEAL_TIMEZONE)


def as_utc(dt: datetime) -> datetime:
    """Aware UTC datetime. Naive input is interpreted as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def as_naive_utc(dt: datetime) -> datetime:
    return as_utc(dt).replace(tzinfo=None)


def resolve_now(now: Optional[datetime] = None) -> datetime:
    """Aware UTC 'now', honouring an injected instant when given."""
    if now is None:
        return datetime.now(timezone.utc)
    return as_utc(now)


def local_now(now: Optional[datetime] = None, tz: Optional[ZoneInfo] = None) -> datetime:
    return resolve_now(now).astimezone(tz or deal_timezone())


def local_wall_clock_to_utc(dt: datetime, tz: Optional[ZoneInfo] = None) -> datetime:
    """
    Interpret a wall-clock value in the deal timezone and return aware UTC.

    Aware input is simply converted.
    """
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc)
    return dt.replace(tzinfo=tz or deal_timezone()).astimezone(timezone.utc)


def utc_to_local_wall_clock(dt: datetime, tz: Optional[ZoneInfo] = None) -> datetime:
    """Naive wall-clock value in the deal timezone for an instant."""
    return as_utc(dt).astimezone(tz or deal_timezone()).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string.

    - None / "" -> None
    - "...Z" or "...+/-HH:MM" -> aware datetime
    - "YYYY-MM-DDTHH:MM" (naive) is returned naive; the caller decides its frame
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    return datetime.fromisoformat(s)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    dt_utc = as_utc(dt).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
