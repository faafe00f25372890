"""Timestamp helpers: strict ISO output, lax parsing, and lease expiry checks."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pendulum


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def format_iso(dt: datetime) -> str:
    """Format datetime as UTC ISO 8601 with fixed microsecond precision.

    The fixed width keeps stored timestamps comparable as plain strings.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a stored or provider-reported timestamp into an aware datetime.

    Accepts ISO 8601 variants (``2026-02-02T22:21:29Z``,
    ``2026-02-02 22:21:29.975359+00:00``) as well as bare dates.
    Missing timezone defaults to default_tz.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=pendulum.timezone(default_tz))  # type: ignore[arg-type]
        return value

    parsed = pendulum.parse(value.strip(), tz=default_tz, strict=False)
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        parsed = pendulum.datetime(
            parsed.year, parsed.month, parsed.day, tz=default_tz  # type: ignore[union-attr]
        )
    return parsed  # type: ignore[return-value]


def lease_expiry(seconds: int, *, now: datetime | None = None) -> str:
    """Return the ISO timestamp ``seconds`` from now."""
    start = now if now is not None else now_utc()
    return format_iso(start + timedelta(seconds=seconds))


def is_expired(timestamp: str | None, *, now: datetime | None = None) -> bool:
    """Return True when ``timestamp`` is missing, unparseable, or in the past."""
    if not timestamp:
        return True
    try:
        expires = parse_datetime(timestamp)
    except ValueError:
        return True
    current = now if now is not None else now_utc()
    return expires <= current
