"""UTC-focused helpers for run metadata and record timestamps."""

from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def utc_timestamp_iso(moment: datetime | None = None) -> str:
    return (moment or utc_now()).isoformat(timespec="milliseconds")


def backup_stamp(moment: datetime | None = None) -> str:
    moment = moment or utc_now()
    return moment.strftime("%Y-%m-%dT%H-%M-%S-%fZ")


def parse_timestamp(value) -> tuple[datetime | None, str | None]:
    """Parse an ISO-ish timestamp.

    Returns ``(None, None)`` for empty input and ``(None, reason)`` when a
    non-empty value cannot be read.
    """
    if value is None:
        return None, None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None, None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None, f"unparseable timestamp: {value!r}"
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed, None


def utc_today_iso() -> str:
    return utc_now().date().isoformat()


def generate_run_id(moment: datetime | None = None) -> str:
    return (moment or utc_now()).strftime("run-%Y%m%dT%H%M%S%fZ")
