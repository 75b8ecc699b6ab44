from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_iso(value: datetime) -> str:
    # fixed width keeps lexical ordering equal to chronological ordering in SQLite
    return to_utc(value).isoformat(timespec="microseconds")


def from_iso(value: str) -> datetime:
    return to_utc(datetime.fromisoformat(value))
