from datetime import datetime, timezone


def utcnow() -> datetime:
    # naive UTC, matching how timestamps round-trip through SQLite and Postgres columns
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
