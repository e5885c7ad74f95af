from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current time as a naive UTC datetime, matching how slots are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
