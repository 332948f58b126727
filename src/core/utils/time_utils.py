# src/core/utils/time_utils.py
from datetime import datetime, timezone


def as_utc(dt: datetime) -> datetime:
    """
    Garante um datetime com timezone UTC.

    SQLite devolve datetimes sem timezone; nesse caso assume que é UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def now_utc() -> datetime:
    """
    Retorna o datetime atual em UTC.
    """
    return datetime.now(timezone.utc)
