from datetime import datetime, timezone
from typing import Optional

def utc_now() -> datetime:
    """Current time as naive UTC, the form stored in the ledger"""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value

def format_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.strftime("%d/%m/%Y %H:%M")
