"""
Timezone utilities for movierec.
Provides consistent UTC datetime handling for results and release dates.
"""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC datetime with timezone info.
    Replacement for deprecated datetime.utcnow().
    """
    return datetime.now(timezone.utc)


def extract_year(date_str: Optional[str]) -> Optional[int]:
    """Year of an ISO date string ("2023-05-01"), or None when unparseable."""
    if not date_str:
        return None
    try:
        return datetime.fromisoformat(date_str[:10]).year
    except ValueError:
        return None
