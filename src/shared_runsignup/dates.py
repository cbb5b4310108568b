"""
Date parsing for the formats RunSignUp mixes across endpoints
"""
from datetime import date, datetime
from typing import Optional, Union

_EPOCH = date(1970, 1, 1)
_FALLBACK_FORMATS = ('%Y/%m/%d', '%m-%d-%Y', '%b %d, %Y', '%B %d, %Y')


def parse_race_date(value: Union[str, date, None]) -> Optional[date]:
    """
    Parse a race/registration date.

    ``MM/DD/YYYY`` is what the race endpoints return, so it is tried before
    anything else. Returns None for missing or unparsable input.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None

    parts = text.split('/')
    if len(parts) == 3 and len(parts[2]) == 4:
        try:
            return date(int(parts[2]), int(parts[0]), int(parts[1]))
        except ValueError:
            return None

    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00')).date()
    except ValueError:
        pass

    for fmt in _FALLBACK_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def date_sort_key(value: Union[str, date, None]) -> int:
    """Days since the epoch; missing/unparsable dates sort as epoch zero"""
    parsed = parse_race_date(value)
    if parsed is None:
        return 0
    return (parsed - _EPOCH).days
