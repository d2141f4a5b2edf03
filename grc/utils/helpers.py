"""Shared parsing helpers for request payloads."""

from datetime import date, datetime

_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y")


def parse_date(value):
    """Due dates from JSON: ISO date or datetime, or DD/MM/YYYY from sheets.

    Returns None for empty or unparseable input; callers decide whether that
    is an error.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None
