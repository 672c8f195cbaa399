"""Spreadsheet date normalization and display formatting.

Expiry dates arrive from workbooks in three shapes: numeric day serials
(cells without a date format), values already decoded to datetimes by the
spreadsheet reader, and free-text strings typed by users. All of them are
normalized to a plain ``datetime.date`` here.

**Serial convention:**
Serials count days from 1900-01-01 and include the non-existent 1900-02-29
that spreadsheet software inherited from early Lotus releases. Serials past
that phantom day (> 59) are therefore shifted back by one, exactly once.

**Error Handling:**
- to_calendar_date() never raises; ``None`` is the invalid-date result and
  callers must check for it.
"""

from __future__ import annotations

import math
import numbers
import re
from datetime import date, datetime, timedelta
from typing import Any, Optional

from babel.dates import format_date

from .utils import is_blank

SERIAL_EPOCH = date(1900, 1, 1)
# Day 0 when a decoded datetime is turned back into a serial
DECODED_EPOCH = date(1899, 12, 30)
# Last serial before the phantom 1900-02-29
LEAP_BUG_SERIAL = 59

_NUMERIC = re.compile(r"^-?\d+(\.\d+)?$")
_ISO_FORMATS = ("%Y/%m/%d", "%Y.%m.%d")


def serial_to_date(serial: float) -> Optional[date]:
    """Convert a spreadsheet day serial to a calendar date.

    Parameters
    ----------
    serial : float
        Day serial. Any fractional (time-of-day) part is dropped.

    Returns
    -------
    date | None
        Calendar date, or None for NaN/infinite/out-of-range serials.

    Examples
    --------
    >>> serial_to_date(58)
    datetime.date(1900, 2, 28)
    >>> serial_to_date(60)
    datetime.date(1900, 3, 1)
    >>> serial_to_date(61)
    datetime.date(1900, 3, 2)
    """
    if isinstance(serial, bool) or not math.isfinite(serial):
        return None

    corrected = serial - 1 if serial > LEAP_BUG_SERIAL else serial
    try:
        return SERIAL_EPOCH + timedelta(days=math.floor(corrected))
    except OverflowError:
        return None


def parse_date_string(text: str) -> Optional[date]:
    """Parse a typed date string.

    ISO forms (``2025-01-31``, ``2025-01-31T10:00:00``, ``2025/01/31``) are
    tried first, then ``DD/MM/YYYY``. Purely numeric strings are treated as
    serials.
    """
    text = text.strip()
    if not text:
        return None

    if _NUMERIC.match(text):
        return serial_to_date(float(text))

    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass

    for fmt in _ISO_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    parts = text.split("/")
    if len(parts) == 3:
        try:
            day, month, year = (int(part.strip()) for part in parts)
            return date(year, month, day)
        except ValueError:
            return None
    return None


def to_calendar_date(value: Any) -> Optional[date]:
    """Normalize any expiry-date cell to a calendar date.

    Parameters
    ----------
    value : Any
        Numeric serial, ``date``/``datetime``/``pandas.Timestamp`` decoded by
        the reader, or a string.

    Returns
    -------
    date | None
        Calendar date with time of day dropped, or None when the value
        cannot be interpreted.

    Notes
    -----
    Values already decoded to dates are turned back into a serial counted
    from 1899-12-30 and sent through the numeric path, so a date-formatted
    cell and a plain-number cell holding the same serial always normalize
    to the same day.
    """
    if is_blank(value):
        return None
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return serial_to_date((value - DECODED_EPOCH).days)
    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        return serial_to_date(float(value))
    if isinstance(value, str):
        return parse_date_string(value)
    return None


def format_long_date(value: date, locale: str = "es") -> str:
    """Format a date for letter text using Babel ("10 de enero de 2025")."""
    return format_date(value, format="long", locale=locale)


def format_short_date(value: date) -> str:
    """Format a date as DD/MM/YYYY.

    Display form for expiry dates in the record table and in filter
    range inputs; letters use format_long_date() instead.
    """
    return value.strftime("%d/%m/%Y")


def date_stamp_compact(value: date) -> str:
    """Return the DDMMYYYY stamp used as the PDF file name prefix."""
    return value.strftime("%d%m%Y")
