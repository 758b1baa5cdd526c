from __future__ import annotations

import math
import re
from datetime import UTC, date, datetime, timedelta
from typing import Any

import pandas as pd

"""Field normalization helpers (pure functions).

Parsing here is best effort: unrecognizable dates / numbers come back as None
and never raise, messy spreadsheet input just degrades to empty values.
"""

__all__ = [
    "EXCEL_EPOCH",
    "clean_text",
    "trim_and_collapse",
    "normalize_for_match",
    "parse_flexible_date",
    "days_between",
    "coerce_day_count",
    "derive_days_in_garage",
    "utc_now",
]

# Spreadsheet serial day 0 (1900 date system incl. the 1900 leap-year quirk)
EXCEL_EPOCH = datetime(1899, 12, 30)
SECONDS_PER_DAY = 86400

_WHITESPACE = re.compile(r"\s+")


def utc_now() -> datetime:
    """Current time as naive UTC (all internal datetimes are naive UTC)."""
    return datetime.now(UTC).replace(tzinfo=None)


def clean_text(value: Any) -> str:
    """str() + strip. None -> "". Integral floats render without '.0'."""
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


def trim_and_collapse(value: Any) -> str:
    return _WHITESPACE.sub(" ", clean_text(value))


def normalize_for_match(value: Any) -> str:
    return trim_and_collapse(value).upper()


def _round_half_up(number: float) -> int:
    return math.floor(number + 0.5)


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(UTC).replace(tzinfo=None)
    return value


def _from_serial(serial: float) -> datetime | None:
    if not math.isfinite(serial):
        return None
    try:
        return EXCEL_EPOCH + timedelta(days=serial)
    except OverflowError:
        return None


def parse_flexible_date(value: Any) -> datetime | None:
    """Parse a date cell of unknown representation.

    Accepts:
        - datetime / date values (returned as naive UTC datetime)
        - numbers, and numeric strings, as spreadsheet serial days since 1899-12-30
          (numeric strings out of serial range are parsed as text)
        - free text via pandas' date parser

    Returns:
        datetime or None when nothing recognizable is found
    """
    if value is None or isinstance(value, bool) or value is pd.NaT:
        return None
    if isinstance(value, datetime):
        return _as_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)):
        return _from_serial(float(value))

    text = clean_text(value)
    if not text:
        return None
    try:
        serial = _from_serial(float(text))
    except ValueError:
        serial = None
    if serial is not None:
        return serial
    # 範囲外のシリアル値 (20240105 など) は日付文字列として解釈する
    try:
        parsed = pd.to_datetime(text, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(parsed):
        return None
    return _as_naive_utc(parsed.to_pydatetime())


def days_between(earlier: datetime | None, later: datetime | None) -> int | None:
    """Rounded day count from ``earlier`` to ``later``, floored at 0."""
    if earlier is None or later is None:
        return None
    delta = (later - earlier).total_seconds() / SECONDS_PER_DAY
    return max(0, _round_half_up(delta))


def coerce_day_count(value: Any) -> int | None:
    """Explicit day count cell -> non-negative int. Blank / non-numeric -> None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = clean_text(value)
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if not math.isfinite(number):
        return None
    return max(0, _round_half_up(number))


def derive_days_in_garage(
    actual_days: Any,
    check_out: Any,
    current: Any,
    now: datetime | None = None,
) -> int:
    """Days in garage for one row.

    An explicit actual-days value wins; otherwise the difference between the
    check-out date and the row's current date (or ``now``); otherwise 0.
    """
    explicit = coerce_day_count(actual_days)
    if explicit is not None:
        return explicit
    checked_out = parse_flexible_date(check_out)
    if checked_out is None:
        return 0
    reference = parse_flexible_date(current) or now or utc_now()
    return days_between(checked_out, reference) or 0
