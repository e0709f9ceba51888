"""Event-date coercion.

``clean_dates`` turns a free-text event date into a calendar date:

1. Keep only the start of a range (everything before the first ``/``).
2. Drop any time component (everything from the first ``T`` or space).
3. ``YYYY-MM-DD`` passes through, ``YYYY-MM`` gets ``-01``, ``YYYY`` gets
   ``-01-01``. Any other shape, or an impossible calendar date, is None.

Records whose date comes back None are dropped downstream, never defaulted.
``clean_dates_expr`` is the same rule as a polars expression for lazy scans;
both must agree exactly.
"""

from __future__ import annotations

import re
from datetime import date

import polars as pl

FULL_DATE = r"^\d{4}-\d{2}-\d{2}$"
YEAR_MONTH = r"^\d{4}-\d{2}$"
YEAR_ONLY = r"^\d{4}$"

_FULL_DATE_RE = re.compile(FULL_DATE)
_YEAR_MONTH_RE = re.compile(YEAR_MONTH)
_YEAR_ONLY_RE = re.compile(YEAR_ONLY)


def normalize_date_string(value: str | None) -> str | None:
    """Apply the range/time stripping and padding rules; None if unrecoverable."""
    if value is None:
        return None
    text = str(value).strip().split("/", 1)[0].split("T", 1)[0].split(" ", 1)[0]
    if _FULL_DATE_RE.match(text):
        return text
    if _YEAR_MONTH_RE.match(text):
        return f"{text}-01"
    if _YEAR_ONLY_RE.match(text):
        return f"{text}-01-01"
    return None


def clean_dates(value: str | None) -> date | None:
    """Coerce one event date string to a ``date`` (None if unrecoverable).

    >>> clean_dates("2020-05-15/2020-05-20")
    datetime.date(2020, 5, 15)
    >>> clean_dates("2020-05")
    datetime.date(2020, 5, 1)
    >>> clean_dates("not-a-date") is None
    True
    """
    text = normalize_date_string(value)
    if text is None:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


def clean_dates_expr(column: str | pl.Expr) -> pl.Expr:
    """Polars version of ``clean_dates`` over a string column."""
    raw = pl.col(column) if isinstance(column, str) else column
    text = (
        raw.cast(pl.Utf8)
        .str.strip_chars()
        .str.split("/")
        .list.first()
        .str.split("T")
        .list.first()
        .str.split(" ")
        .list.first()
    )
    padded = (
        pl.when(text.str.contains(FULL_DATE))
        .then(text)
        .when(text.str.contains(YEAR_MONTH))
        .then(pl.concat_str([text, pl.lit("-01")]))
        .when(text.str.contains(YEAR_ONLY))
        .then(pl.concat_str([text, pl.lit("-01-01")]))
        .otherwise(pl.lit(None, dtype=pl.Utf8))
    )
    return padded.str.to_date("%Y-%m-%d", strict=False)


def year_month(value: date) -> str:
    """``YYYYMM`` key of a date."""
    return f"{value.year:04d}{value.month:02d}"


def year_month_expr(column: str | pl.Expr) -> pl.Expr:
    """Polars version of ``year_month`` over a date column."""
    raw = pl.col(column) if isinstance(column, str) else column
    return raw.dt.strftime("%Y%m")
