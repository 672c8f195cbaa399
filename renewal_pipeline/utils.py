"""Utility functions for renewal notice processing.

Provides string normalization and template formatting helpers shared across
pipeline steps: client-name normalization for grouping, diacritic stripping
for file names, and validated placeholder substitution for configurable
templates such as the reference number.
"""

from __future__ import annotations

import re
import unicodedata
from string import Formatter
from typing import Any

import pandas as pd

# Template formatter for extracting field names from format strings
_FORMATTER = Formatter()

_WHITESPACE = re.compile(r"\s+")


def is_blank(value: Any) -> bool:
    """Return True for None, NaN/NaT/NA and whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        # containers: pd.isna returns an array
        return False


def string_or_empty(value: Any) -> str:
    """Safely convert value to string, returning empty string for None/NaN.

    Parameters
    ----------
    value : Any
        Value to convert (may be None, empty string, or any type)

    Returns
    -------
    str
        Stringified, stripped value or empty string for None/NaN values
    """
    if is_blank(value):
        return ""
    return str(value).strip()


def collapse_whitespace(value: str) -> str:
    return _WHITESPACE.sub(" ", value).strip()


def normalize_name(value: str) -> str:
    """Normalize a client name for grouping comparisons.

    Upper-cases and collapses internal whitespace so that
    ``"  Perez  Juan"`` and ``"PEREZ JUAN"`` fall into the same letter.
    """
    return collapse_whitespace(value).upper()


def strip_diacritics(value: str) -> str:
    """Remove combining accents (``"PÓLIZA"`` -> ``"POLIZA"``, ``"Ñ"`` -> ``"N"``)."""
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def fold_text(value: str) -> str:
    """Case- and accent-insensitive key for comparing and searching text."""
    return strip_diacritics(value).casefold()


def extract_template_fields(template: str) -> set[str]:
    """Extract placeholder names from a format string template.

    Parameters
    ----------
    template : str
        Format string like "SCPSA-____/{year}"

    Returns
    -------
    set[str]
        Set of placeholder names found in template

    Raises
    ------
    ValueError
        If template contains invalid format string syntax

    Examples
    --------
    >>> extract_template_fields("SCPSA-____/{year}")
    {'year'}
    """
    try:
        return {
            field_name
            for _, field_name, _, _ in _FORMATTER.parse(template)
            if field_name
        }
    except ValueError as exc:
        raise ValueError(f"Invalid template format: {exc}") from exc


def validate_and_format_template(
    template: str,
    context: dict[str, str],
    allowed_fields: set[str] | None = None,
) -> str:
    """Fill a configurable template such as the letter reference code.

    Parameters
    ----------
    template : str
        ``str.format`` template, e.g. ``"SCPSA-____/{year}"``.
    context : dict[str, str]
        Values for the placeholders.
    allowed_fields : set[str] | None
        Placeholders the caller permits; None permits anything in context.

    Returns
    -------
    str
        The filled template.

    Raises
    ------
    KeyError
        A placeholder has no value in ``context``.
    ValueError
        A placeholder is outside ``allowed_fields``.
    """
    placeholders = extract_template_fields(template)

    unknown_fields = placeholders - context.keys()
    if unknown_fields:
        raise KeyError(
            f"Unknown placeholder(s) {sorted(unknown_fields)} in template. "
            f"Available: {sorted(context.keys())}"
        )

    if allowed_fields is not None:
        disallowed = placeholders - allowed_fields
        if disallowed:
            raise ValueError(
                f"Disallowed placeholder(s) {sorted(disallowed)} in template. "
                f"Allowed: {sorted(allowed_fields)}"
            )

    return template.format(**context)
