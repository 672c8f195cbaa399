"""Expiry status classification.

"Today" is always passed in explicitly so classification is deterministic
under test; nothing in this module reads the clock.
"""

from __future__ import annotations

import dataclasses
import math
from datetime import date, datetime
from typing import Iterable, List

from .data_models import ProcessedInsuranceRecord
from .enums import InsuranceStatus

CRITICAL_DAYS_THRESHOLD = 5
DUE_SOON_DAYS_THRESHOLD = 30
DAYS_BEFORE_EXPIRY_TO_SEND = 30


def _as_date(value: date) -> date:
    return value.date() if isinstance(value, datetime) else value


def days_until_expiry(expiry: date, today: date) -> int:
    """Return the signed number of days from ``today`` to ``expiry``.

    Both values are reduced to midnight first, so a policy expiring later
    today yields 0.
    """
    delta = _as_date(expiry) - _as_date(today)
    return math.ceil(delta.total_seconds() / 86400)


def classify(
    days: int,
    critical_threshold: int = CRITICAL_DAYS_THRESHOLD,
    due_soon_threshold: int = DUE_SOON_DAYS_THRESHOLD,
) -> InsuranceStatus:
    """Map a day count to a status.

    The sign is checked before any threshold: a negative count is
    ``EXPIRED`` even though it is also below the critical threshold.

    Parameters
    ----------
    days : int
        Result of days_until_expiry().
    critical_threshold : int
        Upper bound (inclusive) of the critical window.
    due_soon_threshold : int
        Upper bound (inclusive) of the due-soon window.

    Returns
    -------
    InsuranceStatus
        EXPIRED, CRITICAL, DUE_SOON or PENDING. Never SENT.

    Examples
    --------
    >>> classify(-1)
    <InsuranceStatus.EXPIRED: 'expired'>
    >>> classify(0)
    <InsuranceStatus.CRITICAL: 'critical'>
    >>> classify(6)
    <InsuranceStatus.DUE_SOON: 'due_soon'>
    """
    if days < 0:
        return InsuranceStatus.EXPIRED
    if days <= critical_threshold:
        return InsuranceStatus.CRITICAL
    if days <= due_soon_threshold:
        return InsuranceStatus.DUE_SOON
    return InsuranceStatus.PENDING


def records_needing_notification(
    records: Iterable[ProcessedInsuranceRecord],
    days_before: int = DAYS_BEFORE_EXPIRY_TO_SEND,
) -> List[ProcessedInsuranceRecord]:
    """Records expiring within the notice window (0 < days <= days_before).

    Records already marked SENT are excluded.
    """
    return [
        record
        for record in records
        if 0 < record.days_until_expiry <= days_before
        and record.status is not InsuranceStatus.SENT
    ]


def critical_records(
    records: Iterable[ProcessedInsuranceRecord],
) -> List[ProcessedInsuranceRecord]:
    """Records in the CRITICAL band, in input order.

    Feeds the dashboard's urgent list; unlike records_needing_notification()
    it ignores the notice window and keeps nothing but CRITICAL.
    """
    return [r for r in records if r.status is InsuranceStatus.CRITICAL]


def mark_sent(
    records: Iterable[ProcessedInsuranceRecord], record_ids: Iterable[str]
) -> List[ProcessedInsuranceRecord]:
    """Return a copy of ``records`` with the given ids moved to SENT.

    Sending is terminal; a record never leaves SENT through this module.
    """
    ids = set(record_ids)
    return [
        dataclasses.replace(record, status=InsuranceStatus.SENT)
        if record.id in ids
        else record
        for record in records
    ]
