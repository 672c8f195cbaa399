"""Filtering, sorting and pagination over the in-memory record set.

apply_view() is pure and recomputed from the full record list on every call;
no index is maintained. RecordView holds the per-session view state
(filters, sort, page, selection) on top of it.
"""

from __future__ import annotations

import math
import numbers
from datetime import date
from enum import Enum
from functools import cmp_to_key
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .data_models import (
    DashboardStats,
    FilterOptions,
    Page,
    ProcessedInsuranceRecord,
    SortOptions,
)
from .enums import InsuranceStatus, SortDirection
from .record_mapper import DEFAULT_BRANCH, DEFAULT_COMPANY, DEFAULT_EXECUTIVE
from .utils import fold_text, string_or_empty

ALL_VALUES = "__all__"
BLANK_VALUE = "__blank__"
PAGE_SIZE = 50

SEARCH_FIELDS = ("insured_name", "policy_number", "company")

# Values the mapper substitutes for blank cells, per categorical field
_BLANK_EQUIVALENTS: Dict[str, set] = {
    "executive": {"", DEFAULT_EXECUTIVE},
    "company": {"", DEFAULT_COMPANY},
    "branch": {"", DEFAULT_BRANCH},
}

# Sort field aliases onto processed attributes
_SORT_ALIASES = {"expiry_date": "expiry"}


def _field_value(record: ProcessedInsuranceRecord, field: str) -> Any:
    return getattr(record, _SORT_ALIASES.get(field, field), None)


def _matches_category(record: ProcessedInsuranceRecord, field: str, wanted: Optional[str]) -> bool:
    if wanted is None or wanted == ALL_VALUES:
        return True
    value = string_or_empty(getattr(record, field, ""))
    if wanted == BLANK_VALUE:
        return value in _BLANK_EQUIVALENTS.get(field, {""})
    return value == wanted


def matches(record: ProcessedInsuranceRecord, filters: FilterOptions) -> bool:
    """Return True when the record passes every active filter."""
    if filters.search.strip():
        needle = fold_text(filters.search.strip())
        if not any(
            needle in fold_text(string_or_empty(getattr(record, name, "")))
            for name in SEARCH_FIELDS
        ):
            return False

    for field in ("executive", "company", "branch"):
        if not _matches_category(record, field, getattr(filters, field)):
            return False

    if filters.statuses and record.status not in filters.statuses:
        return False
    if filters.date_from is not None and record.expiry < filters.date_from:
        return False
    if filters.date_to is not None and record.expiry > filters.date_to:
        return False
    return True


def compare_values(left: Any, right: Any) -> int:
    """Three-way compare dispatching on the runtime type of both values.

    Strings compare case- and accent-insensitively, numbers and dates by
    magnitude, enums by value. Mismatched or unsupported types compare equal
    so the stable sort leaves them in place.
    """
    if isinstance(left, Enum) and isinstance(right, Enum):
        left, right = str(left.value), str(right.value)

    if isinstance(left, str) and isinstance(right, str):
        left, right = fold_text(left), fold_text(right)
    elif isinstance(left, numbers.Real) and isinstance(right, numbers.Real):
        pass
    elif isinstance(left, date) and isinstance(right, date):
        pass
    else:
        return 0
    return (left > right) - (left < right)


def sort_records(
    records: Iterable[ProcessedInsuranceRecord], sort: SortOptions
) -> List[ProcessedInsuranceRecord]:
    def compare(a: ProcessedInsuranceRecord, b: ProcessedInsuranceRecord) -> int:
        return compare_values(_field_value(a, sort.field), _field_value(b, sort.field))

    return sorted(
        records,
        key=cmp_to_key(compare),
        reverse=sort.direction is SortDirection.DESC,
    )


def apply_view(
    records: Iterable[ProcessedInsuranceRecord],
    filters: Optional[FilterOptions] = None,
    sort: Optional[SortOptions] = None,
) -> List[ProcessedInsuranceRecord]:
    """Filter then sort a record set.

    Parameters
    ----------
    records : Iterable[ProcessedInsuranceRecord]
        Full record set; not modified.
    filters : FilterOptions, optional
        Conjunctive filters; None applies no filtering.
    sort : SortOptions, optional
        Single-field sort; None keeps the input order.

    Returns
    -------
    List[ProcessedInsuranceRecord]
        New list with the visible records in display order.
    """
    filters = filters or FilterOptions()
    visible = [record for record in records if matches(record, filters)]
    if sort is None:
        return visible
    return sort_records(visible, sort)


def unique_values(records: Iterable[ProcessedInsuranceRecord], field: str) -> List[str]:
    """Distinct non-empty values of a text field, for the dashboard filter menus.

    Parameters
    ----------
    records : Iterable[ProcessedInsuranceRecord]
        Records currently loaded in the view.
    field : str
        Record attribute, e.g. ``"company"``, ``"branch"`` or ``"executive"``.

    Returns
    -------
    List[str]
        Values sorted ignoring case and accents. Non-text fields give an
        empty list.
    """
    values = {
        string_or_empty(getattr(record, field, ""))
        for record in records
        if isinstance(getattr(record, field, None), str)
    }
    values.discard("")
    return sorted(values, key=fold_text)


def dashboard_stats(records: Sequence[ProcessedInsuranceRecord]) -> DashboardStats:
    counts = {status: 0 for status in InsuranceStatus}
    for record in records:
        counts[record.status] += 1

    total = len(records)
    premiums = sum(record.premium for record in records)
    return DashboardStats(
        total=total,
        critical=counts[InsuranceStatus.CRITICAL],
        due_soon=counts[InsuranceStatus.DUE_SOON],
        pending=counts[InsuranceStatus.PENDING],
        expired=counts[InsuranceStatus.EXPIRED],
        sent=counts[InsuranceStatus.SENT],
        total_insured_value=sum(record.insured_value for record in records),
        average_premium=premiums / total if total else 0.0,
    )


def paginate(
    records: Sequence[ProcessedInsuranceRecord], page: int, page_size: int = PAGE_SIZE
) -> Page:
    """Slice one page out of ``records``; out-of-range pages are clamped."""
    total_pages = max(1, math.ceil(len(records) / page_size))
    number = min(max(page, 1), total_pages)
    start = (number - 1) * page_size
    return Page(
        items=list(records[start : start + page_size]),
        number=number,
        total_pages=total_pages,
        total_items=len(records),
    )


class RecordView:
    """Session view over an ingested record set.

    Changing filters or sort always returns to page 1. Selecting the same
    sort field twice toggles its direction.
    """

    def __init__(
        self,
        records: Iterable[ProcessedInsuranceRecord] = (),
        page_size: int = PAGE_SIZE,
    ) -> None:
        self.page_size = page_size
        self.filters = FilterOptions()
        self.sort = SortOptions()
        self.page = 1
        self._records: List[ProcessedInsuranceRecord] = list(records)

    @property
    def records(self) -> List[ProcessedInsuranceRecord]:
        return list(self._records)

    def replace_records(self, records: Iterable[ProcessedInsuranceRecord]) -> None:
        """Swap in a freshly ingested record set (no merge)."""
        self._records = list(records)
        self.page = 1

    def set_filters(self, filters: FilterOptions) -> None:
        self.filters = filters
        self.page = 1

    def sort_by(self, field: str) -> None:
        if field == self.sort.field:
            self.sort = SortOptions(field, self.sort.direction.toggled())
        else:
            self.sort = SortOptions(field, SortDirection.ASC)
        self.page = 1

    def visible(self) -> List[ProcessedInsuranceRecord]:
        return apply_view(self._records, self.filters, self.sort)

    def current_page(self) -> Page:
        page = paginate(self.visible(), self.page, self.page_size)
        self.page = page.number
        return page

    def go_to(self, page: int) -> Page:
        self.page = page
        return self.current_page()

    def _update_selection(self, predicate: Callable[[ProcessedInsuranceRecord], bool], value: bool) -> None:
        for record in self._records:
            if predicate(record):
                record.selected = value

    def toggle(self, record_id: str) -> None:
        for record in self._records:
            if record.id == record_id:
                record.selected = not record.selected
                return
        raise KeyError(f"Unknown record id: {record_id}")

    def select_page(self, selected: bool = True) -> None:
        """Select (or clear) every record on the current page."""
        ids = {record.id for record in self.current_page().items}
        self._update_selection(lambda r: r.id in ids, selected)

    def clear_selection(self) -> None:
        self._update_selection(lambda r: True, False)

    def selected_records(self) -> List[ProcessedInsuranceRecord]:
        return [record for record in self._records if record.selected]

    def stats(self) -> DashboardStats:
        return dashboard_stats(self._records)
