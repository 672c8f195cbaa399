"""Unified data models for the renewal notice pipeline.

This module provides all core dataclasses used throughout the pipeline,
ensuring consistency and type safety across processing steps.

Records flow in one direction: raw spreadsheet rows are mapped into
``InsuranceRecord``; ingestion enriches them into
``ProcessedInsuranceRecord``; the grouping step consolidates those into
``LetterData`` which the renderer and the packaging step consume.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from .enums import InsuranceStatus, SortDirection, TemplateType

RawRow = Dict[str, Any]

CURRENCY_BOB = "Bs."
CURRENCY_USD = "$us."
CURRENCIES = (CURRENCY_BOB, CURRENCY_USD)


@dataclass(frozen=True)
class InsuranceRecord:
    """One policy-coverage line as read from the spreadsheet.

    Fields
    ------
    sequence_number : float
        Value of the "NRO." column (0 when absent).
    expiry_date : Any
        Raw "FIN DE VIGENCIA" cell: serial number, decoded date, string or None.
        Normalized later by dates.to_calendar_date().
    company, branch, policy_number, insured_name, executive : str
        Identity fields. Defaults are applied by record_mapper.map_row() so
        policy_number and insured_name are never empty.
    insured_value, premium : float
        Currency amounts coerced with record_mapper.parse_number().
    progress, quantity : float
        Numeric tracking columns ("Avance", "Cantidad").

    The remaining string fields are workflow/tracking columns carried through
    untouched.
    """

    sequence_number: float
    expiry_date: Any
    company: str
    branch: str
    policy_number: str
    phone: str
    email_or_address: str
    insured_name: str
    portfolio: str
    insured_matter: str
    insured_value: float
    premium: float
    executive: str
    responsible: str = ""
    expiry_notice_sent: str = ""
    follow_up: str = ""
    non_renewal_letter: str = ""
    renews: str = ""
    pending: str = ""
    not_renewing: str = ""
    progress: float = 0.0
    quantity: float = 0.0
    observations: str = ""


@dataclass
class ProcessedInsuranceRecord:
    """InsuranceRecord enriched with derived fields.

    Only ``selected`` is expected to change after ingestion; the status may
    move to ``SENT`` through status.mark_sent(), which returns new objects.

    Parameters
    ----------
    record : InsuranceRecord
        Mapped source record.
    id : str
        Session-stable identifier assigned during ingestion.
    row_number : int
        1-based worksheet row the record came from (header is row 1).
    expiry : date
        Normalized calendar expiry date.
    days_until_expiry : int
        Signed day count relative to the injected "today".
    status : InsuranceStatus
        Classification of days_until_expiry.
    selected : bool
        UI selection flag.
    """

    record: InsuranceRecord
    id: str
    row_number: int
    expiry: date
    days_until_expiry: int
    status: InsuranceStatus
    selected: bool = False

    def __getattr__(self, name: str) -> Any:
        # Expose InsuranceRecord fields directly (record.policy_number, ...)
        if name == "record":
            raise AttributeError(name)
        return getattr(self.record, name)


@dataclass(frozen=True)
class ValidationRule:
    """One entry of the field validation rule table.

    Parameters
    ----------
    field : str
        InsuranceRecord attribute the rule applies to.
    type : str
        One of 'string', 'number', 'date', 'email'.
    label : str
        Name used in error messages (usually the spreadsheet header).
    required : bool
        Empty values fail when True.
    min_length, max_length : int, optional
        String length bounds (string rules only).
    """

    field: str
    type: str
    label: str
    required: bool = False
    min_length: Optional[int] = None
    max_length: Optional[int] = None


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: List[str]


@dataclass(frozen=True)
class IngestSettings:
    """Ingestion and classification settings resolved from parameters.yaml."""

    max_upload_bytes: int
    allowed_extensions: Tuple[str, ...]
    required_headers: Tuple[str, ...]
    critical_days_threshold: int
    due_soon_days_threshold: int
    days_before_expiry_to_send: int
    validation_rules: Tuple[ValidationRule, ...]


@dataclass(frozen=True)
class LetterSettings:
    """Letter grouping and rendering settings resolved from parameters.yaml."""

    health_keywords: Tuple[str, ...]
    reference_template: str
    flag_reference_placeholder: bool
    city: str
    locale: str
    company_name: str
    company_subtitle: str
    default_currency: str
    archive_prefix: str


@dataclass(frozen=True)
class IngestResult:
    """Aggregate outcome of ingesting one workbook.

    Parameters
    ----------
    success : bool
        False for fatal errors or when no row produced a valid record.
    records : List[ProcessedInsuranceRecord]
        Valid records in worksheet order (empty on failure).
    errors : List[str]
        Fatal error or accumulated row-level errors.
    warnings : List[str]
        Empty-row and duplicate-policy notices.
    total_records : int
        Non-empty data rows seen.
    valid_records : int
        len(records).
    """

    success: bool
    records: List[ProcessedInsuranceRecord]
    errors: List[str]
    warnings: List[str]
    total_records: int = 0
    valid_records: int = 0

    @classmethod
    def fatal(cls, *errors: str) -> "IngestResult":
        return cls(success=False, records=[], errors=list(errors), warnings=[])


@dataclass(frozen=True)
class ClientInfo:
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None


@dataclass(frozen=True)
class ManualFields:
    """User-editable overlay for a policy on a letter.

    ``original_*`` fields keep the values seeded from the spreadsheet so an
    edit can be compared against (or reverted to) the source data.
    """

    premium: Optional[float] = None
    original_premium: Optional[float] = None
    insured_value: Optional[float] = None
    original_insured_value: Optional[float] = None
    insured_matter: Optional[str] = None
    original_insured_matter: Optional[str] = None
    insured_members: Optional[Tuple[str, ...]] = None
    original_insured_members: Optional[Tuple[str, ...]] = None
    specific_conditions: Optional[str] = None
    deductibles: Optional[float] = None
    deductibles_currency: str = CURRENCY_BOB
    territoriality: Optional[float] = None
    territoriality_currency: str = CURRENCY_BOB
    renewal_premium: Optional[float] = None
    coinsurance: Optional[str] = None


@dataclass(frozen=True)
class CoveredItem:
    """One insured item (e.g. a vehicle) listed under a shared policy number.

    ``insured_value`` is seeded from the source row; ``declared_value`` must
    be entered manually before the letter is complete.
    """

    description: str
    insured_value: float
    declared_value: Optional[float] = None
    source_record_id: Optional[str] = None


@dataclass(frozen=True)
class PolicyForLetter:
    expiry_date: str
    policy_number: str
    company: str
    branch: str
    insured_value: float = 0.0
    premium: float = 0.0
    insured_members: Tuple[str, ...] = ()
    covered_items: Tuple[CoveredItem, ...] = ()
    manual_fields: ManualFields = field(default_factory=ManualFields)


@dataclass(frozen=True)
class ReviewState:
    needs_review: bool
    missing_data: Tuple[str, ...]


@dataclass(frozen=True)
class LetterData:
    """One renewal notice addressed to one client for one template type.

    Invariants
    ----------
    - ``policies`` is never empty.
    - ``needs_review`` and ``missing_data`` always equal
      group_letters.derive_review_state(letter); construct and edit letters
      through group_letters so the pair never drifts.
    """

    id: str
    source_record_ids: Tuple[str, ...]
    template_type: TemplateType
    reference_number: str
    issue_date: date
    client: ClientInfo
    policies: Tuple[PolicyForLetter, ...]
    executive: str
    needs_review: bool = True
    missing_data: Tuple[str, ...] = ()
    additional_conditions: Optional[str] = None


@dataclass(frozen=True)
class GeneratedLetter:
    """Rendered PDF for one letter."""

    letter_id: str
    source_record_ids: Tuple[str, ...]
    client_name: str
    template_type: TemplateType
    file_name: str
    pdf_bytes: bytes
    page_count: int
    policy_count: int
    needs_review: bool
    missing_data: Tuple[str, ...]


@dataclass(frozen=True)
class ExportResult:
    """Outcome of a batch export.

    ``archive_bytes`` holds the ZIP of all successfully rendered letters and
    is None only when nothing rendered.
    """

    success: bool
    letters: List[GeneratedLetter]
    errors: List[str]
    total_generated: int
    archive_name: Optional[str] = None
    archive_bytes: Optional[bytes] = None


@dataclass(frozen=True)
class FilterOptions:
    """Conjunctive record filters. ``None`` disables a filter."""

    search: str = ""
    executive: Optional[str] = None
    company: Optional[str] = None
    branch: Optional[str] = None
    statuses: Optional[frozenset] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None


@dataclass(frozen=True)
class SortOptions:
    field: str = "days_until_expiry"
    direction: SortDirection = SortDirection.ASC


@dataclass(frozen=True)
class DashboardStats:
    total: int
    critical: int
    due_soon: int
    pending: int
    expired: int
    sent: int
    total_insured_value: float
    average_premium: float


@dataclass(frozen=True)
class Page:
    items: List[ProcessedInsuranceRecord]
    number: int
    total_pages: int
    total_items: int
