"""Consolidate processed policy records into per-client renewal letters.

**Input Contract:**
- ProcessedInsuranceRecord list, typically the user's selection or the
  records needing notification
- LetterSettings from config_loader (health keywords, reference template)

**Output Contract:**
- One LetterData per (normalized client name, template type), in order of
  first appearance
- One policy per source record, except rows sharing policy number, company
  and expiry date, which form one policy. Rows without a policy number are
  never merged
- Health letters: merged rows give the insured member list (titular first,
  no "TITULAR" placeholder, no duplicates)
- General letters: merged rows become covered items with a manually
  declared value each
- needs_review / missing_data always come from derive_review_state()

**Editing:**
Letters are frozen. update_policy_fields(), update_covered_item() and
update_letter() return new letters whose review state is recomputed from
scratch, so the flag can never drift from the data.
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from collections import OrderedDict
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .config_loader import letter_settings
from .data_models import (
    CURRENCIES,
    ClientInfo,
    CoveredItem,
    LetterData,
    LetterSettings,
    ManualFields,
    PolicyForLetter,
    ProcessedInsuranceRecord,
    ReviewState,
    ValidationResult,
)
from .dates import format_long_date
from .enums import TemplateType
from .record_mapper import DEFAULT_POLICY_NUMBER, EMAIL_PATTERN
from .utils import collapse_whitespace, normalize_name, validate_and_format_template

LOG = logging.getLogger(__name__)

DEFAULT_HEALTH_KEYWORDS = ("salud", "vida", "medic")
REFERENCE_PLACEHOLDER = "____"
TITULAR_PLACEHOLDER = "TITULAR"


def determine_template_type(
    branch: str, keywords: Sequence[str] = DEFAULT_HEALTH_KEYWORDS
) -> TemplateType:
    """Classify a branch (ramo) as health or general by keyword substring.

    Examples
    --------
    >>> determine_template_type("SALUD INDIVIDUAL")
    <TemplateType.SALUD: 'salud'>
    >>> determine_template_type("AUTOMOTOR")
    <TemplateType.GENERAL: 'general'>
    """
    branch_lower = (branch or "").lower()
    if any(keyword.lower() in branch_lower for keyword in keywords):
        return TemplateType.SALUD
    return TemplateType.GENERAL


def generate_reference_number(year: int, template: str = "SCPSA-____/{year}") -> str:
    """Build the letter reference code; the ``____`` part is filled by hand."""
    return validate_and_format_template(
        template, {"year": str(year)}, allowed_fields={"year"}
    )


def split_contact(value: str) -> Tuple[Optional[str], Optional[str]]:
    """Split the combined CORREO/DIRECCION cell into (email, address)."""
    value = collapse_whitespace(value or "")
    if not value:
        return None, None
    if EMAIL_PATTERN.match(value):
        return value, None
    return None, value


def validate_record_for_letter(record: ProcessedInsuranceRecord) -> ValidationResult:
    """Check a record carries the minimum data needed to appear on a letter."""
    errors: List[str] = []

    def too_short(value: str) -> bool:
        return not value or len(value.strip()) < 2

    if too_short(record.insured_name):
        errors.append("Nombre del asegurado requerido")
    if too_short(record.policy_number):
        errors.append("Número de póliza requerido")
    if too_short(record.company):
        errors.append("Compañía aseguradora requerida")
    if too_short(record.branch):
        errors.append("Ramo del seguro requerido")
    if getattr(record, "expiry", None) is None:
        errors.append("Fecha de vencimiento requerida")
    if too_short(record.executive):
        errors.append("Ejecutivo responsable requerido")

    return ValidationResult(valid=not errors, errors=errors)


def _seed_manual_fields(
    record: ProcessedInsuranceRecord,
    currency: str,
    *,
    premium: Optional[float] = None,
    insured_value: Optional[float] = None,
    insured_matter: Optional[str] = None,
    members: Tuple[str, ...] = (),
) -> ManualFields:
    premium = record.premium if premium is None else premium
    insured_value = record.insured_value if insured_value is None else insured_value
    insured_matter = record.insured_matter if insured_matter is None else insured_matter
    return ManualFields(
        premium=premium,
        original_premium=premium,
        insured_value=insured_value,
        original_insured_value=insured_value,
        insured_matter=insured_matter,
        original_insured_matter=insured_matter,
        insured_members=members or None,
        original_insured_members=members or None,
        deductibles_currency=currency,
        territoriality_currency=currency,
    )


def _policy_key(record: ProcessedInsuranceRecord) -> Tuple[Any, ...]:
    # Unnumbered rows are never the same policy
    if record.policy_number == DEFAULT_POLICY_NUMBER:
        return (record.id,)
    return (record.policy_number, normalize_name(record.company), record.expiry)


def _by_policy(
    records: Iterable[ProcessedInsuranceRecord],
) -> "OrderedDict[Tuple[Any, ...], List[ProcessedInsuranceRecord]]":
    """Group rows that describe the same policy, in order of first appearance.

    Rows belong together only when they share policy number, company and
    expiry date. Rows without a policy number always stand alone.
    """
    groups: "OrderedDict[Tuple[Any, ...], List[ProcessedInsuranceRecord]]" = OrderedDict()
    for record in records:
        groups.setdefault(_policy_key(record), []).append(record)
    return groups


def insured_members(
    policy_records: Sequence[ProcessedInsuranceRecord], titular: str
) -> Tuple[str, ...]:
    """Consolidated member list for a health policy, titular first.

    Members come from the insured-matter column of every row under the
    policy. Blank values and the literal "TITULAR" placeholder are skipped
    and names are de-duplicated ignoring case and spacing.
    """
    titular = collapse_whitespace(titular)
    titular_key = normalize_name(titular)
    members: List[str] = [titular]
    seen = {titular_key}
    for record in policy_records:
        name = collapse_whitespace(record.insured_matter)
        key = normalize_name(name)
        if not name or key == TITULAR_PLACEHOLDER or key in seen:
            continue
        seen.add(key)
        members.append(name)
    return tuple(members)


def build_health_policy(
    policy_records: Sequence[ProcessedInsuranceRecord],
    *,
    locale: str,
    currency: str,
) -> PolicyForLetter:
    """Build one health policy from the rows grouped under it.

    The main record is the titular's own row: the one whose insured matter
    is blank or equal to the client name. The first row is used otherwise.
    """
    main = next(
        (
            record
            for record in policy_records
            if not record.insured_matter.strip()
            or normalize_name(record.insured_matter) == normalize_name(record.insured_name)
        ),
        policy_records[0],
    )
    members = insured_members(policy_records, main.insured_name)

    return PolicyForLetter(
        expiry_date=format_long_date(main.expiry, locale),
        policy_number=main.policy_number,
        company=main.company,
        branch=main.branch,
        insured_value=main.insured_value,
        premium=main.premium,
        insured_members=members,
        manual_fields=_seed_manual_fields(main, currency, members=members),
    )


def build_general_policy(
    policy_records: Sequence[ProcessedInsuranceRecord],
    *,
    locale: str,
    currency: str,
) -> PolicyForLetter:
    """Build one general policy; several rows become covered items."""
    first = policy_records[0]
    if len(policy_records) == 1:
        return PolicyForLetter(
            expiry_date=format_long_date(first.expiry, locale),
            policy_number=first.policy_number,
            company=first.company,
            branch=first.branch,
            insured_value=first.insured_value,
            premium=first.premium,
            manual_fields=_seed_manual_fields(first, currency),
        )

    items = tuple(
        CoveredItem(
            description=collapse_whitespace(record.insured_matter),
            insured_value=record.insured_value,
            source_record_id=record.id,
        )
        for record in policy_records
    )
    insured_value = sum(record.insured_value for record in policy_records)
    premium = sum(record.premium for record in policy_records)
    matters = list(
        OrderedDict.fromkeys(item.description for item in items if item.description)
    )
    insured_matter = "; ".join(matters)

    return PolicyForLetter(
        expiry_date=format_long_date(first.expiry, locale),
        policy_number=first.policy_number,
        company=first.company,
        branch=first.branch,
        insured_value=insured_value,
        premium=premium,
        covered_items=items,
        manual_fields=_seed_manual_fields(
            first,
            currency,
            premium=premium,
            insured_value=insured_value,
            insured_matter=insured_matter,
        ),
    )


def _positive(value: Optional[float]) -> bool:
    return value is not None and value > 0


def _negative_or_missing(value: Optional[float]) -> bool:
    return value is None or value < 0


def detect_missing_data(
    letter: LetterData, *, flag_reference_placeholder: bool = False
) -> List[str]:
    """List the manual data a letter still needs.

    Health policies need a positive renewal premium. General policies need a
    positive premium and insured value, an insured matter, non-negative
    deductible and territoriality figures and specific-conditions text; each
    covered item also needs a description and a positive declared value.
    """
    missing: List[str] = []

    if flag_reference_placeholder and REFERENCE_PLACEHOLDER in letter.reference_number:
        missing.append("Número de Referencia manual")

    for index, policy in enumerate(letter.policies):
        label = f"Póliza {index + 1} ({policy.policy_number})"
        fields = policy.manual_fields

        if letter.template_type is TemplateType.SALUD:
            if not _positive(fields.renewal_premium):
                missing.append(f"{label}: Prima de renovación anual")
            continue

        if not _positive(fields.insured_value):
            missing.append(f"{label}: Valor Asegurado")
        if not _positive(fields.premium):
            missing.append(f"{label}: Prima")
        if not (fields.insured_matter or "").strip():
            missing.append(f"{label}: Materia Asegurada")
        if _negative_or_missing(fields.deductibles):
            missing.append(f"{label}: Información de deducibles")
        if _negative_or_missing(fields.territoriality):
            missing.append(f"{label}: Información de extraterritorialidad")
        if not (fields.specific_conditions or "").strip():
            missing.append(f"{label}: Condiciones específicas")

        for item_index, item in enumerate(policy.covered_items):
            item_label = f"{label}, ítem {item_index + 1}"
            if not item.description.strip():
                missing.append(f"{item_label}: Descripción")
            if not _positive(item.declared_value):
                missing.append(f"{item_label}: Valor declarado")

    return missing


def derive_review_state(
    letter: LetterData, *, flag_reference_placeholder: bool = False
) -> ReviewState:
    """Compute needs_review and missing_data from the letter as it stands.

    General letters always need review: they carry legal and financial
    conditions that must be completed and signed off by hand.
    """
    missing = tuple(
        detect_missing_data(letter, flag_reference_placeholder=flag_reference_placeholder)
    )
    return ReviewState(
        needs_review=bool(missing) or letter.template_type is TemplateType.GENERAL,
        missing_data=missing,
    )


def refresh_review_state(
    letter: LetterData, settings: Optional[LetterSettings] = None
) -> LetterData:
    """Return ``letter`` with its review state recomputed."""
    settings = settings or letter_settings()
    state = derive_review_state(
        letter, flag_reference_placeholder=settings.flag_reference_placeholder
    )
    return dataclasses.replace(
        letter, needs_review=state.needs_review, missing_data=state.missing_data
    )


def group_for_letters(
    records: Iterable[ProcessedInsuranceRecord],
    *,
    today: Optional[date] = None,
    settings: Optional[LetterSettings] = None,
) -> List[LetterData]:
    """Group processed records into renewal letters.

    Parameters
    ----------
    records : Iterable[ProcessedInsuranceRecord]
        Records to notify. Input order decides letter and policy order.
    today : date, optional
        Issue date and reference-number year. Defaults to the current date.
    settings : LetterSettings, optional
        Keywords, reference template, locale and default currency.

    Returns
    -------
    List[LetterData]
        One letter per (normalized client name, template type). Calling this
        twice on the same records yields the same content; only ids differ.
    """
    settings = settings or letter_settings()
    today = today or date.today()

    buckets: "OrderedDict[Tuple[str, TemplateType], List[ProcessedInsuranceRecord]]" = OrderedDict()
    for record in records:
        template = determine_template_type(record.branch, settings.health_keywords)
        key = (normalize_name(record.insured_name), template)
        buckets.setdefault(key, []).append(record)

    session = uuid.uuid4().hex[:8]
    letters: List[LetterData] = []
    for index, ((_, template), group) in enumerate(buckets.items()):
        first = group[0]
        builder = build_health_policy if template is TemplateType.SALUD else build_general_policy
        policies = tuple(
            builder(
                policy_records,
                locale=settings.locale,
                currency=settings.default_currency,
            )
            for policy_records in _by_policy(group).values()
        )
        email, address = split_contact(first.email_or_address)

        letter = LetterData(
            id=f"letter_{index}_{session}",
            source_record_ids=tuple(record.id for record in group),
            template_type=template,
            reference_number=generate_reference_number(
                today.year, settings.reference_template
            ),
            issue_date=today,
            client=ClientInfo(
                name=collapse_whitespace(first.insured_name),
                phone=first.phone or None,
                email=email,
                address=address,
            ),
            policies=policies,
            executive=first.executive,
        )
        letters.append(refresh_review_state(letter, settings))

    LOG.info("Grouped %s records into %s letters", sum(len(g) for g in buckets.values()), len(letters))
    return letters


def prepare_letters(
    records: Iterable[ProcessedInsuranceRecord],
    *,
    today: Optional[date] = None,
    settings: Optional[LetterSettings] = None,
) -> Tuple[List[LetterData], List[str]]:
    """Group the records that carry enough data for a letter.

    Returns
    -------
    Tuple[List[LetterData], List[str]]
        The letters, and one message per record left out explaining why.
    """
    usable: List[ProcessedInsuranceRecord] = []
    skipped: List[str] = []
    for record in records:
        result = validate_record_for_letter(record)
        if result.valid:
            usable.append(record)
        else:
            skipped.append(
                f"{record.insured_name} ({record.policy_number}): {', '.join(result.errors)}"
            )
    if skipped:
        LOG.warning("Skipped %s records lacking letter data", len(skipped))
    return group_for_letters(usable, today=today, settings=settings), skipped


def _check_currencies(changes: Dict[str, Any]) -> None:
    for key in ("deductibles_currency", "territoriality_currency"):
        if key in changes and changes[key] not in CURRENCIES:
            raise ValueError(
                f"{key} must be one of {', '.join(CURRENCIES)}, got {changes[key]!r}"
            )


def update_policy_fields(
    letter: LetterData,
    policy_index: int,
    settings: Optional[LetterSettings] = None,
    **changes: Any,
) -> LetterData:
    """Apply manual-field edits to one policy and recompute review state.

    Raises
    ------
    IndexError
        If policy_index is out of range.
    TypeError
        If a change names an unknown manual field.
    ValueError
        If a currency is not "Bs." or "$us.".
    """
    _check_currencies(changes)
    if "insured_members" in changes and changes["insured_members"] is not None:
        changes["insured_members"] = tuple(changes["insured_members"])

    policies = list(letter.policies)
    policy = policies[policy_index]
    manual = dataclasses.replace(policy.manual_fields, **changes)
    policies[policy_index] = dataclasses.replace(policy, manual_fields=manual)
    return refresh_review_state(
        dataclasses.replace(letter, policies=tuple(policies)), settings
    )


def update_covered_item(
    letter: LetterData,
    policy_index: int,
    item_index: int,
    settings: Optional[LetterSettings] = None,
    **changes: Any,
) -> LetterData:
    """Edit one covered item (description or declared value)."""
    policies = list(letter.policies)
    policy = policies[policy_index]
    items = list(policy.covered_items)
    items[item_index] = dataclasses.replace(items[item_index], **changes)
    policies[policy_index] = dataclasses.replace(policy, covered_items=tuple(items))
    return refresh_review_state(
        dataclasses.replace(letter, policies=tuple(policies)), settings
    )


def update_letter(
    letter: LetterData,
    settings: Optional[LetterSettings] = None,
    **changes: Any,
) -> LetterData:
    """Edit letter-level fields (reference number, additional conditions, ...).

    Review fields cannot be set directly; they are always recomputed.
    """
    for key in ("needs_review", "missing_data", "policies"):
        if key in changes:
            raise ValueError(f"{key} cannot be edited directly")
    return refresh_review_state(dataclasses.replace(letter, **changes), settings)
