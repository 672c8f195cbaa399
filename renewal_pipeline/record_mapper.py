"""Map raw spreadsheet rows into typed insurance records and validate them.

**Input Contract:**
- A RawRow: mapping of header label -> untyped cell value. Labels may carry
  stray whitespace or different casing (" VALOR ASEGURADO ", "Prima").

**Output Contract:**
- map_row() is total: it always returns an InsuranceRecord. Missing text
  fields become "" (or a sentinel for identity fields), missing numbers 0.
- validate_record() is purely diagnostic: it never mutates and reports every
  failing rule rather than stopping at the first one.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .config_loader import ingest_settings
from .data_models import InsuranceRecord, RawRow, ValidationResult, ValidationRule
from .dates import to_calendar_date
from .utils import collapse_whitespace, is_blank, string_or_empty

LOG = logging.getLogger(__name__)

DEFAULT_COMPANY = "Sin especificar"
DEFAULT_BRANCH = "Sin especificar"
DEFAULT_POLICY_NUMBER = "Sin número"
DEFAULT_INSURED_NAME = "Sin nombre"
DEFAULT_EXECUTIVE = "Sin asignar"

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NUMBER_PREFIX = re.compile(r"-?(\d+\.?\d*|\.\d+)")
_NON_NUMERIC = re.compile(r"[^\d.-]")
# Currency markers such as "Bs." or "$us." including their trailing dot
_CURRENCY_TOKEN = re.compile(r"[^\d\s.,-]+\.?")

# Canonical header label -> InsuranceRecord field
HEADER_FIELDS: Dict[str, str] = {
    "NRO.": "sequence_number",
    "FIN DE VIGENCIA": "expiry_date",
    "COMPAÑÍA": "company",
    "RAMO": "branch",
    "NO. PÓLIZA": "policy_number",
    "TELEFONO": "phone",
    "CORREO/DIRECCION": "email_or_address",
    "ASEGURADO": "insured_name",
    "CARTERA": "portfolio",
    "MATERIA ASEGURADA": "insured_matter",
    "VALOR ASEGURADO": "insured_value",
    "PRIMA": "premium",
    "EJECUTIVO": "executive",
    "RESPONSABLE": "responsible",
    "CARTA AVISO VTO.": "expiry_notice_sent",
    "SEGUIMIENTO": "follow_up",
    "CARTA DE NO RENOV.": "non_renewal_letter",
    "RENUEVA": "renews",
    "PENDIENTE": "pending",
    "NO RENUEVA": "not_renewing",
    "AVANCE": "progress",
    "CANTIDAD": "quantity",
    "OBSERVACIONES": "observations",
    "OBSERVACIONES2": "observations",
}


def normalize_header(label: Any) -> str:
    """Upper-case a header label and collapse its whitespace."""
    return collapse_whitespace(string_or_empty(label)).upper()


def map_columns(headers: Sequence[Any]) -> Dict[str, str]:
    """Resolve raw header labels to canonical header names.

    Exact matches (after normalize_header) are claimed first. Remaining
    headers are matched when they contain a canonical name, trying longer
    names first so "NO RENUEVA" is not taken for "RENUEVA". Each canonical
    name is claimed by at most one raw header.

    Parameters
    ----------
    headers : Sequence[Any]
        Header row cells in column order.

    Returns
    -------
    Dict[str, str]
        Mapping of raw label (as it appears in the sheet) -> canonical name.
        Unrecognized headers are omitted.
    """
    col_map: Dict[str, str] = {}
    claimed: set[str] = set()
    labels = [string_or_empty(h) for h in headers if not is_blank(h)]

    for label in labels:
        normalized = normalize_header(label)
        if normalized in HEADER_FIELDS and normalized not in claimed:
            col_map[label] = normalized
            claimed.add(normalized)

    by_length = sorted(HEADER_FIELDS, key=len, reverse=True)
    for label in labels:
        if label in col_map:
            continue
        normalized = normalize_header(label)
        for canonical in by_length:
            if canonical in claimed:
                continue
            if canonical in normalized:
                col_map[label] = canonical
                claimed.add(canonical)
                LOG.debug("Matched header %r to %r", label, canonical)
                break

    return col_map


def clean_string(value: Any) -> str:
    """Convert a cell to a trimmed string ("" for empty cells).

    Whole floats are printed without the trailing ``.0`` that numeric policy
    numbers and phones pick up in spreadsheets.
    """
    if isinstance(value, float) and not math.isnan(value) and value.is_integer():
        return str(int(value))
    return string_or_empty(value)


def parse_number(value: Any) -> float:
    """Coerce a cell to a number, never returning NaN.

    Strings first lose currency markers ("Bs.", "$us."), then everything
    except digits, ``.`` and ``-``; the leading numeric prefix is parsed
    (``"Bs. 1,500.50"`` -> ``1500.5``).
    Anything unparseable is ``0``.
    """
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else 0.0
    if isinstance(value, str):
        cleaned = _NON_NUMERIC.sub("", _CURRENCY_TOKEN.sub("", value))
        match = _NUMBER_PREFIX.match(cleaned)
        if not match:
            return 0.0
        number = float(match.group(0))
        return number if math.isfinite(number) else 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _lookup(row: Mapping[str, Any], canonical: str) -> Any:
    value = row.get(canonical)
    return None if is_blank(value) else value


def map_row(row: RawRow) -> InsuranceRecord:
    """Map a raw row into an InsuranceRecord.

    Parameters
    ----------
    row : RawRow
        Header label -> cell value. Labels are matched case-insensitively
        and with whitespace collapsed.

    Returns
    -------
    InsuranceRecord
        Typed record with defaults applied; never raises for missing data.
    """
    normalized: Dict[str, Any] = {}
    for label, value in row.items():
        key = normalize_header(label)
        # keep the first non-empty value when labels collide after normalization
        if key not in normalized or is_blank(normalized[key]):
            normalized[key] = value

    def text(canonical: str) -> str:
        return clean_string(_lookup(normalized, canonical))

    observations = text("OBSERVACIONES2") or text("OBSERVACIONES")

    return InsuranceRecord(
        sequence_number=parse_number(_lookup(normalized, "NRO.")),
        expiry_date=_lookup(normalized, "FIN DE VIGENCIA"),
        company=text("COMPAÑÍA") or DEFAULT_COMPANY,
        branch=text("RAMO") or DEFAULT_BRANCH,
        policy_number=text("NO. PÓLIZA") or DEFAULT_POLICY_NUMBER,
        phone=text("TELEFONO"),
        email_or_address=text("CORREO/DIRECCION"),
        insured_name=text("ASEGURADO") or DEFAULT_INSURED_NAME,
        portfolio=text("CARTERA"),
        insured_matter=text("MATERIA ASEGURADA"),
        insured_value=parse_number(_lookup(normalized, "VALOR ASEGURADO")),
        premium=parse_number(_lookup(normalized, "PRIMA")),
        executive=text("EJECUTIVO") or DEFAULT_EXECUTIVE,
        responsible=text("RESPONSABLE"),
        expiry_notice_sent=text("CARTA AVISO VTO."),
        follow_up=text("SEGUIMIENTO"),
        non_renewal_letter=text("CARTA DE NO RENOV."),
        renews=text("RENUEVA"),
        pending=text("PENDIENTE"),
        not_renewing=text("NO RENUEVA"),
        progress=parse_number(_lookup(normalized, "AVANCE")),
        quantity=parse_number(_lookup(normalized, "CANTIDAD")),
        observations=observations,
    )


def _check_rule(rule: ValidationRule, value: Any, row_index: int) -> List[str]:
    prefix = f"Fila {row_index}"
    if is_blank(value):
        if rule.required:
            return [f'{prefix}: Campo "{rule.label}" es requerido']
        return []

    errors: List[str] = []
    if rule.type == "string":
        length = len(clean_string(value))
        if rule.min_length is not None and length < rule.min_length:
            errors.append(
                f'{prefix}: "{rule.label}" debe tener al menos {rule.min_length} caracteres'
            )
        if rule.max_length is not None and length > rule.max_length:
            errors.append(
                f'{prefix}: "{rule.label}" no puede tener más de {rule.max_length} caracteres'
            )
    elif rule.type == "number":
        if not math.isfinite(parse_number(value)):
            errors.append(f'{prefix}: "{rule.label}" debe ser un número válido')
    elif rule.type == "date":
        if to_calendar_date(value) is None:
            errors.append(f'{prefix}: "{rule.label}" debe ser una fecha válida')
    elif rule.type == "email":
        if not EMAIL_PATTERN.match(clean_string(value)):
            errors.append(f'{prefix}: "{rule.label}" debe ser un email válido')
    return errors


def validate_record(
    record: InsuranceRecord,
    row_index: int,
    rules: Optional[Iterable[ValidationRule]] = None,
) -> ValidationResult:
    """Apply the field rule table to a mapped record.

    Parameters
    ----------
    record : InsuranceRecord
        Record produced by map_row().
    row_index : int
        Worksheet row number used in error messages.
    rules : Iterable[ValidationRule], optional
        Rule table; defaults to the built-in table from config_loader.

    Returns
    -------
    ValidationResult
        ``valid`` is True only when no rule produced an error. All errors
        are accumulated.
    """
    if rules is None:
        rules = ingest_settings().validation_rules

    errors: List[str] = []
    for rule in rules:
        value = getattr(record, rule.field, None)
        errors.extend(_check_rule(rule, value, row_index))

    return ValidationResult(valid=not errors, errors=errors)
