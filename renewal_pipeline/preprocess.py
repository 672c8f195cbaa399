"""Ingestion pipeline for renewal notices.

Turns the bytes of an uploaded workbook into validated, classified policy
records ready for filtering and letter grouping.

**Input Contract:**
- Reads the first worksheet of an Excel workbook (.xlsx/.xlsm by default)
- Row 1 holds header labels; required headers are matched by
  case-insensitive substring so annotated labels ("FIN DE VIGENCIA (dd/mm)")
  are accepted

**Output Contract:**
- Returns an IngestResult; never raises for data problems
- Valid records keep worksheet order and carry a session id, the normalized
  expiry date, the day count relative to the injected "today" and a status
- write_artifact() stores the result as JSON under output/artifacts/

**Error Handling:**
- Fatal (whole file rejected, nothing processed): oversized file, unsupported
  extension, unreadable or empty workbook, fewer than 2 rows, missing
  required headers
- Row-level errors (row dropped, batch continues): failed validation or an
  unexpected exception while mapping a single row
- Warnings (informational): empty rows, duplicate policy numbers
- Unreadable bytes raise inside the reader and are converted to a fatal
  result at this boundary

**Validation Contract:**

What this module validates:
- File size and extension against parameters.yaml
- Header presence
- Every field rule from the validation table (via record_mapper)

What this module assumes (validated upstream):
- Settings come from config_loader and are internally consistent
"""

from __future__ import annotations

import json
import logging
import uuid
from collections import defaultdict
from dataclasses import asdict
from datetime import date, datetime, timezone
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from rapidfuzz import fuzz, process

from .config_loader import ingest_settings
from .data_models import (
    IngestResult,
    IngestSettings,
    InsuranceRecord,
    ProcessedInsuranceRecord,
    RawRow,
)
from .dates import to_calendar_date
from .record_mapper import (
    DEFAULT_POLICY_NUMBER,
    map_columns,
    map_row,
    normalize_header,
    validate_record,
)
from .status import classify, days_until_expiry
from .utils import is_blank, string_or_empty

LOG = logging.getLogger(__name__)

THRESHOLD = 80


def configure_logging(output_dir: Path, run_id: str) -> Path:
    """Configure file logging for the ingestion step.

    Parameters
    ----------
    output_dir : Path
        Root output directory where logs subdirectory will be created.
    run_id : str
        Unique run identifier used in log filename.

    Returns
    -------
    Path
        Path to the created log file.
    """
    log_dir = output_dir / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"ingest_{run_id}.log"

    handler = logging.FileHandler(log_path, encoding="utf-8")
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(logging.INFO)
    root_logger.addHandler(handler)

    return log_path


def read_rows(data: bytes) -> Optional[List[List[Any]]]:
    """Read the first worksheet into a list of rows (header row included).

    Parameters
    ----------
    data : bytes
        Workbook bytes.

    Returns
    -------
    List[List[Any]] | None
        Cell values per row; blank cells are None. None when the workbook
        has no sheets.

    Raises
    ------
    Exception
        Whatever the Excel reader raises for corrupt or non-workbook bytes.
    """
    with pd.ExcelFile(BytesIO(data), engine="openpyxl") as workbook:
        if not workbook.sheet_names:
            return None
        frame = workbook.parse(workbook.sheet_names[0], header=None, dtype=object)

    rows: List[List[Any]] = []
    for values in frame.itertuples(index=False, name=None):
        rows.append([None if is_blank(v) else v for v in values])
    LOG.info("Loaded %s rows from first worksheet", len(rows))
    return rows


def find_missing_headers(
    headers: Sequence[Any], required: Sequence[str]
) -> List[str]:
    """Return required header names not contained in any header label."""
    labels = [string_or_empty(h).upper() for h in headers]
    return [
        name
        for name in required
        if not any(name.upper() in label for label in labels if label)
    ]


def suggest_header(missing: str, headers: Sequence[Any]) -> Optional[str]:
    """Suggest the sheet header most similar to a missing required header.

    Uses rapidfuzz partial_ratio; suggestions below THRESHOLD are dropped.
    """
    labels = [string_or_empty(h) for h in headers if not is_blank(h)]
    if not labels:
        return None
    match = process.extractOne(
        query=normalize_header(missing),
        choices=[normalize_header(label) for label in labels],
        scorer=fuzz.partial_ratio,
    )
    if match is None:
        return None
    _, score, index = match
    return labels[index] if score >= THRESHOLD else None


def build_raw_row(headers: Sequence[Any], values: Sequence[Any], col_map: Dict[str, str]) -> RawRow:
    """Build a header -> value mapping for one data row.

    Recognized headers are keyed by their canonical name; other non-empty
    headers keep their own label.
    """
    row: RawRow = {}
    for header, value in zip(headers, values):
        if is_blank(header) or is_blank(value):
            continue
        label = string_or_empty(header)
        row[col_map.get(label, label)] = value
    return row


def process_record(
    record: InsuranceRecord,
    *,
    record_id: str,
    row_number: int,
    today: date,
    settings: IngestSettings,
) -> ProcessedInsuranceRecord:
    """Derive expiry date, day count and status for a validated record.

    Raises
    ------
    ValueError
        If the expiry date cannot be normalized.
    """
    expiry = to_calendar_date(record.expiry_date)
    if expiry is None:
        raise ValueError(f"fecha de vencimiento no reconocida: {record.expiry_date!r}")

    days = days_until_expiry(expiry, today)
    status = classify(
        days,
        settings.critical_days_threshold,
        settings.due_soon_days_threshold,
    )
    return ProcessedInsuranceRecord(
        record=record,
        id=record_id,
        row_number=row_number,
        expiry=expiry,
        days_until_expiry=days,
        status=status,
    )


def find_duplicate_policies(records: Sequence[ProcessedInsuranceRecord]) -> List[str]:
    """Return one warning per policy number shared by several valid records.

    The "Sin número" placeholder is not a real policy number and is ignored.
    """
    rows_by_policy: Dict[str, List[int]] = defaultdict(list)
    for record in records:
        if record.policy_number == DEFAULT_POLICY_NUMBER:
            continue
        rows_by_policy[record.policy_number].append(record.row_number)

    warnings = []
    for policy, rows in rows_by_policy.items():
        if len(rows) > 1:
            listed = ", ".join(str(r) for r in rows)
            warnings.append(f"Póliza duplicada: {policy} (filas {listed})")
    return warnings


def ingest(
    data: bytes,
    file_name: str,
    *,
    settings: Optional[IngestSettings] = None,
    today: Optional[date] = None,
    file_size: Optional[int] = None,
) -> IngestResult:
    """Ingest workbook bytes into processed insurance records.

    Parameters
    ----------
    data : bytes
        Workbook bytes.
    file_name : str
        Original file name; only its extension is used.
    settings : IngestSettings, optional
        Limits, thresholds and validation rules. Defaults to built-ins.
    today : date, optional
        Reference date for day counts. Defaults to the current date.
    file_size : int, optional
        Declared upload size; defaults to ``len(data)``.

    Returns
    -------
    IngestResult
        See module docstring for the error model.
    """
    settings = settings or ingest_settings()
    today = today or date.today()
    size = len(data) if file_size is None else file_size

    if size > settings.max_upload_bytes:
        limit_mb = settings.max_upload_bytes / 1024 / 1024
        return IngestResult.fatal(
            f"El archivo es demasiado grande. Tamaño máximo: {limit_mb:g}MB"
        )

    extension = Path(file_name).suffix.lower()
    if extension not in settings.allowed_extensions:
        return IngestResult.fatal(
            "Tipo de archivo no soportado. Tipos permitidos: "
            + ", ".join(settings.allowed_extensions)
        )

    try:
        rows = read_rows(data)
    except Exception as exc:
        LOG.error("Failed to read workbook %s: %s", file_name, exc)
        return IngestResult.fatal("Error al procesar el archivo Excel", str(exc))

    if rows is None:
        return IngestResult.fatal("El archivo Excel no contiene hojas válidas")
    if len(rows) < 2:
        return IngestResult.fatal(
            "El archivo no contiene datos suficientes (mínimo: headers + 1 fila de datos)"
        )

    headers = rows[0]
    missing = find_missing_headers(headers, settings.required_headers)
    if missing:
        errors = [f"Headers faltantes: {', '.join(missing)}"]
        for name in missing:
            suggestion = suggest_header(name, headers)
            if suggestion:
                errors.append(f'Posible coincidencia para "{name}": "{suggestion}"')
        return IngestResult.fatal(*errors)

    col_map = map_columns(headers)
    session = uuid.uuid4().hex[:8]
    records: List[ProcessedInsuranceRecord] = []
    errors: List[str] = []
    warnings: List[str] = []
    total = 0

    for index, values in enumerate(rows[1:]):
        row_number = index + 2
        raw = build_raw_row(headers, values, col_map)
        if not raw:
            warnings.append(f"Fila {row_number}: Fila vacía, se omitirá")
            continue
        total += 1

        try:
            record = map_row(raw)
            validation = validate_record(record, row_number, settings.validation_rules)
            if not validation.valid:
                errors.extend(validation.errors)
                continue

            records.append(
                process_record(
                    record,
                    record_id=f"record_{index}_{session}",
                    row_number=row_number,
                    today=today,
                    settings=settings,
                )
            )
        except Exception as exc:
            LOG.warning("Row %s failed: %s", row_number, exc)
            errors.append(f"Fila {row_number}: Error al procesar - {exc}")

    if not records:
        return IngestResult(
            success=False,
            records=[],
            errors=["No se pudieron procesar registros válidos", *errors],
            warnings=warnings,
            total_records=total,
            valid_records=0,
        )

    warnings.extend(find_duplicate_policies(records))
    LOG.info(
        "Ingested %s valid of %s records (%s errors, %s warnings)",
        len(records),
        total,
        len(errors),
        len(warnings),
    )
    return IngestResult(
        success=True,
        records=records,
        errors=errors,
        warnings=warnings,
        total_records=total,
        valid_records=len(records),
    )


def ingest_file(
    path: Path,
    *,
    settings: Optional[IngestSettings] = None,
    today: Optional[date] = None,
) -> IngestResult:
    """Ingest a workbook from disk.

    The size limit is checked against the file's stat before its bytes are
    read. I/O failures become fatal results.
    """
    settings = settings or ingest_settings()
    path = Path(path)
    try:
        size = path.stat().st_size
        if size > settings.max_upload_bytes:
            return ingest(b"", path.name, settings=settings, today=today, file_size=size)
        data = path.read_bytes()
    except OSError as exc:
        LOG.error("Failed to read %s: %s", path, exc)
        return IngestResult.fatal(f"No se pudo leer el archivo: {exc}")

    return ingest(data, path.name, settings=settings, today=today, file_size=size)


def _json_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if is_blank(value):
        return None
    return value


def record_to_dict(record: ProcessedInsuranceRecord) -> Dict[str, Any]:
    """Serialize a processed record for the JSON artifact."""
    source = {key: _json_value(val) for key, val in asdict(record.record).items()}
    return {
        "id": record.id,
        "row_number": record.row_number,
        "expiry": record.expiry.isoformat(),
        "days_until_expiry": record.days_until_expiry,
        "status": record.status.value,
        "selected": record.selected,
        "record": source,
    }


def write_artifact(
    output_dir: Path,
    run_id: str,
    result: IngestResult,
    input_file: Optional[str] = None,
) -> Path:
    """Write the ingestion result to a JSON artifact file."""
    output_dir.mkdir(parents=True, exist_ok=True)

    payload = {
        "run_id": run_id,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "input_file": input_file,
        "success": result.success,
        "total_records": result.total_records,
        "valid_records": result.valid_records,
        "errors": result.errors,
        "warnings": result.warnings,
        "records": [record_to_dict(record) for record in result.records],
    }

    artifact_path = output_dir / f"ingested_records_{run_id}.json"
    artifact_path.write_text(
        json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8"
    )
    LOG.info("Wrote ingestion artifact to %s", artifact_path)
    return artifact_path
