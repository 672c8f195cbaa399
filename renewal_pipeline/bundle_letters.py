"""Render a batch of letters and package the PDFs into a ZIP archive.

**Input Contract:**
- LetterData list from group_letters
- A ``render`` callable (letter -> PDF bytes), normally built by
  generate_notices.make_pdf_renderer()

**Output Contract:**
- ExportResult with one GeneratedLetter per successful render, one error
  message per failed letter and the ZIP of all successes
- Archive name ``{archive_prefix}_{YYYY-MM-DD}.zip``
- write_export() writes the archive and a JSON manifest to disk

**Error Handling:**
- Per-letter failures (template, compile, empty PDF) are logged, recorded and
  the batch continues; a partial batch still produces an archive
- Nothing rendered means no archive and ``success`` False
"""

from __future__ import annotations

import json
import logging
import zipfile
from datetime import date
from hashlib import sha256
from io import BytesIO
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .config_loader import letter_settings
from .data_models import ExportResult, GeneratedLetter, LetterData, LetterSettings
from .enums import TemplateType
from .generate_notices import count_pages, generate_file_name

LOG = logging.getLogger(__name__)


def archive_name(today: date, prefix: str = "Cartas_Vencimiento") -> str:
    return f"{prefix}_{today.isoformat()}.zip"


def unique_file_name(name: str, used: Dict[str, int]) -> str:
    """Return ``name`` or ``name`` with a numeric suffix if already taken.

    Two clients whose names clean to the same string would otherwise
    overwrite each other inside the archive.
    """
    count = used.get(name, 0)
    used[name] = count + 1
    if count == 0:
        return name
    stem, dot, suffix = name.rpartition(".")
    candidate = f"{stem}_{count + 1}{dot}{suffix}"
    return unique_file_name(candidate, used)


def build_archive(files: Iterable[Tuple[str, bytes]]) -> bytes:
    """Pack (file name, content) pairs into an in-memory ZIP archive."""
    buffer = BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, content in files:
            archive.writestr(name, content)
    return buffer.getvalue()


def export_letters(
    letters: Sequence[LetterData],
    *,
    render: Callable[[LetterData], bytes],
    today: Optional[date] = None,
    settings: Optional[LetterSettings] = None,
) -> ExportResult:
    """Render every letter and bundle the successes.

    Parameters
    ----------
    letters : Sequence[LetterData]
        Letters to export, in output order.
    render : Callable[[LetterData], bytes]
        Produces PDF bytes for one letter; may raise.
    today : date, optional
        Date used in file and archive names. Defaults to the current date.
    settings : LetterSettings, optional
        Supplies the archive name prefix.

    Returns
    -------
    ExportResult
        Generated letters, per-letter errors and the archive.
    """
    settings = settings or letter_settings()
    today = today or date.today()

    generated: List[GeneratedLetter] = []
    errors: List[str] = []
    used_names: Dict[str, int] = {}

    for letter in letters:
        try:
            pdf_bytes = render(letter)
            page_count = count_pages(pdf_bytes)
            if page_count < 1:
                raise ValueError("el PDF generado no tiene páginas")
        except Exception as exc:
            message = f"Error generando carta para {letter.client.name}: {exc}"
            LOG.error(message)
            errors.append(message)
            continue

        file_name = unique_file_name(
            generate_file_name(letter.client.name, letter.template_type, today), used_names
        )
        generated.append(
            GeneratedLetter(
                letter_id=letter.id,
                source_record_ids=letter.source_record_ids,
                client_name=letter.client.name,
                template_type=letter.template_type,
                file_name=file_name,
                pdf_bytes=pdf_bytes,
                page_count=page_count,
                policy_count=len(letter.policies),
                needs_review=letter.needs_review,
                missing_data=letter.missing_data,
            )
        )
        LOG.info("Rendered %s (%s pages)", file_name, page_count)

    if not generated:
        return ExportResult(
            success=False, letters=[], errors=errors, total_generated=0
        )

    return ExportResult(
        success=True,
        letters=generated,
        errors=errors,
        total_generated=len(generated),
        archive_name=archive_name(today, settings.archive_prefix),
        archive_bytes=build_archive((item.file_name, item.pdf_bytes) for item in generated),
    )


def letter_stats(letters: Sequence[LetterData]) -> Dict[str, int]:
    """Summary counts shown before exporting."""
    return {
        "total": len(letters),
        "salud": sum(1 for letter in letters if letter.template_type is TemplateType.SALUD),
        "general": sum(1 for letter in letters if letter.template_type is TemplateType.GENERAL),
        "need_review": sum(1 for letter in letters if letter.needs_review),
        "total_policies": sum(len(letter.policies) for letter in letters),
    }


def write_export(result: ExportResult, output_dir: Path) -> Optional[Path]:
    """Write the archive and its JSON manifest under ``output_dir``.

    Returns
    -------
    Path or None
        Path of the written archive, or None when nothing was rendered.
    """
    if result.archive_bytes is None or result.archive_name is None:
        LOG.info("No letters rendered; nothing to write.")
        return None

    output_dir.mkdir(parents=True, exist_ok=True)
    archive_path = output_dir / result.archive_name
    archive_path.write_bytes(result.archive_bytes)

    manifest = {
        "archive": result.archive_name,
        "sha256": sha256(result.archive_bytes).hexdigest(),
        "total_generated": result.total_generated,
        "errors": result.errors,
        "letters": [
            {
                "letter_id": item.letter_id,
                "file_name": item.file_name,
                "client_name": item.client_name,
                "template_type": item.template_type.value,
                "pages": item.page_count,
                "policies": item.policy_count,
                "needs_review": item.needs_review,
                "missing_data": list(item.missing_data),
                "source_record_ids": list(item.source_record_ids),
            }
            for item in result.letters
        ],
    }
    manifest_path = archive_path.with_name(f"{archive_path.stem}_manifest.json")
    manifest_path.write_text(json.dumps(manifest, indent=2, ensure_ascii=False), encoding="utf-8")
    LOG.info("Wrote %s (%s letters)", archive_path, result.total_generated)
    return archive_path
