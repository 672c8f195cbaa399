"""Unit tests for bundle_letters module - batch export and ZIP packaging.

Tests cover:
- Partial failures still producing an archive of the successes
- Archive naming and file-name collisions
- Manifest writing and summary counts

Real-world significance:
- One letter with a broken template must not block the rest of the batch
- The ZIP is what gets handed to the mailing staff
"""

from __future__ import annotations

import io
import json
import zipfile
from datetime import date, timedelta
from pathlib import Path

import pytest

from renewal_pipeline.bundle_letters import (
    archive_name,
    build_archive,
    export_letters,
    letter_stats,
    unique_file_name,
    write_export,
)
from renewal_pipeline.data_models import LetterSettings
from renewal_pipeline.enums import TemplateType
from renewal_pipeline.group_letters import group_for_letters
from tests.fixtures import sample_input


@pytest.fixture
def letters(today: date, letter_cfg: LetterSettings):
    rows = [
        {"insured_name": "PEREZ LOPEZ, JUAN", "branch": "AUTOMOTOR", "policy_number": "A-1"},
        {"insured_name": "PEREZ LOPEZ, JUAN", "branch": "SALUD", "policy_number": "S-1"},
        {"insured_name": "ROJAS PAZ, FERNANDO", "branch": "INCENDIO", "policy_number": "I-1"},
    ]
    records = [
        sample_input.create_processed_record(
            record_id=f"r{i}", today=today, expiry_date=today + timedelta(days=10), **row
        )
        for i, row in enumerate(rows)
    ]
    return group_for_letters(records, today=today, settings=letter_cfg)


@pytest.mark.unit
class TestNaming:
    """Unit tests for archive_name() and unique_file_name()."""

    def test_archive_name(self) -> None:
        assert archive_name(date(2025, 1, 15)) == "Cartas_Vencimiento_2025-01-15.zip"
        assert archive_name(date(2025, 1, 15), "Avisos") == "Avisos_2025-01-15.zip"

    def test_unique_file_name(self) -> None:
        used = {}
        assert unique_file_name("A.pdf", used) == "A.pdf"
        assert unique_file_name("A.pdf", used) == "A_2.pdf"
        assert unique_file_name("A.pdf", used) == "A_3.pdf"
        assert unique_file_name("B.pdf", used) == "B.pdf"

    def test_build_archive(self) -> None:
        data = build_archive([("a.txt", b"uno"), ("b.txt", b"dos")])
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            assert archive.namelist() == ["a.txt", "b.txt"]
            assert archive.read("b.txt") == b"dos"


@pytest.mark.unit
class TestExportLetters:
    """Unit tests for export_letters()."""

    def test_all_succeed(self, letters, today: date, letter_cfg: LetterSettings, blank_pdf_bytes: bytes) -> None:
        result = export_letters(letters, render=lambda l: blank_pdf_bytes, today=today, settings=letter_cfg)

        assert result.success
        assert result.errors == []
        assert result.total_generated == 3
        assert result.archive_name == "Cartas_Vencimiento_2025-01-15.zip"
        assert [g.file_name for g in result.letters] == [
            "15012025-AVISO_VCMTO_PEREZ_LOPEZ_JUAN.pdf",
            "15012025-AVISO_SALUD_PEREZ_LOPEZ_JUAN.pdf",
            "15012025-AVISO_VCMTO_ROJAS_PAZ_FERNANDO.pdf",
        ]
        assert result.letters[0].page_count == 1
        assert result.letters[0].source_record_ids == ("r0",)

    def test_partial_failure_still_archives(
        self, letters, today: date, letter_cfg: LetterSettings, blank_pdf_bytes: bytes
    ) -> None:
        """Verify a failing letter is reported and the rest are packaged.

        Real-world significance:
        - A typo in one client's data must not block the weekly mailing
        """

        def render(letter):
            if letter.template_type is TemplateType.SALUD:
                raise FileNotFoundError("Template not available for letter type: salud")
            return blank_pdf_bytes

        result = export_letters(letters, render=render, today=today, settings=letter_cfg)

        assert result.success
        assert result.total_generated == 2
        assert result.errors == [
            "Error generando carta para PEREZ LOPEZ, JUAN: Template not available for letter type: salud"
        ]
        with zipfile.ZipFile(io.BytesIO(result.archive_bytes)) as archive:
            assert len(archive.namelist()) == 2
            assert archive.read(archive.namelist()[0]) == blank_pdf_bytes

    def test_empty_pdf_is_an_error(self, letters, today: date, letter_cfg: LetterSettings) -> None:
        empty = sample_input.create_blank_pdf_bytes(pages=0)
        result = export_letters(letters[:1], render=lambda l: empty, today=today, settings=letter_cfg)
        assert not result.success
        assert "no tiene páginas" in result.errors[0]

    def test_all_fail_no_archive(self, letters, today: date, letter_cfg: LetterSettings) -> None:
        def render(letter):
            raise RuntimeError("typst error")

        result = export_letters(letters, render=render, today=today, settings=letter_cfg)
        assert not result.success
        assert result.archive_bytes is None
        assert result.archive_name is None
        assert len(result.errors) == 3

    def test_duplicate_client_names_kept_apart(
        self, letters, today: date, letter_cfg: LetterSettings, blank_pdf_bytes: bytes
    ) -> None:
        result = export_letters(
            [letters[0], letters[0]], render=lambda l: blank_pdf_bytes, today=today, settings=letter_cfg
        )
        names = [g.file_name for g in result.letters]
        assert names == [
            "15012025-AVISO_VCMTO_PEREZ_LOPEZ_JUAN.pdf",
            "15012025-AVISO_VCMTO_PEREZ_LOPEZ_JUAN_2.pdf",
        ]


@pytest.mark.unit
class TestWriteExport:
    """Unit tests for write_export() and letter_stats()."""

    def test_write_export(
        self, letters, today: date, letter_cfg: LetterSettings, blank_pdf_bytes: bytes, tmp_test_dir: Path
    ) -> None:
        result = export_letters(letters, render=lambda l: blank_pdf_bytes, today=today, settings=letter_cfg)
        path = write_export(result, tmp_test_dir / "out")

        assert path == tmp_test_dir / "out" / "Cartas_Vencimiento_2025-01-15.zip"
        assert path.read_bytes() == result.archive_bytes
        manifest = json.loads(
            (tmp_test_dir / "out" / "Cartas_Vencimiento_2025-01-15_manifest.json").read_text(encoding="utf-8")
        )
        assert manifest["total_generated"] == 3
        assert manifest["letters"][1]["template_type"] == "salud"
        assert manifest["letters"][0]["needs_review"] is True

    def test_write_export_nothing_rendered(self, letters, today: date, letter_cfg: LetterSettings, tmp_test_dir: Path) -> None:
        def render(letter):
            raise RuntimeError("boom")

        result = export_letters(letters, render=render, today=today, settings=letter_cfg)
        assert write_export(result, tmp_test_dir) is None
        assert list(tmp_test_dir.iterdir()) == []

    def test_letter_stats(self, letters) -> None:
        assert letter_stats(letters) == {
            "total": 3,
            "salud": 1,
            "general": 2,
            "need_review": 3,
            "total_policies": 3,
        }
