"""Unit tests for orchestrator module - CLI parsing, selection and main().

Tests cover:
- Argument parsing defaults and the --status / --all exclusivity
- Record selection modes
- Exit codes for missing input, bad configuration and rejected workbooks
- A full run with the Typst compiler stubbed

Real-world significance:
- The CLI is how the weekly mailing is produced; exit codes drive the
  scheduled job that runs it
"""

from __future__ import annotations

import logging
import zipfile
from datetime import date, timedelta
from pathlib import Path

import pytest

from renewal_pipeline import generate_notices, orchestrator
from renewal_pipeline.enums import InsuranceStatus
from tests.fixtures import sample_input


@pytest.fixture(autouse=True)
def restore_root_logger():
    """main() reconfigures the root logger; put it back after each test."""
    root = logging.getLogger()
    saved_handlers = root.handlers[:]
    saved_level = root.level
    yield
    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


@pytest.mark.unit
class TestParseArgs:
    """Unit tests for parse_args()."""

    def test_defaults(self) -> None:
        args = orchestrator.parse_args(["vencimientos.xlsx"])
        assert args.input_file == Path("vencimientos.xlsx")
        assert args.output_dir == orchestrator.DEFAULT_OUTPUT_DIR
        assert args.config_path == orchestrator.DEFAULT_CONFIG_PATH
        assert args.statuses is None
        assert not args.select_all
        assert args.today is None

    def test_status_repeatable_and_today(self) -> None:
        args = orchestrator.parse_args(
            ["v.xlsx", "--status", "critical", "--status", "due_soon", "--today", "2025-01-15"]
        )
        assert args.statuses == ["critical", "due_soon"]
        assert args.today == date(2025, 1, 15)

    def test_status_and_all_are_exclusive(self) -> None:
        with pytest.raises(SystemExit):
            orchestrator.parse_args(["v.xlsx", "--status", "critical", "--all"])

    def test_unknown_status_rejected(self) -> None:
        with pytest.raises(SystemExit):
            orchestrator.parse_args(["v.xlsx", "--status", "vencida"])


@pytest.mark.unit
class TestSelectRecords:
    """Unit tests for select_records()."""

    @pytest.fixture
    def records(self, today: date):
        return [
            sample_input.create_processed_record(
                record_id=f"r{offset}", today=today, expiry_date=today + timedelta(days=offset)
            )
            for offset in (-1, 3, 20, 45)
        ]

    def test_default_notice_window(self, records) -> None:
        selected = orchestrator.select_records(records, statuses=None, select_all=False, days_before=30)
        assert [r.id for r in selected] == ["r3", "r20"]

    def test_by_status(self, records) -> None:
        selected = orchestrator.select_records(
            records, statuses=["expired", "pending"], select_all=False, days_before=30
        )
        assert [r.id for r in selected] == ["r-1", "r45"]
        assert selected[0].status is InsuranceStatus.EXPIRED

    def test_all(self, records) -> None:
        selected = orchestrator.select_records(records, statuses=None, select_all=True, days_before=30)
        assert len(selected) == 4


@pytest.mark.unit
class TestMain:
    """Unit tests for main() exit codes and outputs."""

    def test_missing_input_returns_1(self, tmp_test_dir: Path, capsys: pytest.CaptureFixture) -> None:
        code = orchestrator.main([str(tmp_test_dir / "nope.xlsx"), "--output", str(tmp_test_dir)])
        assert code == 1
        assert "Input file not found" in capsys.readouterr().err

    def test_bad_config_returns_1(self, tmp_test_dir: Path, today: date) -> None:
        workbook = sample_input.write_workbook(
            tmp_test_dir / "v.xlsx", sample_input.create_policy_rows(1, today)
        )
        config = tmp_test_dir / "bad.yaml"
        config.write_text("status:\n  critical_days_threshold: -2\n", encoding="utf-8")
        code = orchestrator.main([str(workbook), "--config", str(config)])
        assert code == 1

    def test_rejected_workbook_returns_1(self, tmp_test_dir: Path, config_file: Path) -> None:
        bad = tmp_test_dir / "v.xlsx"
        bad.write_bytes(b"not a workbook")
        code = orchestrator.main(
            [str(bad), "--config", str(config_file), "--output", str(tmp_test_dir / "out")]
        )
        assert code == 1
        assert list((tmp_test_dir / "out" / "artifacts").glob("ingested_records_*.json"))

    def test_full_run(
        self,
        monkeypatch: pytest.MonkeyPatch,
        tmp_test_dir: Path,
        config_file: Path,
        today: date,
        blank_pdf_bytes: bytes,
    ) -> None:
        """Verify a workbook becomes a ZIP of letters for the notice window.

        Real-world significance:
        - This is the weekly run: 5 policies, 4 expiring within 30 days
        """
        monkeypatch.setattr(generate_notices.typst, "compile", lambda *a, **k: blank_pdf_bytes)
        workbook = sample_input.write_workbook(
            tmp_test_dir / "vencimientos.xlsx", sample_input.create_policy_rows(5, today)
        )
        output_dir = tmp_test_dir / "out"

        code = orchestrator.main(
            [
                str(workbook),
                "--config",
                str(config_file),
                "--output",
                str(output_dir),
                "--today",
                today.isoformat(),
            ]
        )

        assert code == 0
        archive = output_dir / "Cartas_Vencimiento_2025-01-15.zip"
        assert archive.exists()
        with zipfile.ZipFile(archive) as bundle:
            names = bundle.namelist()
        assert len(names) == 4
        assert "15012025-AVISO_SALUD_GUTIERREZ_ROCA_MARIA.pdf" in names
        assert (output_dir / "Cartas_Vencimiento_2025-01-15_manifest.json").exists()
        assert list((output_dir / "logs").glob("ingest_*.log"))

    def test_run_without_letters(self, tmp_test_dir: Path, config_file: Path, today: date) -> None:
        workbook = sample_input.write_workbook(
            tmp_test_dir / "v.xlsx",
            [sample_input.make_row(**{"FIN DE VIGENCIA": today + timedelta(days=90)})],
        )
        output_dir = tmp_test_dir / "out"
        code = orchestrator.main(
            [str(workbook), "--config", str(config_file), "--output", str(output_dir), "--today", today.isoformat()]
        )
        assert code == 0
        assert not list(output_dir.glob("*.zip"))
