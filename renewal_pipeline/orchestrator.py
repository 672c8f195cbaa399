"""Renewal notice pipeline orchestrator.

Runs the end-to-end flow from a policy workbook to a ZIP of renewal letters,
printing step headers, timings and a summary.

**Error Handling Philosophy:**

- **Fatal** (configuration errors, missing input, rejected workbook): the run
  stops immediately and exits with code 1.
- **Per-item** (invalid rows, records lacking letter data, letters that fail
  to render): reported in the summary; the remaining items continue.

**Exit Codes:**
- 0: Pipeline completed (possibly with per-item errors)
- 1: Pipeline failed (configuration, input or ingestion error)
"""

from __future__ import annotations

import argparse
import sys
import time
import traceback
from datetime import date, datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

from . import bundle_letters, generate_notices, group_letters, preprocess
from .config_loader import ingest_settings, letter_settings, load_config
from .data_models import IngestResult, ProcessedInsuranceRecord
from .enums import InsuranceStatus
from .status import records_needing_notification

SCRIPT_DIR = Path(__file__).resolve().parent
ROOT_DIR = SCRIPT_DIR.parent
DEFAULT_OUTPUT_DIR = ROOT_DIR / "output"
DEFAULT_TEMPLATES_DIR = ROOT_DIR / "templates"
DEFAULT_CONFIG_PATH = ROOT_DIR / "config" / "parameters.yaml"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Generate insurance renewal notices from a policy workbook",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s vencimientos.xlsx
  %(prog)s vencimientos.xlsx --status critical --status due_soon
  %(prog)s vencimientos.xlsx --all --today 2025-01-15
        """,
    )

    parser.add_argument(
        "input_file",
        type=Path,
        help="Path to the policy workbook (e.g., vencimientos.xlsx)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=DEFAULT_OUTPUT_DIR,
        dest="output_dir",
        help=f"Output directory (default: {DEFAULT_OUTPUT_DIR})",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        dest="config_path",
        help=f"Configuration file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--templates",
        type=Path,
        default=DEFAULT_TEMPLATES_DIR,
        dest="template_dir",
        help=f"Letter template directory (default: {DEFAULT_TEMPLATES_DIR})",
    )
    parser.add_argument(
        "--today",
        type=date.fromisoformat,
        default=None,
        help="Reference date as YYYY-MM-DD (default: current date)",
    )
    selection = parser.add_mutually_exclusive_group()
    selection.add_argument(
        "--status",
        action="append",
        choices=[status.value for status in InsuranceStatus],
        dest="statuses",
        help="Select records with this status (repeatable)",
    )
    selection.add_argument(
        "--all",
        action="store_true",
        dest="select_all",
        help="Generate letters for every valid record",
    )

    return parser.parse_args(argv)


def validate_args(args: argparse.Namespace) -> None:
    """Validate command-line arguments and raise errors if invalid."""
    if not args.input_file.exists():
        raise FileNotFoundError(f"Input file not found: {args.input_file}")
    if not args.template_dir.is_dir():
        raise NotADirectoryError(f"Template path is not a directory: {args.template_dir}")


def print_header(input_file: Path) -> None:
    """Print the pipeline header."""
    print()
    print("🚀 Starting renewal notice pipeline")
    print(f"🗂️  Input File: {input_file}")
    print()


def print_step(step_num: int, description: str) -> None:
    """Print a step header."""
    print()
    print(f"{'=' * 60}")
    print(f"Step {step_num}: {description}")
    print(f"{'=' * 60}")


def print_step_complete(step_num: int, description: str, duration: float) -> None:
    """Print step completion message."""
    print(f"✅ Step {step_num}: {description} complete in {duration:.1f} seconds.")


def print_messages(title: str, messages: Sequence[str]) -> None:
    if not messages:
        return
    print(title)
    for message in messages:
        print(f" - {message}")


def select_records(
    records: Sequence[ProcessedInsuranceRecord],
    *,
    statuses: Optional[Sequence[str]],
    select_all: bool,
    days_before: int,
) -> List[ProcessedInsuranceRecord]:
    """Choose the records to notify.

    ``--all`` takes every record, ``--status`` the listed statuses, and by
    default the records expiring inside the notice window.
    """
    if select_all:
        return list(records)
    if statuses:
        wanted = {InsuranceStatus.from_string(value) for value in statuses}
        return [record for record in records if record.status in wanted]
    return records_needing_notification(records, days_before)


def print_summary(
    step_times: list[tuple[str, float]],
    total_duration: float,
    result: IngestResult,
    letters_total: int,
    generated: int,
) -> None:
    """Print the pipeline summary."""
    print()
    print(f"{'=' * 60}")
    print("🎉 Pipeline completed successfully!")
    print(f"{'=' * 60}")
    print()
    print("🕒 Time Summary:")
    for step_name, duration in step_times:
        print(f"  - {step_name:<25} {duration:.1f}s")
    print(f"  - {'─' * 25} {'─' * 6}")
    print(f"  - {'Total Time':<25} {total_duration:.1f}s")
    print()
    print(f"📋 Records read:           {result.total_records}")
    print(f"✔️  Valid records:          {result.valid_records}")
    print(f"✉️  Letters grouped:        {letters_total}")
    print(f"📄 Letters generated:      {generated}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the pipeline orchestrator."""
    try:
        args = parse_args(argv)
        validate_args(args)
        config = load_config(args.config_path)
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    output_dir = args.output_dir.resolve()
    run_id = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    today = args.today or date.today()
    ingest_cfg = ingest_settings(config)
    letter_cfg = letter_settings(config)
    font_paths = (config.get("typst") or {}).get("font_paths", [])

    print_header(args.input_file)

    total_start = time.time()
    step_times = []

    try:
        # Step 1: Ingestion
        print_step(1, "Ingesting workbook")
        step_start = time.time()
        log_path = preprocess.configure_logging(output_dir, run_id)
        result = preprocess.ingest_file(args.input_file, settings=ingest_cfg, today=today)
        artifact_path = preprocess.write_artifact(
            output_dir / "artifacts", run_id, result, input_file=args.input_file.name
        )
        print(f"📄 Ingestion artifact: {artifact_path}")
        print(f"Ingestion log written to {log_path}")
        print_messages("Warnings detected during ingestion:", result.warnings)
        if not result.success:
            print_messages("Ingestion failed:", result.errors)
            return 1
        print_messages("Rows skipped:", result.errors)
        step_duration = time.time() - step_start
        step_times.append(("Ingestion", step_duration))
        print_step_complete(1, "Ingestion", step_duration)

        # Step 2: Record selection
        print_step(2, "Selecting records")
        step_start = time.time()
        selected = select_records(
            result.records,
            statuses=args.statuses,
            select_all=args.select_all,
            days_before=ingest_cfg.days_before_expiry_to_send,
        )
        print(f"🔎 Records selected: {len(selected)} of {result.valid_records}")
        step_duration = time.time() - step_start
        step_times.append(("Record Selection", step_duration))
        print_step_complete(2, "Record selection", step_duration)

        # Step 3: Letter grouping
        print_step(3, "Grouping letters")
        step_start = time.time()
        letters, skipped = group_letters.prepare_letters(
            selected, today=today, settings=letter_cfg
        )
        print_messages("Records without enough data for a letter:", skipped)
        stats = bundle_letters.letter_stats(letters)
        print(
            f"✉️  {stats['total']} letters ({stats['salud']} salud, "
            f"{stats['general']} general), {stats['need_review']} need review"
        )
        step_duration = time.time() - step_start
        step_times.append(("Letter Grouping", step_duration))
        print_step_complete(3, "Letter grouping", step_duration)

        # Step 4: Rendering and packaging
        print_step(4, "Rendering letters")
        generated = 0
        if letters:
            step_start = time.time()
            render = generate_notices.make_pdf_renderer(
                work_dir=output_dir / "artifacts" / "typst",
                template_dir=args.template_dir,
                settings=letter_cfg,
                font_paths=font_paths,
            )
            export = bundle_letters.export_letters(
                letters, render=render, today=today, settings=letter_cfg
            )
            archive_path = bundle_letters.write_export(export, output_dir)
            print_messages("Letters that failed to render:", export.errors)
            if archive_path is not None:
                print(f"📦 Archive: {archive_path}")
            generated = export.total_generated
            step_duration = time.time() - step_start
            step_times.append(("Rendering", step_duration))
            print_step_complete(4, "Rendering", step_duration)
        else:
            print("Rendering skipped (no letters to generate).")

        total_duration = time.time() - total_start
        print_summary(step_times, total_duration, result, len(letters), generated)
        return 0

    except Exception as exc:
        print(f"\n❌ Pipeline failed: {exc}", file=sys.stderr)
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
