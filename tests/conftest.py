"""Shared pytest fixtures for unit, integration, and e2e tests.

This module provides:
- Temporary directory fixtures for file I/O testing
- A fixed reference date so status classification is deterministic
- Configuration fixtures for parameter testing
- Workbook and PDF fixtures built from tests.fixtures.sample_input
"""

from __future__ import annotations

import tempfile
from datetime import date
from pathlib import Path
from typing import Any, Dict, Generator

import pytest
import yaml

from renewal_pipeline.config_loader import ingest_settings, letter_settings
from renewal_pipeline.data_models import IngestSettings, LetterSettings
from tests.fixtures import sample_input


@pytest.fixture
def tmp_test_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that's cleaned up after each test.

    Real-world significance:
    - Isolates file I/O tests from each other
    - Prevents test artifacts from polluting the file system

    Yields
    ------
    Path
        Absolute path to temporary directory (automatically deleted after test)
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def tmp_output_structure(tmp_test_dir: Path) -> Dict[str, Path]:
    """Create the output directory structure the pipeline writes into.

    Returns
    -------
    Dict[str, Path]
        Keys: 'root', 'artifacts', 'logs'
    """
    (tmp_test_dir / "artifacts").mkdir(exist_ok=True)
    (tmp_test_dir / "logs").mkdir(exist_ok=True)
    return {
        "root": tmp_test_dir,
        "artifacts": tmp_test_dir / "artifacts",
        "logs": tmp_test_dir / "logs",
    }


@pytest.fixture
def today() -> date:
    """Fixed reference date used as "today" across tests.

    Real-world significance:
    - Status depends on the run date; pinning it keeps tests stable
    """
    return date(2025, 1, 15)


@pytest.fixture
def default_config() -> Dict[str, Any]:
    """Provide a complete configuration dict matching parameters.yaml.

    Real-world significance:
    - Lets tests tweak one value without touching the shipped config file
    """
    return {
        "ingestion": {
            "max_upload_bytes": 10 * 1024 * 1024,
            "allowed_extensions": [".xlsx", ".xlsm"],
        },
        "status": {
            "critical_days_threshold": 5,
            "due_soon_days_threshold": 30,
            "days_before_expiry_to_send": 30,
        },
        "letters": {
            "health_keywords": ["salud", "vida", "medic"],
            "reference_template": "SCPSA-____/{year}",
            "flag_reference_placeholder": False,
            "city": "Santa Cruz",
            "locale": "es",
            "company_name": "PATRIA S.A.",
            "company_subtitle": "Corredores y Asesores en Seguros",
            "default_currency": "Bs.",
        },
        "typst": {"font_paths": []},
        "output": {"archive_prefix": "Cartas_Vencimiento"},
    }


@pytest.fixture
def config_file(tmp_test_dir: Path, default_config: Dict[str, Any]) -> Path:
    """Write default_config to a temporary parameters.yaml."""
    path = tmp_test_dir / "parameters.yaml"
    path.write_text(yaml.safe_dump(default_config, allow_unicode=True), encoding="utf-8")
    return path


@pytest.fixture
def ingest_cfg(default_config: Dict[str, Any]) -> IngestSettings:
    return ingest_settings(default_config)


@pytest.fixture
def letter_cfg(default_config: Dict[str, Any]) -> LetterSettings:
    return letter_settings(default_config)


@pytest.fixture
def sample_workbook_bytes(today: date) -> bytes:
    """Five valid rows in an in-memory .xlsx workbook."""
    return sample_input.create_workbook_bytes(sample_input.create_policy_rows(5, today))


@pytest.fixture
def blank_pdf_bytes() -> bytes:
    """One-page PDF standing in for a compiled letter."""
    return sample_input.create_blank_pdf_bytes()
