"""Configuration loading utilities for the renewal notice pipeline.

Provides a centralized way to load and validate the parameters.yaml
configuration file and to resolve it into the typed settings objects the
pipeline steps consume.
"""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .data_models import (
    CURRENCIES,
    IngestSettings,
    LetterSettings,
    ValidationRule,
)
from .utils import extract_template_fields

SCRIPT_DIR = Path(__file__).resolve().parent
DEFAULT_CONFIG_PATH = SCRIPT_DIR.parent / "config" / "parameters.yaml"

REQUIRED_HEADERS = (
    "FIN DE VIGENCIA",
    "COMPAÑÍA",
    "NO. PÓLIZA",
    "ASEGURADO",
    "EJECUTIVO",
)

RULE_TYPES = ("string", "number", "date", "email")

DEFAULT_VALIDATION_RULES = [
    {"field": "expiry_date", "label": "FIN DE VIGENCIA", "type": "date", "required": True},
    {
        "field": "company",
        "label": "COMPAÑÍA",
        "type": "string",
        "required": True,
        "min_length": 2,
        "max_length": 100,
    },
    {
        "field": "policy_number",
        "label": "NO. PÓLIZA",
        "type": "string",
        "required": True,
        "min_length": 1,
        "max_length": 50,
    },
    {
        "field": "insured_name",
        "label": "ASEGURADO",
        "type": "string",
        "required": True,
        "min_length": 2,
        "max_length": 200,
    },
    {
        "field": "executive",
        "label": "EJECUTIVO",
        "type": "string",
        "required": True,
        "min_length": 2,
        "max_length": 100,
    },
    {"field": "insured_value", "label": "VALOR ASEGURADO", "type": "number"},
    {"field": "premium", "label": "PRIMA", "type": "number"},
]

DEFAULTS: Dict[str, Dict[str, Any]] = {
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
    "output": {
        "archive_prefix": "Cartas_Vencimiento",
    },
}


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load and parse the parameters.yaml configuration file.

    Automatically validates the configuration after loading. Raises
    clear exceptions if validation fails, enabling fail-fast behavior
    for infrastructure errors.

    Parameters
    ----------
    config_path : Path, optional
        Path to the configuration file. If not provided, uses the default
        location (config/parameters.yaml in the project root).

    Returns
    -------
    Dict[str, Any]
        Parsed and validated YAML configuration as a nested dictionary.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    yaml.YAMLError
        If the configuration file is invalid YAML.
    ValueError
        If the configuration fails validation (see validate_config).
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    validate_config(config)
    return config


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    """Return a config section merged over its defaults."""
    section = config.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"{name} must be a mapping, got {type(section).__name__}")
    merged = dict(DEFAULTS.get(name, {}))
    merged.update(section)
    return merged


def _require_int(value: Any, key: str, *, minimum: int = 0) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer, got {type(value).__name__}")
    if value < minimum:
        raise ValueError(f"{key} must be >= {minimum}, got {value}")
    return value


def validate_config(config: Dict[str, Any]) -> None:
    """Validate the entire configuration for consistency and required values.

    Parameters
    ----------
    config : Dict[str, Any]
        Configuration dictionary (result of load_config). Missing sections
        fall back to DEFAULTS.

    Raises
    ------
    ValueError
        If a value is missing, has the wrong type, or is inconsistent.

    Notes
    -----
    **Validation checks:**

    - **Ingestion:** max_upload_bytes positive integer; allowed_extensions a
      non-empty list of strings starting with "."
    - **Status:** thresholds non-negative integers with
      critical_days_threshold <= due_soon_days_threshold
    - **Validation rules:** each rule names a field and a known type
    - **Letters:** reference_template only uses the {year} placeholder;
      default_currency is "Bs." or "$us."
    - **Typst:** font_paths, if set, is a list of strings
    """
    ingestion = _section(config, "ingestion")
    _require_int(ingestion["max_upload_bytes"], "ingestion.max_upload_bytes", minimum=1)

    extensions = ingestion["allowed_extensions"]
    if not isinstance(extensions, list) or not extensions:
        raise ValueError("ingestion.allowed_extensions must be a non-empty list")
    for ext in extensions:
        if not isinstance(ext, str) or not ext.startswith("."):
            raise ValueError(
                f"ingestion.allowed_extensions entries must look like '.xlsx', got {ext!r}"
            )

    status = _section(config, "status")
    critical = _require_int(
        status["critical_days_threshold"], "status.critical_days_threshold"
    )
    due_soon = _require_int(
        status["due_soon_days_threshold"], "status.due_soon_days_threshold"
    )
    _require_int(
        status["days_before_expiry_to_send"], "status.days_before_expiry_to_send"
    )
    if critical > due_soon:
        raise ValueError(
            "status.critical_days_threshold must not exceed "
            f"status.due_soon_days_threshold ({critical} > {due_soon})"
        )

    rules = (config.get("validation") or {}).get("rules")
    if rules is not None:
        if not isinstance(rules, list):
            raise ValueError("validation.rules must be a list")
        for rule in rules:
            if not isinstance(rule, dict) or not rule.get("field"):
                raise ValueError(f"Each validation rule needs a 'field': {rule!r}")
            if rule.get("type") not in RULE_TYPES:
                raise ValueError(
                    f"Unknown validation rule type {rule.get('type')!r} for field "
                    f"{rule['field']}. Valid options: {', '.join(RULE_TYPES)}"
                )

    letters = _section(config, "letters")
    keywords = letters["health_keywords"]
    if not isinstance(keywords, list) or not all(isinstance(k, str) for k in keywords):
        raise ValueError("letters.health_keywords must be a list of strings")

    reference_template = letters["reference_template"]
    if not isinstance(reference_template, str) or not reference_template:
        raise ValueError("letters.reference_template must be a non-empty string")
    unknown = extract_template_fields(reference_template) - {"year"}
    if unknown:
        raise ValueError(
            f"letters.reference_template may only use {{year}}, found {sorted(unknown)}"
        )

    if letters["default_currency"] not in CURRENCIES:
        raise ValueError(
            f"letters.default_currency must be one of {', '.join(CURRENCIES)}, "
            f"got {letters['default_currency']!r}"
        )
    if not isinstance(letters["flag_reference_placeholder"], bool):
        raise ValueError("letters.flag_reference_placeholder must be a boolean")

    typst_config = config.get("typst") or {}
    font_paths = typst_config.get("font_paths", [])
    if not isinstance(font_paths, list) or not all(
        isinstance(p, str) for p in font_paths
    ):
        raise ValueError("typst.font_paths must be a list of strings")


def ingest_settings(config: Optional[Dict[str, Any]] = None) -> IngestSettings:
    """Resolve ingestion and status settings from a config dict.

    Parameters
    ----------
    config : Dict[str, Any], optional
        Loaded configuration. ``None`` yields the built-in defaults.
    """
    config = config or {}
    ingestion = _section(config, "ingestion")
    status = _section(config, "status")
    rules = (config.get("validation") or {}).get("rules") or DEFAULT_VALIDATION_RULES

    return IngestSettings(
        max_upload_bytes=int(ingestion["max_upload_bytes"]),
        allowed_extensions=tuple(e.lower() for e in ingestion["allowed_extensions"]),
        required_headers=tuple(ingestion.get("required_headers") or REQUIRED_HEADERS),
        critical_days_threshold=int(status["critical_days_threshold"]),
        due_soon_days_threshold=int(status["due_soon_days_threshold"]),
        days_before_expiry_to_send=int(status["days_before_expiry_to_send"]),
        validation_rules=tuple(
            ValidationRule(
                field=rule["field"],
                type=rule["type"],
                label=rule.get("label", rule["field"]),
                required=bool(rule.get("required", False)),
                min_length=rule.get("min_length"),
                max_length=rule.get("max_length"),
            )
            for rule in rules
        ),
    )


def letter_settings(config: Optional[Dict[str, Any]] = None) -> LetterSettings:
    """Resolve letter grouping/rendering settings from a config dict."""
    config = config or {}
    letters = _section(config, "letters")
    output = _section(config, "output")

    return LetterSettings(
        health_keywords=tuple(k.lower() for k in letters["health_keywords"]),
        reference_template=letters["reference_template"],
        flag_reference_placeholder=bool(letters["flag_reference_placeholder"]),
        city=letters["city"],
        locale=letters["locale"],
        company_name=letters["company_name"],
        company_subtitle=letters["company_subtitle"],
        default_currency=letters["default_currency"],
        archive_prefix=output["archive_prefix"],
    )
