"""Render renewal letters to Typst source and compile them to PDF.

**Input Contract:**
- LetterData produced by group_letters (policies non-empty, review state
  already derived)
- A template directory holding ``salud_template.py`` and/or
  ``general_template.py``, each defining ``render_notice(context) -> str``

**Output Contract:**
- render_letter_typst() returns standalone Typst source for one letter
- render_letter_pdf() returns PDF bytes with at least one page
- generate_file_name() returns ``{DDMMYYYY}-AVISO_{SALUD|VCMTO}_{NAME}.pdf``

**Error Handling:**
- Missing template modules raise FileNotFoundError when the renderer for
  that template type is requested
- Compilation failures from the typst package propagate unchanged; the
  packaging step records them per letter and moves on
- A compiled PDF without pages raises ValueError

Templates are plain Python modules loaded at runtime so a brokerage can ship
its own letter layout without touching the package.
"""

from __future__ import annotations

import importlib.util
import logging
import re
import sys
from datetime import date
from io import BytesIO
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

import typst
from babel.numbers import format_decimal
from pypdf import PdfReader

from .config_loader import letter_settings
from .data_models import CURRENCY_USD, LetterData, LetterSettings, PolicyForLetter
from .dates import date_stamp_compact, format_long_date
from .enums import TemplateType
from .utils import strip_diacritics

SCRIPT_DIR = Path(__file__).resolve().parent
ROOT_DIR = SCRIPT_DIR.parent
DEFAULT_TEMPLATE_DIR = ROOT_DIR / "templates"

LOG = logging.getLogger(__name__)

NOT_SPECIFIED = "No especificado"
# Policy amounts are quoted in dollars on the printed letters
POLICY_AMOUNT_CURRENCY = CURRENCY_USD

_NON_NAME_CHARS = re.compile(r"[^\w\s]|[\d_]")
_WHITESPACE = re.compile(r"\s+")


def load_template_module(template_dir: Path, template_name: str):
    """Dynamically load a letter template module from ``template_dir``.

    Parameters
    ----------
    template_dir : Path
        Directory containing template modules.
    template_name : str
        Template type value ("salud" or "general").

    Returns
    -------
    module
        Loaded module exposing ``render_notice(context)``.

    Raises
    ------
    FileNotFoundError
        If ``{template_name}_template.py`` does not exist.
    ImportError
        If the module cannot be loaded.
    AttributeError
        If the module does not define render_notice().
    """
    module_name = f"{template_name}_template"
    module_path = template_dir / f"{module_name}.py"

    if not module_path.exists():
        raise FileNotFoundError(
            f"Template module not found: {module_path}. "
            f"Expected {module_name}.py in {template_dir}"
        )

    spec = importlib.util.spec_from_file_location(module_name, module_path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Could not load template module: {module_path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[f"_dynamic_{module_name}"] = module
    spec.loader.exec_module(module)

    if not hasattr(module, "render_notice"):
        raise AttributeError(
            f"Template module {module_name} must define render_notice() function. "
            f"Check {module_path} and ensure it implements the required interface."
        )

    return module


def build_template_renderers(template_dir: Path = DEFAULT_TEMPLATE_DIR) -> Dict[str, Callable]:
    """Map template type values to the render_notice functions found on disk.

    Only template types with a module present are included; a missing one
    is reported later by get_template_renderer().
    """
    renderers = {}
    for template_type in TemplateType:
        module_path = template_dir / f"{template_type.value}_template.py"
        if module_path.exists():
            module = load_template_module(template_dir, template_type.value)
            renderers[template_type.value] = module.render_notice
    return renderers


def get_template_renderer(template_type: TemplateType, renderers: Mapping[str, Callable]):
    """Return the renderer for ``template_type`` or raise FileNotFoundError."""
    if template_type.value not in renderers:
        available = ", ".join(sorted(renderers.keys())) if renderers else "none"
        raise FileNotFoundError(
            f"Template not available for letter type: {template_type.value}\n"
            f"Available templates: {available}\n"
            f"Ensure your template directory contains {template_type.value}_template.py"
        )
    return renderers[template_type.value]


def escape_string(value: str) -> str:
    """Escape backslashes, quotes and newlines for a Typst string literal."""
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def to_typ_value(value: Any) -> str:
    """Convert a Python value to its Typst literal representation.

    Examples
    --------
    >>> to_typ_value("hola")
    '"hola"'
    >>> to_typ_value(["a"])
    '("a",)'
    >>> to_typ_value({})
    '(:)'
    """
    if isinstance(value, str):
        return f'"{escape_string(value)}"'
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "none"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, Mapping):
        if not value:
            return "(:)"
        items = ", ".join(f"{key}: {to_typ_value(val)}" for key, val in value.items())
        return f"({items})"
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        items = [to_typ_value(item) for item in value]
        if len(items) == 1:
            inner = f"{items[0]},"
        else:
            inner = ", ".join(items)
        return f"({inner})"
    raise TypeError(f"Unsupported value type for Typst conversion: {type(value)!r}")


def format_amount(amount: Optional[float], currency: str, locale: str = "es") -> str:
    """Format a money amount with two decimals and a currency prefix.

    Examples
    --------
    >>> format_amount(12345.5, "Bs.")
    'Bs. 12.345,50'
    >>> format_amount(None, "$us.")
    'No especificado'
    """
    if amount is None:
        return NOT_SPECIFIED
    return f"{currency} {format_decimal(amount, format='#,##0.00', locale=locale)}"


def covid_note(branch: str) -> Optional[str]:
    """Coverage note printed under health branches that mention covid."""
    lowered = branch.lower()
    if "covid" not in lowered:
        return None
    return "(Sin cobertura covid)" if "sin" in lowered else "(Con cobertura covid)"


def _policy_context(policy: PolicyForLetter, locale: str) -> Dict[str, Any]:
    fields = policy.manual_fields
    insured_value = fields.insured_value if fields.insured_value is not None else policy.insured_value
    premium = fields.premium if fields.premium is not None else policy.premium

    def optional_amount(amount: Optional[float], currency: str) -> Optional[str]:
        return None if amount is None else format_amount(amount, currency, locale)

    def optional_text(value: Optional[str]) -> Optional[str]:
        return value.strip() if value and value.strip() else None

    return {
        "expiry_date": policy.expiry_date,
        "policy_number": policy.policy_number,
        "company": policy.company,
        "branch": policy.branch,
        "covid_note": covid_note(policy.branch),
        "insured_value": (
            format_amount(insured_value, POLICY_AMOUNT_CURRENCY, locale)
            if insured_value
            else NOT_SPECIFIED
        ),
        "premium": format_amount(premium, POLICY_AMOUNT_CURRENCY, locale) if premium else NOT_SPECIFIED,
        "renewal_premium": (
            format_amount(fields.renewal_premium, POLICY_AMOUNT_CURRENCY, locale)
            if fields.renewal_premium
            else None
        ),
        "insured_matter": optional_text(fields.insured_matter),
        "members": list(
            fields.insured_members if fields.insured_members is not None else policy.insured_members
        ),
        "deductibles": optional_amount(fields.deductibles, fields.deductibles_currency),
        "territoriality": optional_amount(fields.territoriality, fields.territoriality_currency),
        "specific_conditions": optional_text(fields.specific_conditions),
        "coinsurance": optional_text(fields.coinsurance),
        "items": [
            {
                "description": item.description or NOT_SPECIFIED,
                "insured_value": format_amount(item.insured_value, POLICY_AMOUNT_CURRENCY, locale),
                "declared_value": (
                    format_amount(item.declared_value, POLICY_AMOUNT_CURRENCY, locale)
                    if item.declared_value
                    else NOT_SPECIFIED
                ),
            }
            for item in policy.covered_items
        ],
    }


def build_template_context(
    letter: LetterData, settings: Optional[LetterSettings] = None
) -> Dict[str, str]:
    """Build the Typst-literal context consumed by a template's render_notice().

    Parameters
    ----------
    letter : LetterData
        Letter to render.
    settings : LetterSettings, optional
        City, locale and signature lines.

    Returns
    -------
    Dict[str, str]
        ``letter`` and ``policies`` entries, each already a Typst literal.
    """
    settings = settings or letter_settings()
    client = letter.client

    letter_data = {
        "city_date": f"{settings.city}, {format_long_date(letter.issue_date, settings.locale)}",
        "reference_number": letter.reference_number,
        "client_name": client.name.upper(),
        "phone": client.phone or None,
        "email": client.email or None,
        "address": client.address or None,
        "executive": letter.executive,
        "plural": len(letter.policies) > 1,
        "needs_review": letter.needs_review,
        "missing_data": list(letter.missing_data),
        "additional_conditions": (letter.additional_conditions or "").strip() or None,
        "company_name": settings.company_name,
        "company_subtitle": settings.company_subtitle,
    }
    policies = [_policy_context(policy, settings.locale) for policy in letter.policies]

    return {
        "letter": to_typ_value(letter_data),
        "policies": to_typ_value(policies),
    }


def render_letter_typst(
    letter: LetterData,
    *,
    renderers: Mapping[str, Callable],
    settings: Optional[LetterSettings] = None,
) -> str:
    """Render the Typst document for a single letter."""
    renderer = get_template_renderer(letter.template_type, renderers)
    return renderer(build_template_context(letter, settings))


def count_pages(pdf_bytes: bytes) -> int:
    """Number of pages in a PDF held in memory."""
    return len(PdfReader(BytesIO(pdf_bytes)).pages)


def compile_typst(
    source: str,
    *,
    work_dir: Path,
    name: str,
    font_paths: Sequence[str] = (),
) -> bytes:
    """Write ``source`` to ``work_dir/name.typ`` and compile it to PDF bytes."""
    work_dir.mkdir(parents=True, exist_ok=True)
    typ_path = work_dir / f"{name}.typ"
    typ_path.write_text(source, encoding="utf-8")
    LOG.debug("Compiling %s", typ_path)
    return typst.compile(
        str(typ_path),
        root=str(work_dir),
        font_paths=[str(path) for path in font_paths],
    )


def render_letter_pdf(
    letter: LetterData,
    *,
    renderers: Mapping[str, Callable],
    work_dir: Path,
    settings: Optional[LetterSettings] = None,
    font_paths: Sequence[str] = (),
) -> bytes:
    """Render and compile one letter, returning validated PDF bytes.

    Raises
    ------
    FileNotFoundError
        If no template is available for the letter's type.
    ValueError
        If the compiled document has no pages.
    """
    source = render_letter_typst(letter, renderers=renderers, settings=settings)
    pdf_bytes = compile_typst(source, work_dir=work_dir, name=letter.id, font_paths=font_paths)
    if count_pages(pdf_bytes) < 1:
        raise ValueError(f"Compiled letter {letter.id} has no pages")
    return pdf_bytes


def make_pdf_renderer(
    *,
    work_dir: Path,
    template_dir: Path = DEFAULT_TEMPLATE_DIR,
    settings: Optional[LetterSettings] = None,
    font_paths: Sequence[str] = (),
) -> Callable[[LetterData], bytes]:
    """Bind templates and settings into a ``letter -> pdf bytes`` callable."""
    renderers = build_template_renderers(template_dir)
    settings = settings or letter_settings()

    def render(letter: LetterData) -> bytes:
        return render_letter_pdf(
            letter,
            renderers=renderers,
            work_dir=work_dir,
            settings=settings,
            font_paths=font_paths,
        )

    return render


def clean_client_name(client_name: str) -> str:
    """Strip diacritics, keep only letters and join words with underscores.

    Examples
    --------
    >>> clean_client_name("Pérez, Juan 2do.")
    'PEREZ_JUAN_DO'
    """
    letters_only = _NON_NAME_CHARS.sub("", strip_diacritics(client_name)).strip()
    return _WHITESPACE.sub("_", letters_only).upper()


def generate_file_name(client_name: str, template_type: TemplateType, today: date) -> str:
    """PDF file name for a letter, e.g. ``15012025-AVISO_SALUD_JUAN_PEREZ.pdf``."""
    return (
        f"{date_stamp_compact(today)}-AVISO_{template_type.file_prefix}_"
        f"{clean_client_name(client_name)}.pdf"
    )

