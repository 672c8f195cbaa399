"""Unit tests for group_letters module - letter grouping and review state.

Tests cover:
- Template type detection by branch keyword
- One letter per (client, template type), health member consolidation
- Covered items for general policies sharing a number
- Missing-data detection and needs_review after edits
- Letter-eligibility checks and skipped-record messages

Real-world significance:
- A client with a car and a health plan receives two different letters
- needs_review is what stops an incomplete letter from being mailed
"""

from __future__ import annotations

import dataclasses
from datetime import date, timedelta

import pytest

from renewal_pipeline.data_models import LetterSettings
from renewal_pipeline.enums import TemplateType
from renewal_pipeline.group_letters import (
    derive_review_state,
    determine_template_type,
    generate_reference_number,
    group_for_letters,
    insured_members,
    prepare_letters,
    split_contact,
    update_covered_item,
    update_letter,
    update_policy_fields,
    validate_record_for_letter,
)
from renewal_pipeline.record_mapper import DEFAULT_POLICY_NUMBER
from tests.fixtures import sample_input


def _record(record_id: str, today: date, **overrides):
    overrides.setdefault("expiry_date", today + timedelta(days=10))
    return sample_input.create_processed_record(record_id=record_id, today=today, **overrides)


def _health_rows(today: date):
    base = {"branch": "SALUD INDIVIDUAL", "policy_number": "SAL-1"}
    return [
        _record("h0", today, insured_matter="PEREZ LOPEZ, JUAN", **base),
        _record("h1", today, insured_matter="ANA PEREZ", **base),
        _record("h2", today, insured_matter="TITULAR", **base),
        _record("h3", today, insured_matter="ana  perez", **base),
        _record("h4", today, insured_matter="LUIS PEREZ", **base),
    ]


@pytest.mark.unit
class TestHelpers:
    """Unit tests for small classification helpers."""

    @pytest.mark.parametrize(
        "branch, expected",
        [
            ("SALUD INDIVIDUAL", TemplateType.SALUD),
            ("Vida en Grupo", TemplateType.SALUD),
            ("GASTOS MEDICOS", TemplateType.SALUD),
            ("AUTOMOTOR", TemplateType.GENERAL),
            ("", TemplateType.GENERAL),
        ],
    )
    def test_determine_template_type(self, branch: str, expected: TemplateType) -> None:
        assert determine_template_type(branch) is expected

    def test_reference_number(self) -> None:
        assert generate_reference_number(2025) == "SCPSA-____/2025"
        assert generate_reference_number(2026, "REF-{year}-____") == "REF-2026-____"

    def test_reference_template_unknown_field(self) -> None:
        with pytest.raises(KeyError, match="month"):
            generate_reference_number(2025, "REF-{month}")

    def test_split_contact(self) -> None:
        assert split_contact("cliente@example.com") == ("cliente@example.com", None)
        assert split_contact("Av. Banzer  4to anillo") == (None, "Av. Banzer 4to anillo")
        assert split_contact("") == (None, None)

    def test_insured_members(self, today: date) -> None:
        """Verify titular first, no placeholder, no duplicates.

        Real-world significance:
        - The member list is printed verbatim on the health letter
        """
        members = insured_members(_health_rows(today), "PEREZ LOPEZ, JUAN")
        assert members == ("PEREZ LOPEZ, JUAN", "ANA PEREZ", "LUIS PEREZ")

    def test_validate_record_for_letter(self, today: date) -> None:
        assert validate_record_for_letter(_record("r", today)).valid
        result = validate_record_for_letter(_record("r", today, company="X", executive=""))
        assert result.errors == ["Compañía aseguradora requerida", "Ejecutivo responsable requerido"]


@pytest.mark.unit
class TestGrouping:
    """Unit tests for group_for_letters()."""

    def test_split_by_template_type(self, today: date, letter_cfg: LetterSettings) -> None:
        """Verify one client with car and health policies gets two letters.

        Real-world significance:
        - Health and general notices carry different legal text
        """
        records = [
            _record("a", today, branch="AUTOMOTOR", policy_number="AUT-1"),
            _record("b", today, branch="SALUD", policy_number="SAL-1"),
        ]
        letters = group_for_letters(records, today=today, settings=letter_cfg)
        assert [l.template_type for l in letters] == [TemplateType.GENERAL, TemplateType.SALUD]
        assert [l.source_record_ids for l in letters] == [("a",), ("b",)]

    def test_same_client_name_variants_grouped(self, today: date, letter_cfg: LetterSettings) -> None:
        records = [
            _record("a", today, policy_number="AUT-1"),
            _record("b", today, policy_number="INC-2", insured_name="perez  lopez, juan"),
            _record("c", today, policy_number="AUT-3", insured_name="ROJAS PAZ, FERNANDO"),
        ]
        letters = group_for_letters(records, today=today, settings=letter_cfg)
        assert len(letters) == 2
        assert [p.policy_number for p in letters[0].policies] == ["AUT-1", "INC-2"]
        assert letters[0].client.name == "PEREZ LOPEZ, JUAN"

    def test_letter_fields(self, today: date, letter_cfg: LetterSettings) -> None:
        letters = group_for_letters([_record("a", today)], today=today, settings=letter_cfg)
        letter = letters[0]
        assert letter.reference_number == "SCPSA-____/2025"
        assert letter.issue_date == today
        assert letter.client.email == "cliente@example.com"
        assert letter.client.phone == "70012345"
        assert letter.executive == "ANA SALVATIERRA"
        assert letter.policies[0].expiry_date == "25 de enero de 2025"
        assert letter.policies[0].manual_fields.deductibles_currency == "Bs."

    def test_health_members(self, today: date, letter_cfg: LetterSettings) -> None:
        letters = group_for_letters(_health_rows(today), today=today, settings=letter_cfg)
        assert len(letters) == 1
        policy = letters[0].policies[0]
        assert policy.insured_members == ("PEREZ LOPEZ, JUAN", "ANA PEREZ", "LUIS PEREZ")
        assert letters[0].missing_data == ("Póliza 1 (SAL-1): Prima de renovación anual",)
        assert letters[0].needs_review

    def test_general_covered_items(self, today: date, letter_cfg: LetterSettings) -> None:
        """Verify several vehicles under one policy become covered items.

        Real-world significance:
        - Fleet policies list every vehicle with its own declared value
        """
        records = [
            _record("a", today, insured_matter="TOYOTA HILUX", insured_value=30000.0, premium=900.0),
            _record("b", today, insured_matter="NISSAN FRONTIER", insured_value=25000.0, premium=800.0),
        ]
        letter = group_for_letters(records, today=today, settings=letter_cfg)[0]
        policy = letter.policies[0]
        assert len(letter.policies) == 1
        assert [i.description for i in policy.covered_items] == ["TOYOTA HILUX", "NISSAN FRONTIER"]
        assert policy.insured_value == 55000.0
        assert policy.manual_fields.premium == 1700.0
        assert policy.manual_fields.insured_matter == "TOYOTA HILUX; NISSAN FRONTIER"
        assert "Póliza 1 (AUT-1001), ítem 2: Valor declarado" in letter.missing_data

    def test_unnumbered_policies_stay_apart(self, today: date, letter_cfg: LetterSettings) -> None:
        """Verify two policies lacking a number are not merged.

        Real-world significance:
        - Missing numbers are common in the export; merging them would drop
          one insurer from the letter and add its premium to the other
        """
        unnumbered = {"insured_name": "ANA", "policy_number": DEFAULT_POLICY_NUMBER}
        records = [
            _record("a", today, company="ALIANZA", branch="AUTOMOTOR", premium=500.0, **unnumbered),
            _record(
                "b",
                today,
                company="BISA",
                branch="INCENDIO",
                premium=700.0,
                expiry_date=today + timedelta(days=20),
                **unnumbered,
            ),
        ]
        letters = group_for_letters(records, today=today, settings=letter_cfg)

        assert len(letters) == 1
        policies = letters[0].policies
        assert len(policies) == 2
        assert [(p.company, p.branch, p.premium) for p in policies] == [
            ("ALIANZA", "AUTOMOTOR", 500.0),
            ("BISA", "INCENDIO", 700.0),
        ]
        assert all(p.covered_items == () for p in policies)

    def test_shared_number_needs_same_company_and_expiry(
        self, today: date, letter_cfg: LetterSettings
    ) -> None:
        records = [
            _record("a", today, company="ALIANZA"),
            _record("b", today, company="BISA"),
            _record("c", today, company="ALIANZA", expiry_date=today + timedelta(days=25)),
            _record("d", today, company="alianza "),
        ]
        policies = group_for_letters(records, today=today, settings=letter_cfg)[0].policies

        assert [p.company for p in policies] == ["ALIANZA", "BISA", "ALIANZA"]
        assert [len(p.covered_items) for p in policies] == [2, 0, 0]

    def test_unnumbered_health_rows_stay_apart(self, today: date, letter_cfg: LetterSettings) -> None:
        base = {"branch": "SALUD INDIVIDUAL", "policy_number": DEFAULT_POLICY_NUMBER}
        records = [
            _record("h0", today, company="ALIANZA", **base),
            _record("h1", today, company="BISA", **base),
        ]
        policies = group_for_letters(records, today=today, settings=letter_cfg)[0].policies
        assert [p.company for p in policies] == ["ALIANZA", "BISA"]

    def test_zero_premium_general_needs_review(self, today: date, letter_cfg: LetterSettings) -> None:
        letter = group_for_letters([_record("a", today, premium=0.0)], today=today, settings=letter_cfg)[0]
        assert "Póliza 1 (AUT-1001): Prima" in letter.missing_data
        assert letter.needs_review

    def test_grouping_is_idempotent(self, today: date, letter_cfg: LetterSettings) -> None:
        """Verify regrouping yields the same content.

        Real-world significance:
        - Regenerating letters must not reorder or change them
        """
        records = _health_rows(today) + [_record("x", today, insured_name="ROJAS PAZ, FERNANDO")]
        first = group_for_letters(records, today=today, settings=letter_cfg)
        second = group_for_letters(records, today=today, settings=letter_cfg)
        strip = lambda letters: [dataclasses.replace(l, id="") for l in letters]
        assert strip(first) == strip(second)

    def test_every_record_in_exactly_one_letter(self, today: date, letter_cfg: LetterSettings) -> None:
        records = [
            _record(f"r{i}", today, **row)
            for i, row in enumerate(
                [
                    {"branch": "SALUD", "policy_number": "S-1"},
                    {"branch": "AUTOMOTOR", "policy_number": "A-1"},
                    {"branch": "INCENDIO", "policy_number": "I-1", "insured_name": "SUAREZ VACA, CARLOS"},
                ]
            )
        ]
        letters = group_for_letters(records, today=today, settings=letter_cfg)
        ids = [rid for letter in letters for rid in letter.source_record_ids]
        assert sorted(ids) == ["r0", "r1", "r2"]


@pytest.mark.unit
class TestEditing:
    """Unit tests for update_* helpers and review recomputation."""

    def test_health_review_cleared_by_renewal_premium(self, today: date, letter_cfg: LetterSettings) -> None:
        letter = group_for_letters(_health_rows(today), today=today, settings=letter_cfg)[0]
        updated = update_policy_fields(letter, 0, letter_cfg, renewal_premium=1500.0)
        assert updated.missing_data == ()
        assert not updated.needs_review
        assert letter.needs_review

    def test_general_always_needs_review(self, today: date, letter_cfg: LetterSettings) -> None:
        """Verify a complete general letter is still flagged for review.

        Real-world significance:
        - Conditions on general policies must be signed off by an executive
        """
        letter = group_for_letters([_record("a", today)], today=today, settings=letter_cfg)[0]
        updated = update_policy_fields(
            letter,
            0,
            letter_cfg,
            deductibles=500.0,
            territoriality=0.0,
            specific_conditions="Cobertura a nivel nacional",
        )
        assert updated.missing_data == ()
        assert updated.needs_review
        assert derive_review_state(updated).missing_data == ()

    def test_covered_item_declared_value(self, today: date, letter_cfg: LetterSettings) -> None:
        records = [
            _record("a", today, insured_matter="TOYOTA"),
            _record("b", today, insured_matter="NISSAN"),
        ]
        letter = group_for_letters(records, today=today, settings=letter_cfg)[0]
        updated = update_covered_item(letter, 0, 1, letter_cfg, declared_value=20000.0)
        assert "Póliza 1 (AUT-1001), ítem 2: Valor declarado" not in updated.missing_data
        assert "Póliza 1 (AUT-1001), ítem 1: Valor declarado" in updated.missing_data

    def test_members_coerced_to_tuple(self, today: date, letter_cfg: LetterSettings) -> None:
        letter = group_for_letters(_health_rows(today), today=today, settings=letter_cfg)[0]
        updated = update_policy_fields(letter, 0, letter_cfg, insured_members=["A", "B"])
        assert updated.policies[0].manual_fields.insured_members == ("A", "B")

    def test_invalid_currency(self, today: date, letter_cfg: LetterSettings) -> None:
        letter = group_for_letters([_record("a", today)], today=today, settings=letter_cfg)[0]
        with pytest.raises(ValueError, match="deductibles_currency"):
            update_policy_fields(letter, 0, letter_cfg, deductibles_currency="EUR")

    def test_unknown_field_and_index(self, today: date, letter_cfg: LetterSettings) -> None:
        letter = group_for_letters([_record("a", today)], today=today, settings=letter_cfg)[0]
        with pytest.raises(TypeError):
            update_policy_fields(letter, 0, letter_cfg, color="rojo")
        with pytest.raises(IndexError):
            update_policy_fields(letter, 3, letter_cfg, premium=1.0)

    def test_update_letter(self, today: date, letter_cfg: LetterSettings) -> None:
        letter = group_for_letters([_record("a", today)], today=today, settings=letter_cfg)[0]
        updated = update_letter(letter, letter_cfg, reference_number="SCPSA-0042/2025")
        assert updated.reference_number == "SCPSA-0042/2025"
        with pytest.raises(ValueError, match="needs_review"):
            update_letter(letter, letter_cfg, needs_review=False)

    def test_reference_placeholder_flag(self, today: date, letter_cfg: LetterSettings) -> None:
        settings = dataclasses.replace(letter_cfg, flag_reference_placeholder=True)
        letter = group_for_letters(_health_rows(today), today=today, settings=settings)[0]
        assert "Número de Referencia manual" in letter.missing_data
        filled = update_letter(letter, settings, reference_number="SCPSA-0042/2025")
        assert "Número de Referencia manual" not in filled.missing_data


@pytest.mark.unit
class TestPrepareLetters:
    """Unit tests for prepare_letters()."""

    def test_skipped_records_explained(self, today: date, letter_cfg: LetterSettings) -> None:
        records = [_record("a", today), _record("b", today, policy_number="INC-9", executive="X")]
        letters, skipped = prepare_letters(records, today=today, settings=letter_cfg)
        assert len(letters) == 1
        assert letters[0].source_record_ids == ("a",)
        assert skipped == ["PEREZ LOPEZ, JUAN (INC-9): Ejecutivo responsable requerido"]
