"""
test_fhir_mapper.py
-------------------
ConsultPad — Clinical Consultation Composer — Tests for fhir_mapper.py
----------------------------------------------------------------------
Resource shapes produced by each mapper, silent filtering of malformed
selections, context validation and the condition onset calculation.

Run:
    pytest tests/test_fhir_mapper.py -v --tb=short

Author: Shreelakshmi Gopinatha Rao
Project: ConsultPad — Clinical Consultation Composer
"""

import json
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fhir_mapper import (
    calculate_onset_date,
    create_allergy_bundle_entries,
    create_condition_bundle_entries,
    create_diagnosis_bundle_entries,
    create_encounter_resource,
    create_medication_request_entries,
    create_service_request_bundle_entries,
    format_fhir_datetime,
)
from schemas import (
    AllergyEntry,
    Coding,
    Concept,
    ConditionEntry,
    DiagnosisEntry,
    EncounterContext,
    Frequency,
    MedicationEntry,
    ServiceRequestEntry,
    duration_unit_option,
)


SUBJECT = {"reference": "Patient/patient-1"}
TOKEN = "urn:uuid:0f6b3c1e-0000-4000-8000-000000000001"
PRACTITIONER = "practitioner-1"
WHEN = datetime(2025, 3, 10, 9, 30, 15, 250000, tzinfo=timezone.utc)

PROVISIONAL = Coding(code="provisional", display="Provisional")
MODERATE = Coding(code="moderate", display="Moderate")
HIVES = Coding(code="reaction-hives", display="Hives")


def _resources(entries):
    return [e["resource"] for e in entries]


# ── format_fhir_datetime ──────────────────────────────────────────────────────

def test_format_fhir_datetime_millisecond_precision():
    assert format_fhir_datetime(WHEN) == "2025-03-10T09:30:15.250Z"


def test_format_fhir_datetime_converts_to_utc():
    ist = timezone(timedelta(hours=5, minutes=30))
    assert format_fhir_datetime(datetime(2025, 3, 10, 15, 0, tzinfo=ist)) == "2025-03-10T09:30:00.000Z"


def test_format_fhir_datetime_naive_is_utc():
    assert format_fhir_datetime(datetime(2025, 1, 1)) == "2025-01-01T00:00:00.000Z"


# ── Encounter ─────────────────────────────────────────────────────────────────

class TestEncounterResource:
    def _context(self, **overrides):
        fields = dict(
            patient_uuid="patient-1",
            practitioner_uuid=PRACTITIONER,
            visit_uuid="visit-1",
            location_uuid="location-1",
            encounter_type=Concept(uuid="type-consult", name="Consultation"),
            participant_uuids=["practitioner-1", "practitioner-2"],
            consultation_date=WHEN,
        )
        fields.update(overrides)
        return EncounterContext(**fields)

    def test_encounter_shape(self):
        encounter = create_encounter_resource(self._context())
        assert encounter["resourceType"] == "Encounter"
        assert encounter["status"] == "in-progress"
        assert encounter["subject"] == SUBJECT
        assert encounter["partOf"] == {"reference": "Encounter/visit-1"}
        assert encounter["location"][0]["location"]["reference"] == "Location/location-1"
        assert encounter["type"][0]["coding"][0]["code"] == "type-consult"
        assert encounter["period"]["start"] == "2025-03-10T09:30:15.250Z"
        assert "id" not in encounter

    def test_every_participant_is_listed(self):
        encounter = create_encounter_resource(self._context())
        references = [p["individual"]["reference"] for p in encounter["participant"]]
        assert references == ["Practitioner/practitioner-1", "Practitioner/practitioner-2"]

    def test_missing_patient_raises(self):
        with pytest.raises(ValueError):
            create_encounter_resource(self._context(patient_uuid=None))


# ── Diagnoses ─────────────────────────────────────────────────────────────────

class TestDiagnosisMapper:
    def test_diagnosis_condition_shape(self):
        entries = create_diagnosis_bundle_entries(
            [DiagnosisEntry(id="dx-1", display="Fever", selected_certainty=PROVISIONAL)],
            SUBJECT, TOKEN, PRACTITIONER, consultation_date=WHEN,
        )
        assert len(entries) == 1
        entry = entries[0]
        assert entry["request"] == {"method": "POST", "url": "Condition"}
        assert entry["fullUrl"].startswith("urn:uuid:")

        resource = entry["resource"]
        assert set(resource) == {
            "resourceType", "subject", "category", "code",
            "verificationStatus", "encounter", "recorder", "recordedDate",
        }
        assert resource["category"][0]["coding"][0]["code"] == "encounter-diagnosis"
        assert resource["code"]["coding"][0]["code"] == "dx-1"
        assert resource["verificationStatus"]["coding"][0]["code"] == "provisional"
        assert resource["encounter"] == {"reference": TOKEN}
        assert resource["recorder"] == {"reference": "Practitioner/practitioner-1"}
        assert resource["recordedDate"] == "2025-03-10T09:30:15.250Z"

    def test_malformed_diagnoses_are_skipped(self):
        """No id or no certainty: filtered out, the rest of the batch survives."""
        entries = create_diagnosis_bundle_entries(
            [
                DiagnosisEntry(id="", selected_certainty=PROVISIONAL),
                DiagnosisEntry(id="dx-2"),
                DiagnosisEntry(id="dx-3", selected_certainty=Coding(display="Unknown")),
                DiagnosisEntry(id="dx-4", selected_certainty=PROVISIONAL),
            ],
            SUBJECT, TOKEN, PRACTITIONER, consultation_date=WHEN,
        )
        assert [r["code"]["coding"][0]["code"] for r in _resources(entries)] == ["dx-4"]

    def test_empty_selection_gives_empty_list(self):
        assert create_diagnosis_bundle_entries([], SUBJECT, TOKEN, PRACTITIONER, consultation_date=WHEN) == []

    @pytest.mark.parametrize(
        "subject, token, practitioner",
        [
            (None, TOKEN, PRACTITIONER),
            ({"reference": ""}, TOKEN, PRACTITIONER),
            (SUBJECT, "", PRACTITIONER),
            (SUBJECT, TOKEN, ""),
        ],
    )
    def test_missing_context_raises(self, subject, token, practitioner):
        with pytest.raises(ValueError):
            create_diagnosis_bundle_entries([], subject, token, practitioner, consultation_date=WHEN)


# ── Allergies ─────────────────────────────────────────────────────────────────

class TestAllergyMapper:
    def test_allergy_shape(self):
        entries = create_allergy_bundle_entries(
            [AllergyEntry(
                id="allergen-1", display="Penicillin", type="medication",
                selected_severity=MODERATE, selected_reactions=[HIVES],
            )],
            SUBJECT, TOKEN, PRACTITIONER,
        )
        resource = entries[0]["resource"]
        assert resource == {
            "resourceType": "AllergyIntolerance",
            "category": ["medication"],
            "code": {"coding": [{"code": "allergen-1"}]},
            "patient": SUBJECT,
            "recorder": {"reference": "Practitioner/practitioner-1"},
            "encounter": {"reference": TOKEN},
            "reaction": [{
                "manifestation": [{"coding": [{"code": "reaction-hives"}]}],
                "severity": "moderate",
            }],
        }

    def test_note_is_carried(self):
        entries = create_allergy_bundle_entries(
            [AllergyEntry(id="allergen-1", selected_severity=MODERATE,
                          selected_reactions=[HIVES], note="Since childhood")],
            SUBJECT, TOKEN, PRACTITIONER,
        )
        assert entries[0]["resource"]["note"] == [{"text": "Since childhood"}]

    def test_no_reaction_element_without_severity_or_reactions(self):
        entries = create_allergy_bundle_entries(
            [AllergyEntry(id="allergen-1")], SUBJECT, TOKEN, PRACTITIONER,
        )
        assert "reaction" not in entries[0]["resource"]

    def test_allergy_without_id_is_skipped(self):
        entries = create_allergy_bundle_entries(
            [AllergyEntry(id="", display="Unknown"), AllergyEntry(id="allergen-2")],
            SUBJECT, TOKEN, PRACTITIONER,
        )
        assert len(entries) == 1


# ── Conditions ────────────────────────────────────────────────────────────────

class TestConditionMapper:
    def test_onset_is_consultation_date_minus_duration(self):
        assert calculate_onset_date(WHEN, 2, "days") == WHEN - timedelta(days=2)
        assert calculate_onset_date(WHEN, 3, "months") == WHEN - timedelta(days=90)
        assert calculate_onset_date(WHEN, 1, "years") == WHEN - timedelta(days=365)

    def test_zero_duration_onset_equals_consultation_date(self):
        assert calculate_onset_date(WHEN, 0, "days") == WHEN

    def test_no_duration_gives_no_onset(self):
        assert calculate_onset_date(WHEN, None, None) is None

    def test_unknown_unit_raises(self):
        with pytest.raises(ValueError):
            calculate_onset_date(WHEN, 2, "weeks")

    def test_consultation_date_is_not_mutated(self):
        consulted = datetime(2025, 3, 10, tzinfo=timezone.utc)
        calculate_onset_date(consulted, 5, "days")
        assert consulted == datetime(2025, 3, 10, tzinfo=timezone.utc)

    def test_condition_shape(self):
        entries = create_condition_bundle_entries(
            [ConditionEntry(id="cond-1", display="Diabetes", duration_value=2, duration_unit="years")],
            SUBJECT, TOKEN, PRACTITIONER, consultation_date=WHEN,
        )
        resource = entries[0]["resource"]
        assert resource["resourceType"] == "Condition"
        assert resource["category"][0]["coding"][0]["code"] == "problem-list-item"
        assert resource["clinicalStatus"]["coding"][0]["code"] == "active"
        assert resource["encounter"] == {"reference": TOKEN}
        assert resource["onsetDateTime"] == format_fhir_datetime(WHEN - timedelta(days=730))

    def test_condition_without_duration_has_no_onset(self):
        entries = create_condition_bundle_entries(
            [ConditionEntry(id="cond-1")], SUBJECT, TOKEN, PRACTITIONER, consultation_date=WHEN,
        )
        assert "onsetDateTime" not in entries[0]["resource"]

    def test_negative_duration_is_rejected_by_the_model(self):
        with pytest.raises(ValueError):
            ConditionEntry(id="cond-1", duration_value=-1, duration_unit="days")


# ── Investigation orders ──────────────────────────────────────────────────────

class TestServiceRequestMapper:
    def test_groups_are_flattened_and_empty_groups_skipped(self):
        entries = create_service_request_bundle_entries(
            {
                "Lab": [
                    ServiceRequestEntry(id="cbc", display="CBC"),
                    ServiceRequestEntry(id="lft", display="LFT", selected_priority="stat"),
                ],
                "Radiology": [],
                "Procedure": None,
            },
            SUBJECT, TOKEN, PRACTITIONER,
        )
        resources = _resources(entries)
        assert [r["code"]["coding"][0]["code"] for r in resources] == ["cbc", "lft"]
        assert [r["priority"] for r in resources] == ["routine", "stat"]
        assert all(r["encounter"] == {"reference": TOKEN} for r in resources)
        assert all(r["intent"] == "order" for r in resources)

    def test_empty_mapping_gives_empty_list(self):
        assert create_service_request_bundle_entries({}, SUBJECT, TOKEN, PRACTITIONER) == []


# ── Medication orders ─────────────────────────────────────────────────────────

class TestMedicationMapper:
    def _medication(self, **overrides):
        fields = dict(
            id="drug-1",
            display="Paracetamol 500 mg",
            dosage=1,
            dosage_unit=Concept(uuid="unit-tab", name="Tablet(s)"),
            frequency=Frequency(uuid="f-bd", name="Twice a day", frequency_per_day=2),
            route=Concept(uuid="route-oral", name="Oral"),
            duration=5,
            duration_unit=duration_unit_option("d"),
            start_date=WHEN,
            instruction=Concept(uuid="instr-1", name="After meals"),
            dispense_quantity=10,
            dispense_unit=Concept(uuid="unit-tab", name="Tablet(s)"),
        )
        fields.update(overrides)
        return MedicationEntry(**fields)

    def test_medication_request_shape(self):
        entries = create_medication_request_entries(
            [self._medication()], SUBJECT, TOKEN, PRACTITIONER,
        )
        resource = entries[0]["resource"]
        assert resource["resourceType"] == "MedicationRequest"
        assert resource["status"] == "active"
        assert resource["intent"] == "order"
        assert resource["priority"] == "routine"
        assert resource["medicationReference"]["reference"] == "Medication/drug-1"
        assert resource["encounter"] == {"reference": TOKEN}

        dosage = resource["dosageInstruction"][0]
        assert json.loads(dosage["text"]) == {"instructions": "After meals"}
        assert dosage["timing"]["event"] == ["2025-03-10T09:30:15.250Z"]
        assert dosage["timing"]["repeat"] == {"duration": 5, "durationUnit": "d"}
        assert dosage["timing"]["code"]["coding"][0]["code"] == "f-bd"
        assert dosage["route"]["coding"][0]["code"] == "route-oral"
        assert dosage["doseAndRate"][0]["doseQuantity"] == {"value": 1, "code": "unit-tab"}

    def test_dispense_quantity_is_carried_unmodified(self):
        """The precomputed quantity is copied, never recalculated."""
        entries = create_medication_request_entries(
            [self._medication(dispense_quantity=7)], SUBJECT, TOKEN, PRACTITIONER,
        )
        assert entries[0]["resource"]["dispenseRequest"] == {
            "numberOfRepeatsAllowed": 0,
            "quantity": {"value": 7, "code": "unit-tab"},
        }

    def test_stat_order_has_stat_priority(self):
        entries = create_medication_request_entries(
            [self._medication(is_stat=True)], SUBJECT, TOKEN, PRACTITIONER,
        )
        assert entries[0]["resource"]["priority"] == "stat"

    def test_no_instruction_gives_empty_text_object(self):
        entries = create_medication_request_entries(
            [self._medication(instruction=None)], SUBJECT, TOKEN, PRACTITIONER,
        )
        assert json.loads(entries[0]["resource"]["dosageInstruction"][0]["text"]) == {}

    def test_zero_duration_omits_repeat_and_zero_dose_omits_dose(self):
        entries = create_medication_request_entries(
            [self._medication(duration=0, dosage=0)], SUBJECT, TOKEN, PRACTITIONER,
        )
        dosage = entries[0]["resource"]["dosageInstruction"][0]
        assert "repeat" not in dosage["timing"]
        assert "doseAndRate" not in dosage

    def test_medication_without_id_is_skipped(self):
        entries = create_medication_request_entries(
            [self._medication(id=""), self._medication(id="drug-2")],
            SUBJECT, TOKEN, PRACTITIONER,
        )
        assert [r["medicationReference"]["reference"] for r in _resources(entries)] == ["Medication/drug-2"]

    def test_every_entry_gets_a_distinct_full_url(self):
        entries = create_medication_request_entries(
            [self._medication(id="drug-1"), self._medication(id="drug-2")],
            SUBJECT, TOKEN, PRACTITIONER,
        )
        assert len({e["fullUrl"] for e in entries}) == 2
