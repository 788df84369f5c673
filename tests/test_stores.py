"""
test_stores.py
--------------
ConsultPad — Clinical Consultation Composer — Tests for stores.py
-----------------------------------------------------------------
Selection bookkeeping (ordering, de-duplication, removal) and the
per-field validators of every category store.

Run:
    pytest tests/test_stores.py -v --tb=short

Author: Shreelakshmi Gopinatha Rao
Project: ConsultPad — Clinical Consultation Composer
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from clinical_constants import (
    CONDITIONS_DURATION_UNIT_REQUIRED,
    CONDITIONS_DURATION_VALUE_REQUIRED,
    DROPDOWN_VALUE_REQUIRED,
    MEDICATION_DOSAGE_REQUIRED,
    MEDICATION_DURATION_REQUIRED,
)
from schemas import Coding, Concept, Frequency, Provider, duration_unit_option
from stores import (
    AllergyStore,
    ConsultationStores,
    DiagnosisStore,
    EncounterDetailsStore,
    MedicationStore,
    ServiceRequestStore,
)


FEVER = Concept(uuid="dx-fever", name="Fever")
ASTHMA = Concept(uuid="dx-asthma", name="Asthma")
PENICILLIN = Concept(uuid="allergen-pen", name="Penicillin")
CONFIRMED = Coding(code="confirmed", display="Confirmed")


# ── Diagnoses ─────────────────────────────────────────────────────────────────

class TestDiagnosisStore:
    def test_newest_diagnosis_first_and_no_duplicates(self):
        store = DiagnosisStore()
        store.add_diagnosis(FEVER)
        store.add_diagnosis(ASTHMA)
        store.add_diagnosis(FEVER)
        assert [d.id for d in store.selected_diagnoses] == ["dx-asthma", "dx-fever"]

    def test_remove_diagnosis(self):
        store = DiagnosisStore()
        store.add_diagnosis(FEVER)
        store.remove_diagnosis("dx-fever")
        assert store.selected_diagnoses == []

    def test_missing_certainty_fails_validation(self):
        store = DiagnosisStore()
        store.add_diagnosis(FEVER)
        assert store.validate_all_diagnoses() is False
        diagnosis = store.selected_diagnoses[0]
        assert diagnosis.errors["certainty"] == DROPDOWN_VALUE_REQUIRED
        assert diagnosis.has_been_validated is True

    def test_setting_certainty_after_validation_clears_error(self):
        store = DiagnosisStore()
        store.add_diagnosis(FEVER)
        store.validate_all_diagnoses()
        store.update_certainty("dx-fever", CONFIRMED)
        assert "certainty" not in store.selected_diagnoses[0].errors
        assert store.validate_all_diagnoses() is True

    def test_mark_as_condition_moves_diagnosis(self):
        store = DiagnosisStore()
        store.add_diagnosis(ASTHMA)
        assert store.mark_as_condition("dx-asthma") is True
        assert store.selected_diagnoses == []
        assert [c.id for c in store.selected_conditions] == ["dx-asthma"]
        assert store.selected_conditions[0].display == "Asthma"

    def test_mark_as_condition_rejects_blank_unknown_and_duplicate(self):
        store = DiagnosisStore()
        store.add_diagnosis(ASTHMA)
        store.mark_as_condition("dx-asthma")
        store.add_diagnosis(ASTHMA)
        assert store.mark_as_condition("  ") is False
        assert store.mark_as_condition("dx-unknown") is False
        assert store.mark_as_condition("dx-asthma") is False
        assert len(store.selected_conditions) == 1

    def test_condition_duration_requires_value_and_unit(self):
        store = DiagnosisStore()
        store.add_diagnosis(ASTHMA)
        store.mark_as_condition("dx-asthma")
        assert store.validate_conditions() is False
        errors = store.selected_conditions[0].errors
        assert errors["duration_value"] == CONDITIONS_DURATION_VALUE_REQUIRED
        assert errors["duration_unit"] == CONDITIONS_DURATION_UNIT_REQUIRED

        store.update_condition_duration("dx-asthma", 2, "years")
        assert store.selected_conditions[0].errors == {}
        assert store.validate_conditions() is True

    def test_condition_duration_rejects_invalid_input(self):
        store = DiagnosisStore()
        store.add_diagnosis(ASTHMA)
        store.mark_as_condition("dx-asthma")
        store.update_condition_duration("dx-asthma", 3, "months")
        for value, unit in ((0, "days"), (-2, "days"), (1.5, "days"), (2, "weeks")):
            store.update_condition_duration("dx-asthma", value, unit)
        condition = store.selected_conditions[0]
        assert (condition.duration_value, condition.duration_unit) == (3, "months")

    def test_condition_duration_clear(self):
        store = DiagnosisStore()
        store.add_diagnosis(ASTHMA)
        store.mark_as_condition("dx-asthma")
        store.update_condition_duration("dx-asthma", 3, "months")
        store.update_condition_duration("dx-asthma", None, None)
        condition = store.selected_conditions[0]
        assert condition.duration_value is None
        assert condition.duration_unit is None

    def test_validate_runs_both_validators(self):
        """An invalid diagnosis does not stop the conditions from being validated."""
        store = DiagnosisStore()
        store.add_diagnosis(ASTHMA)
        store.mark_as_condition("dx-asthma")
        store.add_diagnosis(FEVER)
        assert store.validate() is False
        assert store.selected_diagnoses[0].has_been_validated is True
        assert store.selected_conditions[0].has_been_validated is True


# ── Allergies ─────────────────────────────────────────────────────────────────

class TestAllergyStore:
    def test_add_allergy_appends_without_duplicates(self):
        store = AllergyStore()
        store.add_allergy(PENICILLIN)
        store.add_allergy(Concept(uuid="allergen-peanut", name="Peanut"), allergy_type="food")
        store.add_allergy(PENICILLIN)
        assert [a.id for a in store.selected_allergies] == ["allergen-pen", "allergen-peanut"]
        assert store.selected_allergies[1].type == "food"

    def test_severity_and_reactions_required(self):
        store = AllergyStore()
        store.add_allergy(PENICILLIN)
        assert store.validate_all_allergies() is False
        errors = store.selected_allergies[0].errors
        assert errors == {"severity": DROPDOWN_VALUE_REQUIRED, "reactions": DROPDOWN_VALUE_REQUIRED}

    def test_complete_allergy_is_valid(self):
        store = AllergyStore()
        store.add_allergy(PENICILLIN)
        store.validate_all_allergies()
        store.update_severity("allergen-pen", Coding(code="mild"))
        store.update_reactions("allergen-pen", [Coding(code="rash")])
        store.update_note("allergen-pen", "Mild rash")
        assert store.selected_allergies[0].errors == {}
        assert store.validate_all_allergies() is True
        assert store.selected_allergies[0].note == "Mild rash"

    def test_remove_and_reset(self):
        store = AllergyStore()
        store.add_allergy(PENICILLIN)
        store.remove_allergy("allergen-pen")
        assert store.selected_allergies == []
        store.add_allergy(PENICILLIN)
        store.reset()
        assert store.selected_allergies == []


# ── Investigation orders ──────────────────────────────────────────────────────

class TestServiceRequestStore:
    def test_orders_grouped_by_category_with_routine_priority(self):
        store = ServiceRequestStore()
        store.add_service_request("Lab", Concept(uuid="cbc", name="CBC"))
        store.add_service_request("Lab", Concept(uuid="cbc", name="CBC"))
        store.add_service_request("Radiology", Concept(uuid="xray", name="Chest X-ray"))
        assert list(store.selected_service_requests) == ["Lab", "Radiology"]
        assert len(store.selected_service_requests["Lab"]) == 1
        assert store.selected_service_requests["Lab"][0].selected_priority == "routine"

    def test_update_priority_accepts_only_known_values(self):
        store = ServiceRequestStore()
        store.add_service_request("Lab", Concept(uuid="cbc", name="CBC"))
        store.update_priority("Lab", "cbc", "stat")
        store.update_priority("Lab", "cbc", "asap")
        assert store.selected_service_requests["Lab"][0].selected_priority == "stat"

    def test_removing_last_order_drops_category(self):
        store = ServiceRequestStore()
        store.add_service_request("Lab", Concept(uuid="cbc", name="CBC"))
        store.remove_service_request("Lab", "cbc")
        assert store.selected_service_requests == {}


# ── Medications ───────────────────────────────────────────────────────────────

class TestMedicationStore:
    def test_newest_first_no_duplicates_and_id_required(self):
        store = MedicationStore()
        store.add_medication({"id": "drug-1"}, "Paracetamol")
        store.add_medication({"id": "drug-2"}, "Ibuprofen")
        store.add_medication({"id": "drug-1"}, "Paracetamol")
        store.add_medication({"name": "No id"}, "No id")
        assert [m.id for m in store.selected_medications] == ["drug-2", "drug-1"]

    def test_empty_medication_reports_every_field(self):
        store = MedicationStore()
        store.add_medication({"id": "drug-1"}, "Paracetamol")
        assert store.validate_all_medications() is False
        assert store.selected_medications[0].errors == {
            "dosage": MEDICATION_DOSAGE_REQUIRED,
            "dosage_unit": DROPDOWN_VALUE_REQUIRED,
            "frequency": DROPDOWN_VALUE_REQUIRED,
            "route": DROPDOWN_VALUE_REQUIRED,
            "duration": MEDICATION_DURATION_REQUIRED,
            "duration_unit": DROPDOWN_VALUE_REQUIRED,
        }

    def test_completed_medication_is_valid(self):
        store = MedicationStore()
        store.add_medication({"id": "drug-1"}, "Paracetamol")
        store.validate_all_medications()
        store.update_dosage("drug-1", 1)
        store.update_dosage_unit("drug-1", Concept(uuid="unit-tab", name="Tablet(s)"))
        store.update_frequency("drug-1", Frequency(uuid="f-bd", frequency_per_day=2))
        store.update_route("drug-1", Concept(uuid="route-oral", name="Oral"))
        store.update_duration("drug-1", 5)
        store.update_duration_unit("drug-1", duration_unit_option("d"))
        assert store.selected_medications[0].errors == {}
        assert store.validate_all_medications() is True

    def test_non_positive_dosage_keeps_error(self):
        store = MedicationStore()
        store.add_medication({"id": "drug-1"}, "Paracetamol")
        store.validate_all_medications()
        store.update_dosage("drug-1", 0)
        assert store.selected_medications[0].errors["dosage"] == MEDICATION_DOSAGE_REQUIRED


# ── Encounter details & the store bundle ──────────────────────────────────────

def _filled_details():
    details = EncounterDetailsStore()
    details.patient_uuid = "patient-1"
    details.practitioner = Provider(uuid="practitioner-1", name="Dr. Rao")
    details.active_visit = {"id": "visit-1"}
    details.selected_location = Concept(uuid="location-1", name="OPD")
    details.selected_encounter_type = Concept(uuid="type-consult", name="Consultation")
    details.encounter_participants = [Provider(uuid="practitioner-1")]
    return details


def test_to_context_snapshot():
    context = _filled_details().to_context("enc-1")
    assert context.encounter_id == "enc-1"
    assert context.visit_uuid == "visit-1"
    assert context.participant_uuids == ["practitioner-1"]
    assert context.is_complete() is True


def test_to_context_lists_missing_fields():
    context = EncounterDetailsStore().to_context()
    assert context.missing_fields() == [
        "patient_uuid", "practitioner_uuid", "visit_uuid",
        "location_uuid", "encounter_type", "participant_uuids",
    ]


def test_reset_categories_keeps_encounter_details():
    stores = ConsultationStores(encounter_details=_filled_details())
    stores.diagnoses.add_diagnosis(FEVER)
    stores.allergies.add_allergy(PENICILLIN)
    stores.service_requests.add_service_request("Lab", Concept(uuid="cbc"))
    stores.medications.add_medication({"id": "drug-1"}, "Paracetamol")
    assert stores.is_empty() is False

    stores.reset_categories()
    assert stores.is_empty() is True
    assert stores.encounter_details.patient_uuid == "patient-1"

    stores.reset_all()
    assert stores.encounter_details.patient_uuid is None
