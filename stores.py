"""
stores.py
---------
ConsultPad — Clinical Consultation Composer — Category stores
-------------------------------------------------------------
Explicit, independently owned state containers for everything the clinician
edits during one consultation.  The submission workflow never owns these
objects: it reads ``selected_*``, calls the validators and calls ``reset()``
after a confirmed submission.

Validation contract
-------------------
Each validator walks every entry, writes per-field error keys into
``entry.errors`` (translation keys from clinical_constants), marks the entry
``has_been_validated`` and returns overall validity.  Once an entry has been
validated, an update that supplies a valid value clears that field's error so
the form stops showing it.

Stores:
    DiagnosisStore:       diagnoses and conditions (mark_as_condition moves one
                          into the other).
    AllergyStore:         allergens with severity and reactions.
    ServiceRequestStore:  investigation orders grouped by category label.
    MedicationStore:      medication orders.
    EncounterDetailsStore: location, encounter type, participants, patient,
                          practitioner, active visit and consultation date.

Author: Shreelakshmi Gopinatha Rao
Project: ConsultPad — Clinical Consultation Composer
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from clinical_constants import (
    CONDITION_DURATION_UNITS,
    CONDITIONS_DURATION_UNIT_REQUIRED,
    CONDITIONS_DURATION_VALUE_REQUIRED,
    DROPDOWN_VALUE_REQUIRED,
    MEDICATION_DOSAGE_REQUIRED,
    MEDICATION_DURATION_REQUIRED,
    PRIORITY_ROUTINE,
    SERVICE_REQUEST_PRIORITIES,
)
from schemas import (
    AllergyEntry,
    Coding,
    Concept,
    ConditionEntry,
    DiagnosisEntry,
    DurationUnitOption,
    EncounterContext,
    Frequency,
    MedicationEntry,
    Provider,
    ServiceRequestEntry,
)

logger = logging.getLogger(__name__)


def _find(entries: List[Any], entry_id: str) -> Optional[Any]:
    return next((e for e in entries if e.id == entry_id), None)


def _clear_error(entry: Any, field: str) -> None:
    if entry.has_been_validated:
        entry.errors.pop(field, None)


def _set_error(errors: Dict[str, str], field: str, key: str, failed: bool) -> bool:
    """Write or clear one error key; return True when the field is valid."""
    if failed:
        errors[field] = key
        return False
    errors.pop(field, None)
    return True


# ── Diagnoses & conditions ───────────────────────────────────────────────────

class DiagnosisStore:
    """Selected diagnoses plus the conditions promoted from them."""

    def __init__(self) -> None:
        self.selected_diagnoses: List[DiagnosisEntry] = []
        self.selected_conditions: List[ConditionEntry] = []

    def add_diagnosis(self, concept: Concept) -> None:
        """Prepend a diagnosis; a concept already selected is ignored."""
        if _find(self.selected_diagnoses, concept.uuid) is not None:
            logger.debug("stores.add_diagnosis: '%s' already selected", concept.uuid)
            return
        self.selected_diagnoses.insert(
            0, DiagnosisEntry(id=concept.uuid, display=concept.name)
        )

    def remove_diagnosis(self, diagnosis_id: str) -> None:
        self.selected_diagnoses = [
            d for d in self.selected_diagnoses if d.id != diagnosis_id
        ]

    def update_certainty(self, diagnosis_id: str, certainty: Optional[Coding]) -> None:
        diagnosis = _find(self.selected_diagnoses, diagnosis_id)
        if diagnosis is None:
            return
        diagnosis.selected_certainty = certainty
        if certainty is not None:
            _clear_error(diagnosis, "certainty")

    def mark_as_condition(self, diagnosis_id: str) -> bool:
        """
        Move a diagnosis into the conditions list.

        Returns:
            bool: False when the id is blank, the diagnosis is not selected or
            the condition already exists; True after the move.
        """
        if not diagnosis_id or not diagnosis_id.strip():
            return False
        diagnosis = _find(self.selected_diagnoses, diagnosis_id)
        if diagnosis is None:
            return False
        if _find(self.selected_conditions, diagnosis_id) is not None:
            return False

        self.selected_diagnoses.remove(diagnosis)
        self.selected_conditions.append(
            ConditionEntry(id=diagnosis.id, display=diagnosis.display)
        )
        return True

    def remove_condition(self, condition_id: str) -> None:
        self.selected_conditions = [
            c for c in self.selected_conditions if c.id != condition_id
        ]

    def update_condition_duration(
        self,
        condition_id: str,
        value: Optional[int],
        unit: Optional[str],
    ) -> None:
        """
        Set how long ago a condition started.

        ``(None, None)`` clears the duration.  Otherwise the value must be a
        positive integer and the unit one of days / months / years; anything
        else leaves the condition unchanged.
        """
        if not condition_id or not condition_id.strip():
            return
        condition = _find(self.selected_conditions, condition_id)
        if condition is None:
            return

        if value is None and unit is None:
            condition.duration_value = None
            condition.duration_unit = None
            return

        if value is not None:
            if isinstance(value, bool) or not float(value).is_integer() or value <= 0:
                logger.debug("stores.update_condition_duration: rejected value %r", value)
                return
            value = int(value)
        if unit is not None and unit not in CONDITION_DURATION_UNITS:
            logger.debug("stores.update_condition_duration: rejected unit %r", unit)
            return

        condition.duration_value = value
        condition.duration_unit = unit
        if value is not None:
            _clear_error(condition, "duration_value")
        if unit is not None:
            _clear_error(condition, "duration_unit")

    def validate_all_diagnoses(self) -> bool:
        is_valid = True
        for diagnosis in self.selected_diagnoses:
            missing = diagnosis.selected_certainty is None or not diagnosis.selected_certainty.code
            if not _set_error(diagnosis.errors, "certainty", DROPDOWN_VALUE_REQUIRED, missing):
                is_valid = False
            diagnosis.has_been_validated = True
        return is_valid

    def validate_conditions(self) -> bool:
        is_valid = True
        for condition in self.selected_conditions:
            value_ok = _set_error(
                condition.errors, "duration_value",
                CONDITIONS_DURATION_VALUE_REQUIRED,
                condition.duration_value is None,
            )
            unit_ok = _set_error(
                condition.errors, "duration_unit",
                CONDITIONS_DURATION_UNIT_REQUIRED,
                condition.duration_unit is None,
            )
            if not (value_ok and unit_ok):
                is_valid = False
            condition.has_been_validated = True
        return is_valid

    def validate(self) -> bool:
        """Run both validators (neither short-circuits the other)."""
        diagnoses_ok = self.validate_all_diagnoses()
        conditions_ok = self.validate_conditions()
        return diagnoses_ok and conditions_ok

    def reset(self) -> None:
        self.selected_diagnoses = []
        self.selected_conditions = []


# ── Allergies ────────────────────────────────────────────────────────────────

class AllergyStore:
    """Selected allergens; severity and at least one reaction are required."""

    def __init__(self) -> None:
        self.selected_allergies: List[AllergyEntry] = []

    def add_allergy(self, allergen: Concept, allergy_type: str = "medication") -> None:
        if _find(self.selected_allergies, allergen.uuid) is not None:
            logger.debug("stores.add_allergy: '%s' already selected", allergen.uuid)
            return
        self.selected_allergies.append(
            AllergyEntry(id=allergen.uuid, display=allergen.name, type=allergy_type)
        )

    def remove_allergy(self, allergy_id: str) -> None:
        self.selected_allergies = [
            a for a in self.selected_allergies if a.id != allergy_id
        ]

    def update_severity(self, allergy_id: str, severity: Optional[Coding]) -> None:
        allergy = _find(self.selected_allergies, allergy_id)
        if allergy is None:
            return
        allergy.selected_severity = severity
        if severity is not None:
            _clear_error(allergy, "severity")

    def update_reactions(self, allergy_id: str, reactions: List[Coding]) -> None:
        allergy = _find(self.selected_allergies, allergy_id)
        if allergy is None:
            return
        allergy.selected_reactions = list(reactions)
        if reactions:
            _clear_error(allergy, "reactions")

    def update_note(self, allergy_id: str, note: Optional[str]) -> None:
        allergy = _find(self.selected_allergies, allergy_id)
        if allergy is not None:
            allergy.note = note or None

    def validate_all_allergies(self) -> bool:
        is_valid = True
        for allergy in self.selected_allergies:
            severity_ok = _set_error(
                allergy.errors, "severity", DROPDOWN_VALUE_REQUIRED,
                allergy.selected_severity is None,
            )
            reactions_ok = _set_error(
                allergy.errors, "reactions", DROPDOWN_VALUE_REQUIRED,
                not allergy.selected_reactions,
            )
            if not (severity_ok and reactions_ok):
                is_valid = False
            allergy.has_been_validated = True
        return is_valid

    def reset(self) -> None:
        self.selected_allergies = []


# ── Investigation orders ─────────────────────────────────────────────────────

class ServiceRequestStore:
    """
    Investigation orders keyed by category label (e.g. ``"Lab"``, ``"Radiology"``).

    No validator: an order is complete as soon as it is selected and its
    priority defaults to routine.
    """

    def __init__(self) -> None:
        self.selected_service_requests: Dict[str, List[ServiceRequestEntry]] = {}

    def add_service_request(self, category: str, concept: Concept) -> None:
        group = self.selected_service_requests.setdefault(category, [])
        if _find(group, concept.uuid) is not None:
            logger.debug(
                "stores.add_service_request: '%s' already selected in '%s'",
                concept.uuid, category,
            )
            return
        group.append(
            ServiceRequestEntry(
                id=concept.uuid,
                display=concept.name,
                selected_priority=PRIORITY_ROUTINE,
            )
        )

    def remove_service_request(self, category: str, concept_id: str) -> None:
        group = self.selected_service_requests.get(category)
        if group is None:
            return
        remaining = [o for o in group if o.id != concept_id]
        if remaining:
            self.selected_service_requests[category] = remaining
        else:
            del self.selected_service_requests[category]

    def update_priority(self, category: str, concept_id: str, priority: str) -> None:
        if priority not in SERVICE_REQUEST_PRIORITIES:
            logger.warning("stores.update_priority: unknown priority '%s'", priority)
            return
        order = _find(self.selected_service_requests.get(category, []), concept_id)
        if order is not None:
            order.selected_priority = priority

    def reset(self) -> None:
        self.selected_service_requests = {}


# ── Medications ──────────────────────────────────────────────────────────────

class MedicationStore:
    """Medication orders, newest first."""

    def __init__(self) -> None:
        self.selected_medications: List[MedicationEntry] = []

    def add_medication(self, medication: Dict[str, Any], display_name: str) -> None:
        medication_id = (medication or {}).get("id")
        if not medication_id:
            logger.warning("stores.add_medication: medication without id ignored")
            return
        if _find(self.selected_medications, medication_id) is not None:
            logger.debug("stores.add_medication: '%s' already selected", medication_id)
            return
        self.selected_medications.insert(
            0,
            MedicationEntry(
                id=medication_id,
                display=display_name,
                medication=medication,
            ),
        )

    def remove_medication(self, medication_id: str) -> None:
        self.selected_medications = [
            m for m in self.selected_medications if m.id != medication_id
        ]

    def _update(self, medication_id: str, field: str, value: Any, clears: bool) -> None:
        medication = _find(self.selected_medications, medication_id)
        if medication is None:
            return
        setattr(medication, field, value)
        if clears:
            _clear_error(medication, field)

    def update_dosage(self, medication_id: str, dosage: float) -> None:
        self._update(medication_id, "dosage", dosage, dosage > 0)

    def update_dosage_unit(self, medication_id: str, unit: Optional[Concept]) -> None:
        self._update(medication_id, "dosage_unit", unit, unit is not None)

    def update_frequency(self, medication_id: str, frequency: Optional[Frequency]) -> None:
        self._update(medication_id, "frequency", frequency, frequency is not None)

    def update_route(self, medication_id: str, route: Optional[Concept]) -> None:
        self._update(medication_id, "route", route, route is not None)

    def update_duration(self, medication_id: str, duration: float) -> None:
        self._update(medication_id, "duration", duration, duration > 0)

    def update_duration_unit(
        self, medication_id: str, unit: Optional[DurationUnitOption]
    ) -> None:
        self._update(medication_id, "duration_unit", unit, unit is not None)

    def update_instruction(self, medication_id: str, instruction: Optional[Concept]) -> None:
        self._update(medication_id, "instruction", instruction, False)

    def update_is_prn(self, medication_id: str, is_prn: bool) -> None:
        self._update(medication_id, "is_prn", is_prn, False)

    def update_is_stat(self, medication_id: str, is_stat: bool) -> None:
        self._update(medication_id, "is_stat", is_stat, False)

    def update_start_date(self, medication_id: str, start_date: datetime) -> None:
        self._update(medication_id, "start_date", start_date, False)

    def update_dispense_quantity(self, medication_id: str, quantity: float) -> None:
        self._update(medication_id, "dispense_quantity", quantity, quantity >= 0)

    def update_dispense_unit(self, medication_id: str, unit: Optional[Concept]) -> None:
        self._update(medication_id, "dispense_unit", unit, unit is not None)

    def validate_all_medications(self) -> bool:
        is_valid = True
        for m in self.selected_medications:
            checks = [
                _set_error(m.errors, "dosage", MEDICATION_DOSAGE_REQUIRED,
                           not m.dosage or m.dosage <= 0),
                _set_error(m.errors, "dosage_unit", DROPDOWN_VALUE_REQUIRED,
                           m.dosage_unit is None),
                _set_error(m.errors, "frequency", DROPDOWN_VALUE_REQUIRED,
                           m.frequency is None),
                _set_error(m.errors, "route", DROPDOWN_VALUE_REQUIRED,
                           m.route is None),
                _set_error(m.errors, "duration", MEDICATION_DURATION_REQUIRED,
                           not m.duration or m.duration <= 0),
                _set_error(m.errors, "duration_unit", DROPDOWN_VALUE_REQUIRED,
                           m.duration_unit is None),
            ]
            if not all(checks):
                is_valid = False
            m.has_been_validated = True
        return is_valid

    def reset(self) -> None:
        self.selected_medications = []


# ── Encounter details ────────────────────────────────────────────────────────

class EncounterDetailsStore:
    """
    Encounter-level selections made in the consultation header.

    ``active_visit`` is the FHIR Encounter (visit) the consultation belongs
    to; only its ``id`` is used here.
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.patient_uuid: Optional[str] = None
        self.practitioner: Optional[Provider] = None
        self.active_visit: Optional[Dict[str, Any]] = None
        self.selected_location: Optional[Concept] = None
        self.selected_encounter_type: Optional[Concept] = None
        self.selected_visit_type: Optional[Concept] = None
        self.encounter_participants: List[Provider] = []
        self.consultation_date: datetime = datetime.now(timezone.utc)

    def to_context(self, encounter_id: Optional[str] = None) -> EncounterContext:
        """Snapshot the current selections as an EncounterContext."""
        return EncounterContext(
            encounter_id=encounter_id,
            patient_uuid=self.patient_uuid,
            practitioner_uuid=self.practitioner.uuid if self.practitioner else None,
            visit_uuid=(self.active_visit or {}).get("id"),
            location_uuid=self.selected_location.uuid if self.selected_location else None,
            encounter_type=self.selected_encounter_type,
            participant_uuids=[p.uuid for p in self.encounter_participants],
            consultation_date=self.consultation_date,
        )


# ── Store bundle ─────────────────────────────────────────────────────────────

class ConsultationStores:
    """
    The five category stores plus encounter details for one consultation.

    Passed to the submission workflow by reference; the workflow reads and
    resets them but never replaces them.
    """

    def __init__(
        self,
        diagnoses: Optional[DiagnosisStore] = None,
        allergies: Optional[AllergyStore] = None,
        service_requests: Optional[ServiceRequestStore] = None,
        medications: Optional[MedicationStore] = None,
        encounter_details: Optional[EncounterDetailsStore] = None,
    ) -> None:
        self.diagnoses = diagnoses or DiagnosisStore()
        self.allergies = allergies or AllergyStore()
        self.service_requests = service_requests or ServiceRequestStore()
        self.medications = medications or MedicationStore()
        self.encounter_details = encounter_details or EncounterDetailsStore()

    def reset_categories(self) -> None:
        """Clear every clinical selection; encounter details are kept."""
        self.diagnoses.reset()
        self.allergies.reset()
        self.service_requests.reset()
        self.medications.reset()

    def reset_all(self) -> None:
        self.reset_categories()
        self.encounter_details.reset()

    def is_empty(self) -> bool:
        return not (
            self.diagnoses.selected_diagnoses
            or self.diagnoses.selected_conditions
            or self.allergies.selected_allergies
            or self.service_requests.selected_service_requests
            or self.medications.selected_medications
        )
