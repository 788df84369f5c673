"""
fhir_mapper.py
--------------
ConsultPad — Clinical Consultation Composer — FHIR R4 Mapping Layer
-------------------------------------------------------------------
Translates the clinician's in-memory selections (see schemas.py) into FHIR R4
transaction bundle entries ready to be assembled into a consultation bundle.

Six resource builders are provided:
  • Encounter          — the consultation itself (create_encounter_resource).
  • Condition          — diagnoses (category ``encounter-diagnosis``) and
                         chronic conditions (category ``problem-list-item``).
  • AllergyIntolerance — allergens with reactions and severity.
  • ServiceRequest     — investigation orders (lab, radiology, …).
  • MedicationRequest  — medication orders with dosage and dispense quantity.

Every fact entry links back to the encounter through the same reference
token supplied by the caller (consultation_bundle.resolve_encounter_reference),
so the receiving server can resolve the links inside one transaction.

Public API:
    create_encounter_resource()          — Encounter resource for the context.
    create_diagnosis_bundle_entries()    — DiagnosisEntry list → entries.
    create_allergy_bundle_entries()      — AllergyEntry list → entries.
    create_condition_bundle_entries()    — ConditionEntry list → entries.
    create_service_request_bundle_entries() — category → orders → entries.
    create_medication_request_entries()  — MedicationEntry list → entries.
    format_fhir_datetime()               — UTC ``YYYY-MM-DDTHH:MM:SS.mmmZ``.

Mapper contract:
    (selections, subject, encounter_reference, practitioner_uuid,
     *, consultation_date) → List[bundle entry]

    Missing context arguments are a caller bug and raise ValueError.
    A malformed selection (no id, diagnosis without a certainty code) is
    logged and skipped; it never aborts the rest of the batch.

Author: Shreelakshmi Gopinatha Rao
Project: ConsultPad — Clinical Consultation Composer
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from clinical_constants import (
    CONDITION_CATEGORY_SYSTEM,
    CONDITION_CLINICAL_SYSTEM,
    CONDITION_DURATION_UNITS,
    CONDITION_VERIFICATION_SYSTEM,
    ENCOUNTER_CLASS_SYSTEM,
    PRIORITY_ROUTINE,
    PRIORITY_STAT,
)
from schemas import (
    AllergyEntry,
    ConditionEntry,
    DiagnosisEntry,
    EncounterContext,
    MedicationEntry,
    ServiceRequestEntry,
)

logger = logging.getLogger(__name__)

Reference = Dict[str, str]
BundleEntry = Dict[str, Any]


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def format_fhir_datetime(dt: datetime) -> str:
    """
    Render *dt* as a UTC instant with millisecond precision.

    Naive datetimes are taken to be UTC already.

    Example::

        format_fhir_datetime(datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc))
        # → "2024-01-15T10:30:00.000Z"
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def _coding(code: Optional[str], system: Optional[str] = None, display: Optional[str] = None) -> Dict[str, str]:
    coding: Dict[str, str] = {"code": code or ""}
    if system:
        coding["system"] = system
    if display:
        coding["display"] = display
    return coding


def _concept(code: Optional[str], display: Optional[str] = None) -> Dict[str, Any]:
    """CodeableConcept with a single coding keyed by concept uuid."""
    concept: Dict[str, Any] = {"coding": [_coding(code)]}
    if display:
        concept["text"] = display
    return concept


def _practitioner_reference(practitioner_uuid: str) -> Reference:
    return {"reference": f"Practitioner/{practitioner_uuid}"}


def _create_bundle_entry(resource: Dict[str, Any]) -> BundleEntry:
    return {
        "fullUrl":  f"urn:uuid:{uuid.uuid4()}",
        "resource": resource,
        "request": {
            "method": "POST",
            "url":    resource["resourceType"],
        },
    }


def _require_context(
    subject: Optional[Reference],
    encounter_reference: Optional[str],
    practitioner_uuid: Optional[str],
) -> None:
    if not subject or not subject.get("reference"):
        raise ValueError("subject reference must not be empty.")
    if not encounter_reference:
        raise ValueError("encounter_reference must not be empty.")
    if not practitioner_uuid:
        raise ValueError("practitioner_uuid must not be empty.")


# ---------------------------------------------------------------------------
# Encounter
# ---------------------------------------------------------------------------

def create_encounter_resource(context: EncounterContext) -> Dict[str, Any]:
    """
    Build the Encounter resource for *context*.

    The encounter is ``in-progress``, belongs to the active visit through
    ``partOf`` and lists every participant practitioner.  The ``id`` is added
    later by consultation_bundle when an existing encounter is amended.

    Raises:
        ValueError: if the patient uuid is missing.
    """
    if not context.patient_uuid:
        raise ValueError("patient_uuid must not be empty.")

    encounter: Dict[str, Any] = {
        "resourceType": "Encounter",
        "status":       "in-progress",
        "class": _coding("AMB", ENCOUNTER_CLASS_SYSTEM, "ambulatory"),
        "subject":      context.patient_reference,
        "participant": [
            {"individual": {"reference": f"Practitioner/{p}", "type": "Practitioner"}}
            for p in context.participant_uuids
        ],
        "period": {"start": format_fhir_datetime(context.consultation_date)},
    }
    if context.encounter_type is not None:
        encounter["type"] = [{
            "coding": [_coding(context.encounter_type.uuid, display=context.encounter_type.name)],
        }]
    if context.visit_uuid:
        encounter["partOf"] = {"reference": f"Encounter/{context.visit_uuid}"}
    if context.location_uuid:
        encounter["location"] = [
            {"location": {"reference": f"Location/{context.location_uuid}"}}
        ]
    return encounter


# ---------------------------------------------------------------------------
# Diagnoses
# ---------------------------------------------------------------------------

def create_diagnosis_bundle_entries(
    selections: List[DiagnosisEntry],
    subject: Reference,
    encounter_reference: str,
    practitioner_uuid: str,
    *,
    consultation_date: datetime,
) -> List[BundleEntry]:
    """
    Map selected diagnoses to ``Condition`` entries (encounter-diagnosis).

    The selected certainty coding is copied verbatim into
    ``verificationStatus``; a diagnosis without one is skipped.

    Raises:
        ValueError: if subject, encounter_reference or practitioner_uuid is empty.
    """
    _require_context(subject, encounter_reference, practitioner_uuid)
    recorded = format_fhir_datetime(consultation_date)
    entries: List[BundleEntry] = []

    for diagnosis in selections:
        certainty = diagnosis.selected_certainty
        if not diagnosis.id:
            logger.warning("fhir_mapper: diagnosis without id skipped: %s", diagnosis.display)
            continue
        if certainty is None or not certainty.code:
            logger.warning("fhir_mapper: diagnosis '%s' has no certainty, skipped.", diagnosis.id)
            continue

        resource = {
            "resourceType": "Condition",
            "subject":      subject,
            "category": [{
                "coding": [_coding("encounter-diagnosis", CONDITION_CATEGORY_SYSTEM, "Encounter Diagnosis")],
            }],
            "code": _concept(diagnosis.id),
            "verificationStatus": {
                "coding": [_coding(
                    certainty.code,
                    certainty.system or CONDITION_VERIFICATION_SYSTEM,
                    certainty.display,
                )],
            },
            "encounter":    {"reference": encounter_reference},
            "recorder":     _practitioner_reference(practitioner_uuid),
            "recordedDate": recorded,
        }
        entries.append(_create_bundle_entry(resource))

    logger.debug("fhir_mapper: %d diagnosis entries.", len(entries))
    return entries


# ---------------------------------------------------------------------------
# Allergies
# ---------------------------------------------------------------------------

def create_allergy_bundle_entries(
    selections: List[AllergyEntry],
    subject: Reference,
    encounter_reference: str,
    practitioner_uuid: str,
    *,
    consultation_date: Optional[datetime] = None,
) -> List[BundleEntry]:
    """
    Map selected allergens to ``AllergyIntolerance`` entries.

    Severity and reactions are emitted as one ``reaction`` element; the
    element is omitted only when neither is present.  ``consultation_date``
    is accepted for signature parity and not used.
    """
    _require_context(subject, encounter_reference, practitioner_uuid)
    entries: List[BundleEntry] = []

    for allergy in selections:
        if not allergy.id:
            logger.warning("fhir_mapper: allergy without id skipped: %s", allergy.display)
            continue

        resource: Dict[str, Any] = {
            "resourceType": "AllergyIntolerance",
            "category":     [allergy.type],
            "code":         {"coding": [_coding(allergy.id)]},
            "patient":      subject,
            "recorder":     _practitioner_reference(practitioner_uuid),
            "encounter":    {"reference": encounter_reference},
        }

        reaction: Dict[str, Any] = {}
        if allergy.selected_reactions:
            reaction["manifestation"] = [
                {"coding": [_coding(r.code)]} for r in allergy.selected_reactions
            ]
        if allergy.selected_severity is not None and allergy.selected_severity.code:
            reaction["severity"] = allergy.selected_severity.code
        if reaction:
            resource["reaction"] = [reaction]
        if allergy.note:
            resource["note"] = [{"text": allergy.note}]

        entries.append(_create_bundle_entry(resource))

    logger.debug("fhir_mapper: %d allergy entries.", len(entries))
    return entries


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------

def calculate_onset_date(
    consultation_date: datetime,
    duration_value: Optional[int],
    duration_unit: Optional[str],
) -> Optional[datetime]:
    """
    Return consultation_date minus the duration, or None without a duration.

    A zero duration returns *consultation_date* unchanged.  The input is
    never mutated (datetime arithmetic yields a new object).

    Raises:
        ValueError: if *duration_unit* is not days / months / years.
    """
    if duration_value is None or duration_unit is None:
        return None
    try:
        multiplier = CONDITION_DURATION_UNITS[duration_unit]
    except KeyError as exc:
        raise ValueError(f"Unknown condition duration unit: {duration_unit}") from exc
    return consultation_date - timedelta(days=duration_value * multiplier)


def create_condition_bundle_entries(
    selections: List[ConditionEntry],
    subject: Reference,
    encounter_reference: str,
    practitioner_uuid: str,
    *,
    consultation_date: datetime,
) -> List[BundleEntry]:
    """Map chronic conditions to ``Condition`` entries (problem-list-item, active)."""
    _require_context(subject, encounter_reference, practitioner_uuid)
    entries: List[BundleEntry] = []

    for condition in selections:
        if not condition.id:
            logger.warning("fhir_mapper: condition without id skipped: %s", condition.display)
            continue
        try:
            onset = calculate_onset_date(
                consultation_date, condition.duration_value, condition.duration_unit
            )
        except ValueError as exc:
            logger.warning("fhir_mapper: condition '%s' skipped: %s", condition.id, exc)
            continue

        resource: Dict[str, Any] = {
            "resourceType": "Condition",
            "subject":      subject,
            "category": [{
                "coding": [_coding("problem-list-item", CONDITION_CATEGORY_SYSTEM, "Problem List Item")],
            }],
            "clinicalStatus": {
                "coding": [_coding("active", CONDITION_CLINICAL_SYSTEM, "Active")],
            },
            "code":         _concept(condition.id, condition.display),
            "encounter":    {"reference": encounter_reference},
            "recorder":     _practitioner_reference(practitioner_uuid),
            "recordedDate": format_fhir_datetime(consultation_date),
        }
        if onset is not None:
            resource["onsetDateTime"] = format_fhir_datetime(onset)

        entries.append(_create_bundle_entry(resource))

    logger.debug("fhir_mapper: %d condition entries.", len(entries))
    return entries


# ---------------------------------------------------------------------------
# Investigation orders
# ---------------------------------------------------------------------------

def create_service_request_bundle_entries(
    selections: Dict[str, Optional[List[ServiceRequestEntry]]],
    subject: Reference,
    encounter_reference: str,
    practitioner_uuid: str,
    *,
    consultation_date: Optional[datetime] = None,
) -> List[BundleEntry]:
    """
    Map investigation orders, grouped by category label, to ``ServiceRequest`` entries.

    Empty or None groups are skipped; priority defaults to ``routine``.
    """
    _require_context(subject, encounter_reference, practitioner_uuid)
    entries: List[BundleEntry] = []

    for category, orders in (selections or {}).items():
        if not orders:
            continue
        for order in orders:
            if not order.id:
                logger.warning(
                    "fhir_mapper: %s order without id skipped: %s", category, order.display
                )
                continue
            resource = {
                "resourceType": "ServiceRequest",
                "status":       "active",
                "intent":       "order",
                "priority":     order.selected_priority or PRIORITY_ROUTINE,
                "code":         _concept(order.id, order.display),
                "subject":      subject,
                "encounter":    {"reference": encounter_reference},
                "requester":    _practitioner_reference(practitioner_uuid),
            }
            entries.append(_create_bundle_entry(resource))

    logger.debug("fhir_mapper: %d service request entries.", len(entries))
    return entries


# ---------------------------------------------------------------------------
# Medication orders
# ---------------------------------------------------------------------------

def _dosage_instruction(medication: MedicationEntry) -> Dict[str, Any]:
    instruction_text: Dict[str, Any] = {}
    if medication.instruction is not None:
        instruction_text["instructions"] = medication.instruction.name

    dosage: Dict[str, Any] = {
        "text":           json.dumps(instruction_text),
        "asNeededBoolean": medication.is_prn,
    }

    timing: Dict[str, Any] = {}
    if medication.start_date is not None:
        timing["event"] = [format_fhir_datetime(medication.start_date)]
    if medication.duration and medication.duration_unit is not None:
        timing["repeat"] = {
            "duration":     medication.duration,
            "durationUnit": medication.duration_unit.code,
        }
    if medication.frequency is not None:
        timing["code"] = {"coding": [_coding(medication.frequency.uuid)]}
    if timing:
        dosage["timing"] = timing

    if medication.route is not None:
        dosage["route"] = {"coding": [_coding(medication.route.uuid)]}
    if medication.dosage and medication.dosage_unit is not None:
        dosage["doseAndRate"] = [{
            "doseQuantity": {
                "value": medication.dosage,
                "code":  medication.dosage_unit.uuid,
            },
        }]
    return dosage


def create_medication_request_entries(
    selections: List[MedicationEntry],
    subject: Reference,
    encounter_reference: str,
    practitioner_uuid: str,
    *,
    consultation_date: Optional[datetime] = None,
) -> List[BundleEntry]:
    """
    Map medication orders to ``MedicationRequest`` entries.

    ``dispense_quantity`` was computed by the Total Quantity Rule when the
    order was edited and is copied as-is.  A STAT order gets priority ``stat``.
    """
    _require_context(subject, encounter_reference, practitioner_uuid)
    entries: List[BundleEntry] = []

    for medication in selections:
        if not medication.id:
            logger.warning("fhir_mapper: medication without id skipped: %s", medication.display)
            continue

        quantity: Dict[str, Any] = {"value": medication.dispense_quantity}
        if medication.dispense_unit is not None:
            quantity["code"] = medication.dispense_unit.uuid

        resource = {
            "resourceType": "MedicationRequest",
            "status":       "active",
            "intent":       "order",
            "priority":     PRIORITY_STAT if medication.is_stat else PRIORITY_ROUTINE,
            "medicationReference": {
                "reference": f"Medication/{medication.id}",
                "type":      "Medication",
                "display":   medication.display,
            },
            "subject":   subject,
            "encounter": {"reference": encounter_reference},
            "requester": _practitioner_reference(practitioner_uuid),
            "dosageInstruction": [_dosage_instruction(medication)],
            "dispenseRequest": {
                "numberOfRepeatsAllowed": 0,
                "quantity": quantity,
            },
        }
        entries.append(_create_bundle_entry(resource))

    logger.debug("fhir_mapper: %d medication request entries.", len(entries))
    return entries
