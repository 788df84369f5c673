"""
consultation_bundle.py
----------------------
ConsultPad — Clinical Consultation Composer — Consultation bundle assembly
--------------------------------------------------------------------------
Resolves the encounter reference for one submission and assembles the
encounter entry plus every fact entry into a single FHIR transaction bundle.

Reference resolution:
    New encounter      → ("POST", "urn:uuid:<uuid4>"), a fresh token per call.
    Existing encounter → ("PUT", "<FHIR_R4_PATH>/Encounter/<id>"), derived
                         only from the encounter id.

The token is used both as the encounter entry's ``fullUrl`` and as every fact
entry's ``encounter.reference``, so the server can link the records inside
one transaction.

Key functions:
    resolve_encounter_reference:  EncounterContext → (verb, token).
    create_encounter_bundle_entry: Encounter resource → bundle entry 0.
    assemble_consultation_bundle: encounter entry + five groups → Bundle.

Author: Shreelakshmi Gopinatha Rao
Project: ConsultPad — Clinical Consultation Composer
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Sequence, Tuple

from clinical_constants import CATEGORY_ORDER, FHIR_R4_PATH
from schemas import EncounterContext

logger = logging.getLogger(__name__)

VERB_CREATE = "POST"
VERB_AMEND = "PUT"


def resolve_encounter_reference(context: EncounterContext) -> Tuple[str, str]:
    """
    Decide whether this submission creates or amends the encounter.

    Args:
        context: EncounterContext for the consultation.

    Returns:
        tuple: ``(verb, token)``; verb is ``"POST"`` or ``"PUT"``.

    Raises:
        Never.
    """
    if context.is_new:
        return VERB_CREATE, f"urn:uuid:{uuid.uuid4()}"
    return VERB_AMEND, f"{FHIR_R4_PATH}/Encounter/{context.encounter_id}"


def create_encounter_bundle_entry(
    context: EncounterContext,
    resource: Dict[str, Any],
    verb: str,
    token: str,
) -> Dict[str, Any]:
    """
    Wrap the Encounter resource as the first bundle entry.

    For an amend the resource is copied with the existing ``id`` so the
    caller's dict is left untouched.
    """
    if verb == VERB_AMEND:
        resource = {**resource, "id": context.encounter_id}
        url = f"Encounter/{context.encounter_id}"
    else:
        url = "Encounter"
    return {
        "fullUrl":  token,
        "resource": resource,
        "request": {
            "method": verb,
            "url":    url,
        },
    }


def assemble_consultation_bundle(
    encounter_entry: Dict[str, Any],
    groups: Sequence[List[Dict[str, Any]]],
) -> Dict[str, Any]:
    """
    Build the transaction bundle: encounter first, then each group in order.

    Args:
        encounter_entry: Entry produced by create_encounter_bundle_entry().
        groups:          Exactly five entry lists in the order diagnoses,
                         allergies, conditions, investigation orders,
                         medications.

    Returns:
        dict: ``{"resourceType": "Bundle", "type": "transaction", "entry": [...]}``.

    Raises:
        ValueError: if *groups* does not contain one list per category.
    """
    if len(groups) != len(CATEGORY_ORDER):
        raise ValueError(
            f"Expected {len(CATEGORY_ORDER)} entry groups "
            f"({', '.join(CATEGORY_ORDER)}), got {len(groups)}."
        )

    entries: List[Dict[str, Any]] = [encounter_entry]
    for name, group in zip(CATEGORY_ORDER, groups):
        entries.extend(group or [])
        logger.debug("consultation_bundle: %s → %d entries", name, len(group or []))

    bundle = {
        "resourceType": "Bundle",
        "type":         "transaction",
        "entry":        entries,
    }
    logger.info(
        "consultation_bundle: assembled transaction bundle with %d entries (%s %s).",
        len(entries),
        encounter_entry.get("request", {}).get("method"),
        encounter_entry.get("fullUrl"),
    )
    return bundle
