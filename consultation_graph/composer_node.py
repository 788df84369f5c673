"""
composer_node.py
----------------
ConsultPad — Clinical Consultation Composer — LangGraph Composer Node
--------------------------------------------------------------------
Builds the consultation transaction bundle: resolves the encounter
reference once, maps every category with that same token and assembles the
entries in the fixed category order.

Key functions:
    make_composer_node: Bind the node to the consultation's stores.
    compose_consultation_bundle: Pure composition used by the node.

Author: Shreelakshmi Gopinatha Rao
Project: ConsultPad — Clinical Consultation Composer
"""

import logging
from typing import Any, Dict, Tuple

from consultation_bundle import (
    assemble_consultation_bundle,
    create_encounter_bundle_entry,
    resolve_encounter_reference,
)
from consultation_graph.state import SubmissionState
from fhir_mapper import (
    create_allergy_bundle_entries,
    create_condition_bundle_entries,
    create_diagnosis_bundle_entries,
    create_encounter_resource,
    create_medication_request_entries,
    create_service_request_bundle_entries,
)
from schemas import EncounterContext
from stores import ConsultationStores

logger = logging.getLogger(__name__)


def compose_consultation_bundle(
    context: EncounterContext,
    stores: ConsultationStores,
) -> Tuple[str, str, Dict[str, Any]]:
    """
    Compose the bundle for *context* from the current store selections.

    Returns:
        tuple: ``(verb, encounter_reference, bundle)``.

    Raises:
        ValueError: if the context lacks the patient or practitioner.
    """
    verb, token = resolve_encounter_reference(context)
    encounter_entry = create_encounter_bundle_entry(
        context, create_encounter_resource(context), verb, token
    )

    subject = context.patient_reference
    mapper_args = (subject, token, context.practitioner_uuid)
    when = context.consultation_date

    groups = [
        create_diagnosis_bundle_entries(
            stores.diagnoses.selected_diagnoses, *mapper_args, consultation_date=when),
        create_allergy_bundle_entries(
            stores.allergies.selected_allergies, *mapper_args, consultation_date=when),
        create_condition_bundle_entries(
            stores.diagnoses.selected_conditions, *mapper_args, consultation_date=when),
        create_service_request_bundle_entries(
            stores.service_requests.selected_service_requests, *mapper_args, consultation_date=when),
        create_medication_request_entries(
            stores.medications.selected_medications, *mapper_args, consultation_date=when),
    ]
    return verb, token, assemble_consultation_bundle(encounter_entry, groups)


def make_composer_node(stores: ConsultationStores):
    """Build the composer node for *stores*."""

    async def composer_node(state: SubmissionState) -> SubmissionState:
        """
        Composer Node — reference resolution, mapping and assembly.

        Returns:
            SubmissionState: routing_decision "composed", or "failure" with
            the error when composition rejects the context.

        Raises:
            Never.
        """
        try:
            verb, token, bundle = compose_consultation_bundle(state["context"], stores)
        except ValueError as exc:
            logger.error("composer_node: bundle composition failed: %s", exc)
            state["error"] = str(exc)
            state["routing_decision"] = "failure"
            return state

        state["verb"] = verb
        state["encounter_reference"] = token
        state["bundle"] = bundle
        state["routing_decision"] = "composed"
        return state

    return composer_node
