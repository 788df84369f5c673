"""
state.py
--------
ConsultPad — Clinical Consultation Composer — LangGraph SubmissionState schema
------------------------------------------------------------------------------
Defines the SubmissionState TypedDict that flows through every node of the
submission graph, and create_initial_state() for consistent defaults.

Key fields:
    context: EncounterContext snapshot taken when submit() was accepted.
    routing_decision: Set by each node to drive the conditional edges.
        Values: "valid" | "invalid" | "composed" | "success" | "failure"
    encounter_reference: The reference token shared by every fact entry.
    bundle: The transaction bundle, once composed.

Author: Shreelakshmi Gopinatha Rao
Project: ConsultPad — Clinical Consultation Composer
"""

from typing import List, Optional
from typing_extensions import TypedDict

from schemas import EncounterContext


class SubmissionState(TypedDict):
    """
    Shared state passed through every node of the submission graph.

    Args:
        context: Encounter context for this submission.
        is_valid: Result of the validation gate.
        verb: ``"POST"`` (new encounter) or ``"PUT"`` (amend).
        encounter_reference: Token from resolve_encounter_reference().
        bundle: Assembled transaction bundle.
        response: Acknowledged bundle returned by the transport.
        resource_ids: Server identifiers parsed from the response.
        error: Failure reason surfaced to the user.
        routing_decision: Drives conditional edge routing.
        outcome: Terminal outcome: "success" | "failure" | "invalid".
    """
    context: EncounterContext
    is_valid: bool
    verb: str
    encounter_reference: str
    bundle: Optional[dict]
    response: Optional[dict]
    resource_ids: List[str]
    error: Optional[str]
    routing_decision: str
    outcome: str


def create_initial_state(context: EncounterContext) -> SubmissionState:
    """
    Create a fresh SubmissionState for one submit attempt.

    Raises:
        Never.
    """
    return {
        "context": context,
        "is_valid": False,
        "verb": "",
        "encounter_reference": "",
        "bundle": None,
        "response": None,
        "resource_ids": [],
        "error": None,
        "routing_decision": "",
        "outcome": "",
    }
