"""
validation_node.py
------------------
ConsultPad — Clinical Consultation Composer — LangGraph Validation Node
-----------------------------------------------------------------------
Business validation gate.  Runs every category validator (diagnoses and
conditions, allergies, medications) so that all per-field errors become
visible in one pass, then routes to composition or aborts.

Investigation orders have no validator: an order is complete as soon as it
is selected.

Key functions:
    make_validation_node: Bind the node to the consultation's stores.

Author: Shreelakshmi Gopinatha Rao
Project: ConsultPad — Clinical Consultation Composer
"""

import logging
from typing import Callable, Optional

from consultation_graph.state import SubmissionState
from stores import ConsultationStores

logger = logging.getLogger(__name__)


def make_validation_node(
    stores: ConsultationStores,
    on_valid: Optional[Callable[[], None]] = None,
):
    """
    Build the validation node for *stores*.

    Args:
        stores:   The consultation's stores (read, and error fields written).
        on_valid: Called once validation passes, before composition starts
                  (the orchestrator uses it to enter SUBMITTING).

    Returns:
        async callable: LangGraph node ``(state) -> state``.
    """

    async def validation_node(state: SubmissionState) -> SubmissionState:
        """
        Validation Node — all validators run; none short-circuits another.

        Returns:
            SubmissionState: routing_decision "valid" or "invalid".

        Raises:
            Never.
        """
        results = {
            "diagnoses": stores.diagnoses.validate(),
            "allergies": stores.allergies.validate_all_allergies(),
            "medications": stores.medications.validate_all_medications(),
        }
        is_valid = all(results.values())
        state["is_valid"] = is_valid

        if not is_valid:
            failed = [name for name, ok in results.items() if not ok]
            logger.info("validation_node: submission blocked, invalid categories: %s", failed)
            state["routing_decision"] = "invalid"
            state["outcome"] = "invalid"
            return state

        if on_valid is not None:
            on_valid()
        state["routing_decision"] = "valid"
        return state

    return validation_node
