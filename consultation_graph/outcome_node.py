"""
outcome_node.py
---------------
ConsultPad — Clinical Consultation Composer — LangGraph outcome nodes
---------------------------------------------------------------------
Terminal nodes of the submission graph.

  completion: reset every category store and the encounter details, end the
              encounter session, notify success once, record one
              EDIT_ENCOUNTER audit event.
  recovery:   notify the failure; no store is touched so the clinician can
              correct and resubmit.

Notifications and audit are one-way sends: nothing they do (or raise) can
change the outcome already reached.

Author: Shreelakshmi Gopinatha Rao
Project: ConsultPad — Clinical Consultation Composer
"""

import logging
from typing import Any, Callable, Dict, Optional

from clinical_constants import (
    CONSULTATION_ERROR_GENERIC,
    CONSULTATION_ERROR_TITLE,
    CONSULTATION_SUBMITTED_SUCCESS_MESSAGE,
    CONSULTATION_SUBMITTED_SUCCESS_TITLE,
    EDIT_ENCOUNTER,
    NOTIFICATION_ERROR,
    NOTIFICATION_SUCCESS,
)
from consultation_graph.state import SubmissionState
from stores import ConsultationStores

logger = logging.getLogger(__name__)

Notifier = Callable[[str, str, str], None]
AuditSink = Callable[[str, Optional[str], Optional[Dict[str, Any]]], None]


def _notify(notifier: Notifier, title: str, message: str, kind: str) -> None:
    try:
        notifier(title, message, kind)
    except Exception:
        logger.exception("outcome_node: notification sink failed (%s)", kind)


def _encounter_uuid(state: SubmissionState) -> Optional[str]:
    for resource_id in state.get("resource_ids") or []:
        if resource_id.startswith("Encounter/"):
            return resource_id.split("/", 1)[1]
    return state["context"].encounter_id


def make_completion_node(
    stores: ConsultationStores,
    end_session: Callable[[], None],
    notifier: Notifier,
    audit: Optional[AuditSink] = None,
):
    """Build the success node."""

    async def completion_node(state: SubmissionState) -> SubmissionState:
        """
        Completion Node — clear the consultation after an acknowledged submit.

        Raises:
            Never.
        """
        context = state["context"]
        encounter_type = context.encounter_type.name if context.encounter_type else None

        stores.reset_all()
        end_session()
        _notify(
            notifier,
            CONSULTATION_SUBMITTED_SUCCESS_TITLE,
            CONSULTATION_SUBMITTED_SUCCESS_MESSAGE,
            NOTIFICATION_SUCCESS,
        )

        if audit is not None:
            try:
                audit(
                    EDIT_ENCOUNTER,
                    context.patient_uuid,
                    {"encounterUuid": _encounter_uuid(state), "encounterType": encounter_type},
                )
            except Exception:
                logger.exception("outcome_node: audit sink failed for %s", EDIT_ENCOUNTER)

        state["outcome"] = "success"
        return state

    return completion_node


def make_recovery_node(notifier: Notifier):
    """Build the failure node."""

    async def recovery_node(state: SubmissionState) -> SubmissionState:
        """
        Recovery Node — surface the failure; selections stay as they were.

        Raises:
            Never.
        """
        if not state.get("error"):
            state["error"] = CONSULTATION_ERROR_GENERIC
        _notify(notifier, CONSULTATION_ERROR_TITLE, state["error"], NOTIFICATION_ERROR)
        state["outcome"] = "failure"
        return state

    return recovery_node
