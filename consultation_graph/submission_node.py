"""
submission_node.py
------------------
ConsultPad — Clinical Consultation Composer — LangGraph Submission Node
-----------------------------------------------------------------------
Sends the composed bundle in one network round trip and records either the
server-assigned identifiers or the failure reason.  No retry is attempted;
a retry is always a fresh submit from IDLE.

Key functions:
    make_submission_node:  Bind the node to a transport.
    extract_resource_ids:  "Type/id" strings from a transaction-response bundle.

Author: Shreelakshmi Gopinatha Rao
Project: ConsultPad — Clinical Consultation Composer
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from clinical_constants import CONSULTATION_ERROR_GENERIC
from consultation_graph.state import SubmissionState
from fhir_client import FhirAPIError

logger = logging.getLogger(__name__)

Transport = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


def extract_resource_ids(response: Optional[Dict[str, Any]]) -> List[str]:
    """
    Parse ``"<Type>/<id>"`` identifiers from an acknowledged bundle.

    Uses ``entry.response.location`` (dropping any ``_history`` suffix) and
    falls back to the entry's resource type and id.
    """
    ids: List[str] = []
    for entry in (response or {}).get("entry") or []:
        location = ((entry.get("response") or {}).get("location")) or ""
        parts = [p for p in location.split("/_history")[0].split("/") if p]
        if len(parts) >= 2:
            ids.append(f"{parts[-2]}/{parts[-1]}")
            continue
        resource = entry.get("resource") or {}
        if resource.get("resourceType") and resource.get("id"):
            ids.append(f"{resource['resourceType']}/{resource['id']}")
    return ids


def make_submission_node(transport: Transport):
    """Build the submission node around *transport* (``bundle -> acknowledged bundle``)."""

    async def submission_node(state: SubmissionState) -> SubmissionState:
        """
        Submission Node — the only suspension point of a submission.

        Returns:
            SubmissionState: routing_decision "success" with resource_ids, or
            "failure" with the server message (or the generic error key).

        Raises:
            Never.
        """
        try:
            response = await transport(state["bundle"])
        except FhirAPIError as exc:
            logger.error(
                "submission_node: bundle rejected (HTTP %s): %s", exc.status_code, exc.message
            )
            state["error"] = exc.message or CONSULTATION_ERROR_GENERIC
            state["routing_decision"] = "failure"
            return state
        except Exception as exc:
            logger.exception("submission_node: submission failed")
            state["error"] = str(exc) or CONSULTATION_ERROR_GENERIC
            state["routing_decision"] = "failure"
            return state

        state["response"] = response
        state["resource_ids"] = extract_resource_ids(response)
        state["routing_decision"] = "success"
        logger.info(
            "submission_node: consultation submitted, %d resources acknowledged.",
            len(state["resource_ids"]),
        )
        return state

    return submission_node
