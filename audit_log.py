"""
audit_log.py
------------
ConsultPad — Clinical Consultation Composer — Audit log dispatch
----------------------------------------------------------------
Best-effort audit logging.  An audit failure is logged here and never
reaches the clinical workflow: ``log_audit_event`` returns a result dict
instead of raising, and ``AuditDispatcher`` schedules it in the background so
the caller never waits on it.

Message format:
    ``<MESSAGE_KEY>``                  without parameters
    ``<MESSAGE_KEY>~<compact JSON>``   with parameters, e.g.
    ``EDIT_ENCOUNTER_MESSAGE~{"encounterUuid":"…","encounterType":"Consultation"}``

Key functions:
    log_audit_event:   POST one audit event; returns {"logged": bool, "error"?}.
    log_encounter_edit: EDIT_ENCOUNTER with encounter uuid and type.
    AuditDispatcher:   fire-and-forget ``(event_type, patient_uuid, params)`` sink.

Author: Shreelakshmi Gopinatha Rao
Project: ConsultPad — Clinical Consultation Composer
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set

from clinical_constants import (
    AUDIT_LOG_ENABLED_PROPERTY,
    AUDIT_LOG_EVENT_DETAILS,
    EDIT_ENCOUNTER,
)
from fhir_client import FhirAPIError, FhirClient

logger = logging.getLogger(__name__)


async def is_audit_log_enabled(client: FhirClient) -> bool:
    """True when the server's audit-log setting is ``"true"`` (any case)."""
    value = await client.get_global_property(AUDIT_LOG_ENABLED_PROPERTY)
    return str(value or "").strip().lower() == "true"


def _format_message(message_key: str, params: Optional[Dict[str, Any]]) -> str:
    if not params:
        return message_key
    return f"{message_key}~{json.dumps(params, separators=(',', ':'))}"


async def log_audit_event(
    client: FhirClient,
    patient_uuid: Optional[str],
    event_type: str,
    message_params: Optional[Dict[str, Any]] = None,
    module: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Record one audit event.

    Args:
        client:         Connected FhirClient.
        patient_uuid:   Patient the event concerns (may be None).
        event_type:     Key of AUDIT_LOG_EVENT_DETAILS.
        message_params: Parameters appended to the message key as JSON.
        module:         Overrides the event's default module label.

    Returns:
        dict: ``{"logged": True}`` on success, ``{"logged": False}`` when audit
        logging is disabled, ``{"logged": False, "error": str}`` on failure.

    Raises:
        Never.
    """
    details = AUDIT_LOG_EVENT_DETAILS.get(event_type)
    if details is None:
        error = f"Unknown audit event type: {event_type}"
        logger.warning("audit_log: %s", error)
        return {"logged": False, "error": error}

    try:
        if not await is_audit_log_enabled(client):
            return {"logged": False}

        await client.post_audit_log({
            "patientUuid": patient_uuid,
            "eventType":   details["eventType"],
            "message":     _format_message(details["message"], message_params),
            "module":      module or details["module"],
        })
    except (FhirAPIError, RuntimeError) as exc:
        logger.warning("audit_log: failed to log %s for patient %s: %s", event_type, patient_uuid, exc)
        return {"logged": False, "error": str(exc) or "Unknown error"}

    logger.debug("audit_log: logged %s for patient %s", event_type, patient_uuid)
    return {"logged": True}


async def log_encounter_edit(
    client: FhirClient,
    patient_uuid: Optional[str],
    encounter_uuid: Optional[str],
    encounter_type: Optional[str],
) -> Dict[str, Any]:
    return await log_audit_event(
        client,
        patient_uuid,
        EDIT_ENCOUNTER,
        {"encounterUuid": encounter_uuid, "encounterType": encounter_type},
    )


class AuditDispatcher:
    """
    Fire-and-forget audit sink.

    Calling the dispatcher schedules ``log_audit_event`` on the running event
    loop and returns immediately.  Pending tasks are kept referenced until
    they finish; ``drain()`` awaits them (used on shutdown and in tests).
    """

    def __init__(self, client: FhirClient) -> None:
        self._client = client
        self._pending: Set[asyncio.Task] = set()

    def __call__(
        self,
        event_type: str,
        patient_uuid: Optional[str],
        params: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("audit_log: no running event loop, %s not logged", event_type)
            return
        task = loop.create_task(
            log_audit_event(self._client, patient_uuid, event_type, params)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending))
