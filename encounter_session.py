"""
encounter_session.py
--------------------
ConsultPad — Clinical Consultation Composer — Encounter session lookup
----------------------------------------------------------------------
Decides whether the current consultation amends an encounter the same
practitioner already started for this patient, or creates a new one.

An encounter belongs to the current session when it
  - is a consultation encounter for the patient (and practitioner, if known),
  - was last updated within the configured session window, and
  - is ``partOf`` the patient's currently open visit.

Every lookup failure degrades to "no active encounter" (a new consultation):
the submission then creates an encounter instead of failing.

Key functions:
    get_encounter_session_duration: session window in minutes.
    filter_by_active_visit:         first encounter inside the open visit.
    find_active_encounter_in_session: the full lookup.
    EncounterSession:               cached ``() -> {"identifier": …}`` collaborator.

Author: Shreelakshmi Gopinatha Rao
Project: ConsultPad — Clinical Consultation Composer
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from clinical_constants import (
    CONSULTATION_ENCOUNTER_TYPE_UUID,
    DEFAULT_SESSION_DURATION_MIN,
    ENCOUNTER_SESSION_DURATION_PROPERTY,
    FALLBACK_SESSION_DURATION_MIN,
)
from fhir_client import FhirAPIError, FhirClient
from fhir_mapper import format_fhir_datetime

logger = logging.getLogger(__name__)


async def get_encounter_session_duration(client: FhirClient) -> int:
    """
    Return the encounter session duration in minutes.

    ``ENCOUNTER_SESSION_DURATION_MIN`` overrides the server setting.  A
    missing or non-positive server value gives 60; a failed lookup gives 30.

    Raises:
        Never.
    """
    override = os.getenv("ENCOUNTER_SESSION_DURATION_MIN")
    if override:
        try:
            minutes = int(override)
            if minutes > 0:
                return minutes
        except ValueError:
            logger.warning("encounter_session: ignoring invalid ENCOUNTER_SESSION_DURATION_MIN=%r", override)

    try:
        value = await client.get_global_property(ENCOUNTER_SESSION_DURATION_PROPERTY)
    except (FhirAPIError, RuntimeError) as exc:
        logger.warning("encounter_session: session duration lookup failed: %s", exc)
        return FALLBACK_SESSION_DURATION_MIN

    try:
        minutes = float(value)
    except (TypeError, ValueError):
        return DEFAULT_SESSION_DURATION_MIN
    return int(minutes) if minutes > 0 else DEFAULT_SESSION_DURATION_MIN


def _visit_id_of(encounter: Dict[str, Any]) -> Optional[str]:
    reference = ((encounter.get("partOf") or {}).get("reference")) or ""
    parts = reference.split("/")
    return parts[1] if len(parts) > 1 else None


def filter_by_active_visit(
    encounters: List[Dict[str, Any]],
    active_visit: Optional[Dict[str, Any]],
) -> Optional[Dict[str, Any]]:
    """Return the first encounter whose ``partOf`` visit is *active_visit*, else None."""
    if not encounters or not active_visit:
        return None
    visit_id = active_visit.get("id")
    return next((e for e in encounters if _visit_id_of(e) == visit_id), None)


async def find_active_encounter_in_session(
    client: FhirClient,
    patient_uuid: Optional[str],
    practitioner_uuid: Optional[str] = None,
    session_duration_min: Optional[int] = None,
    *,
    now: Optional[datetime] = None,
) -> Optional[Dict[str, Any]]:
    """
    Find this session's consultation encounter for the patient, or None.

    Args:
        client:               Connected FhirClient.
        patient_uuid:         Patient to search; None/empty returns None.
        practitioner_uuid:    Restrict to encounters with this participant.
        session_duration_min: Window length; fetched from the server if None.
        now:                  Reference time (tests pin it).

    Returns:
        The Encounter resource, or None when there is none or on any error.

    Raises:
        Never.
    """
    if not patient_uuid:
        return None

    try:
        duration = session_duration_min or await get_encounter_session_duration(client)
        session_start = (now or datetime.now(timezone.utc)) - timedelta(minutes=duration)

        encounters = await client.search_encounters(
            patient=patient_uuid,
            _tag="encounter",
            _lastUpdated=f"ge{format_fhir_datetime(session_start)}",
            type=CONSULTATION_ENCOUNTER_TYPE_UUID,
            participant=practitioner_uuid,
        )
        if not encounters:
            return None

        active_visit = await client.get_active_visit(patient_uuid)
        return filter_by_active_visit(encounters, active_visit)

    except (FhirAPIError, RuntimeError) as exc:
        logger.warning(
            "encounter_session: lookup failed for patient %s, treating as new consultation: %s",
            patient_uuid, exc,
        )
        return None


class EncounterSession:
    """
    The encounter-session collaborator of the submission workflow.

    ``await refresh()`` when the consultation opens; calling the instance
    then returns ``{"identifier": <encounter id>}`` for an active encounter or
    ``{}`` for a new one.  ``end()`` closes the session after a submission or
    cancellation so the next consultation starts from a fresh lookup.
    """

    def __init__(self, client: FhirClient) -> None:
        self._client = client
        self.active_encounter: Optional[Dict[str, Any]] = None

    async def refresh(
        self,
        patient_uuid: Optional[str],
        practitioner_uuid: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        self.active_encounter = await find_active_encounter_in_session(
            self._client, patient_uuid, practitioner_uuid
        )
        logger.info(
            "encounter_session: %s",
            f"resuming encounter {self.active_encounter.get('id')}"
            if self.active_encounter else "new consultation",
        )
        return self.active_encounter

    def __call__(self) -> Dict[str, str]:
        if self.active_encounter and self.active_encounter.get("id"):
            return {"identifier": self.active_encounter["id"]}
        return {}

    def end(self) -> None:
        self.active_encounter = None
