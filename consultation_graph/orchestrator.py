"""
orchestrator.py
---------------
ConsultPad — Clinical Consultation Composer — Submission orchestrator
---------------------------------------------------------------------
Owns the in-flight guard around the submission graph:

    IDLE → VALIDATING → SUBMITTING → IDLE (success | failure)
    IDLE → VALIDATING → IDLE (invalid)

``submit()`` checks and leaves IDLE before its first ``await``, so a second
``submit()`` scheduled on the same event loop while one is in flight is a
no-op.  Whatever happens inside the graph, the status returns to IDLE.

Key functions:
    ConsultationOrchestrator: submit() / cancel() / status.
    log_notification: Default notification sink (logs the message key).
    build_consultation_pad: Async context manager wiring the FHIR client,
        stores, encounter session and audit dispatcher together.

Author: Shreelakshmi Gopinatha Rao
Project: ConsultPad — Clinical Consultation Composer
"""

import enum
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, Optional

from dotenv import load_dotenv

from audit_log import AuditDispatcher
from clinical_constants import NOTIFICATION_ERROR
from consultation_graph.outcome_node import AuditSink, Notifier
from consultation_graph.state import create_initial_state
from consultation_graph.submission_node import Transport
from consultation_graph.workflow import build_submission_graph
from encounter_session import EncounterSession
from fhir_client import FhirClient
from schemas import SubmissionResult
from stores import ConsultationStores

logger = logging.getLogger(__name__)


class SubmissionStatus(str, enum.Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    SUBMITTING = "submitting"


def log_notification(title: str, message: str, kind: str) -> None:
    """Notification sink that writes to the log (no UI attached)."""
    level = logging.ERROR if kind == NOTIFICATION_ERROR else logging.INFO
    logger.log(level, "notification [%s] %s: %s", kind, title, message)


class ConsultationOrchestrator:
    """
    Validates, composes and submits one consultation at a time.

    Args:
        stores:            The consultation's stores; read and reset, never replaced.
        transport:         ``async (bundle) -> acknowledged bundle``.
        encounter_session: ``() -> {"identifier"?: str}``; may expose ``end()``.
        notifier:          ``(title, message, kind) -> None``.
        audit:             ``(event_type, patient_uuid, params) -> None``.
    """

    def __init__(
        self,
        stores: ConsultationStores,
        transport: Transport,
        encounter_session: Callable[[], Optional[Dict[str, str]]],
        notifier: Notifier = log_notification,
        audit: Optional[AuditSink] = None,
    ) -> None:
        self.stores = stores
        self.encounter_session = encounter_session
        self._status = SubmissionStatus.IDLE
        self._graph = build_submission_graph(
            stores=stores,
            transport=transport,
            end_session=self._end_session,
            notifier=notifier,
            audit=audit,
            on_valid=self._enter_submitting,
        )

    @property
    def status(self) -> SubmissionStatus:
        return self._status

    def _enter_submitting(self) -> None:
        self._status = SubmissionStatus.SUBMITTING

    def _end_session(self) -> None:
        end = getattr(self.encounter_session, "end", None)
        if callable(end):
            end()

    def can_submit(self) -> bool:
        """True when IDLE and every structural prerequisite is present."""
        if self._status is not SubmissionStatus.IDLE:
            return False
        return self.stores.encounter_details.to_context().is_complete()

    async def submit(self) -> Optional[SubmissionResult]:
        """
        Run one submission.

        Returns:
            SubmissionResult with outcome "success", "failure" or "invalid";
            None when the call was a no-op (not IDLE, or structurally
            incomplete encounter context).

        Raises:
            Never for submission failures; they are reported in the result.
        """
        if self._status is not SubmissionStatus.IDLE:
            logger.debug("orchestrator: submit ignored, status is %s", self._status.value)
            return None

        session = self.encounter_session() or {}
        context = self.stores.encounter_details.to_context(session.get("identifier"))
        missing = context.missing_fields()
        if missing:
            logger.debug("orchestrator: submit ignored, missing %s", missing)
            return None

        self._status = SubmissionStatus.VALIDATING
        try:
            final = await self._graph.ainvoke(create_initial_state(context))
        finally:
            self._status = SubmissionStatus.IDLE

        return SubmissionResult(
            outcome=final.get("outcome") or "failure",
            resource_ids=final.get("resource_ids") or [],
            error=final.get("error"),
            bundle=final.get("bundle"),
        )

    def cancel(self) -> bool:
        """
        Discard every clinical selection and end the encounter session.

        Rejected while a submission is in flight so the reset can never race
        the outcome of that submission.

        Returns:
            bool: True when the consultation was cancelled.
        """
        if self._status is not SubmissionStatus.IDLE:
            logger.warning("orchestrator: cancel rejected while %s", self._status.value)
            return False
        self.stores.reset_categories()
        self._end_session()
        logger.info("orchestrator: consultation cancelled")
        return True


@asynccontextmanager
async def build_consultation_pad(
    client: Optional[FhirClient] = None,
    notifier: Notifier = log_notification,
) -> AsyncIterator[ConsultationOrchestrator]:
    """
    Wire a consultation pad against the configured FHIR server.

    Loads ``.env``, connects the client, and on exit waits for pending audit
    events before closing the client.

    Example::

        async with build_consultation_pad() as pad:
            details = pad.stores.encounter_details
            ...
            await pad.encounter_session.refresh(details.patient_uuid, details.practitioner.uuid)
            result = await pad.submit()
    """
    load_dotenv()
    client = client or FhirClient()
    async with client:
        session = EncounterSession(client)
        audit = AuditDispatcher(client)
        pad = ConsultationOrchestrator(
            stores=ConsultationStores(),
            transport=client.post_consultation_bundle,
            encounter_session=session,
            notifier=notifier,
            audit=audit,
        )
        try:
            yield pad
        finally:
            await audit.drain()
