"""
fhir_client.py
--------------
ConsultPad — Clinical Consultation Composer — FHIR R4 / REST client
-------------------------------------------------------------------
Async client for the hospital information system's FHIR R4 and REST v1
endpoints.  It is the submission transport of the consultation workflow and
the data source of the encounter-session lookup and the audit log.

Endpoints (paths relative to ``FHIR_BASE_URL``):
  - POST <FHIR_R4_PATH>/ConsultationBundle      consultation transaction bundle
  - GET  <FHIR_R4_PATH>/Encounter?…             encounter / visit search
  - GET  <REST_V1_PATH>/systemsetting/<name>    global property value
  - POST <REST_V1_PATH>/auditlog                audit event

Authentication is HTTP Basic with the configured service credential.

Usage (async context manager — preferred):
    async with FhirClient() as client:
        ack = await client.post_consultation_bundle(bundle)

Usage (manual lifecycle):
    client = FhirClient()
    await client.connect()
    encounters = await client.search_encounters(patient="…")
    await client.close()

Author: Shreelakshmi Gopinatha Rao
Project: ConsultPad — Clinical Consultation Composer
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Optional

import httpx

from clinical_constants import FHIR_R4_PATH, REST_V1_PATH

logger = logging.getLogger(__name__)


class FhirAPIError(Exception):
    """Raised when a request returns a non-2xx response or cannot be sent."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"FHIR API error {status_code}: {body}")

    @property
    def message(self) -> str:
        """
        Human-readable failure reason.

        Prefers the ``diagnostics`` (or ``details.text``) of the first issue
        when the body is a FHIR OperationOutcome; otherwise the raw body.
        """
        try:
            outcome = json.loads(self.body)
        except (TypeError, ValueError):
            return self.body
        if isinstance(outcome, dict) and outcome.get("resourceType") == "OperationOutcome":
            for issue in outcome.get("issue") or []:
                text = issue.get("diagnostics") or (issue.get("details") or {}).get("text")
                if text:
                    return text
        if isinstance(outcome, dict):
            error = outcome.get("error")
            if isinstance(error, dict) and error.get("message"):
                return error["message"]
        return self.body


class FhirConnectionError(FhirAPIError):
    """Raised when the request never produced an HTTP response (status 0)."""

    def __init__(self, detail: str) -> None:
        super().__init__(0, detail)


class FhirClient:
    """
    Async FHIR R4 client authenticated with HTTP Basic credentials.

    Args:
        base_url:  Server origin.  Defaults to ``FHIR_BASE_URL`` env var, then
                   ``http://localhost:8080``.
        username:  Service account.  Defaults to ``FHIR_USERNAME`` / ``admin``.
        password:  Service password. Defaults to ``FHIR_PASSWORD`` / ``Admin123``.
        timeout:   HTTP timeout in seconds. Defaults to ``FHIR_TIMEOUT_S`` / 30.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (
            base_url
            or os.getenv("FHIR_BASE_URL", "http://localhost:8080")
        ).rstrip("/")
        self.username = username or os.getenv("FHIR_USERNAME", "admin")
        self.password = password or os.getenv("FHIR_PASSWORD", "Admin123")
        self.timeout = timeout if timeout is not None else float(os.getenv("FHIR_TIMEOUT_S", "30"))
        self._transport = transport

        # Initialised in connect / __aenter__
        self._http: Optional[httpx.AsyncClient] = None

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the underlying HTTP connection pool."""
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self.base_url,
                auth=(self.username, self.password),
                timeout=self.timeout,
                transport=self._transport,
            )
            logger.debug("FhirClient: HTTP transport initialised for %s.", self.base_url)

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None
            logger.debug("FhirClient: HTTP transport closed.")

    async def __aenter__(self) -> "FhirClient":
        await self.connect()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()

    # ── Internal request helper ──────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        """
        Execute one request and return the parsed JSON body.

        Args:
            method: HTTP method (``"GET"``, ``"POST"``, …).
            path:   Absolute path on the server (e.g. ``"/openmrs/ws/fhir2/R4/Encounter"``).
            params: URL query parameters.
            json:   Request body (serialised as JSON).

        Returns:
            Parsed JSON response body, or ``{}`` for an empty body.

        Raises:
            RuntimeError:        if ``connect()`` / ``__aenter__`` was not called.
            FhirConnectionError: if the request could not be sent.
            FhirAPIError:        if the server returns a non-2xx status code
                                 or a body that is not JSON.
        """
        if self._http is None:
            raise RuntimeError(
                "FhirClient is not connected. "
                "Use 'async with FhirClient() as client:' or call connect() first."
            )

        try:
            resp = await self._http.request(method, path, params=params, json=json)
        except httpx.HTTPError as exc:
            raise FhirConnectionError(str(exc)) from exc

        if resp.status_code not in range(200, 300):
            raise FhirAPIError(resp.status_code, resp.text)

        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            logger.warning(
                "FhirClient: %s %s returned a non-JSON body (HTTP %s).",
                method, path, resp.status_code,
            )
            raise FhirAPIError(resp.status_code, resp.text) from exc

    # ── Consultation bundle ──────────────────────────────────────────────────

    async def post_consultation_bundle(self, bundle: dict[str, Any]) -> dict[str, Any]:
        """
        Submit a consultation transaction bundle in a single round trip.

        Returns:
            The acknowledged (transaction-response) bundle from the server.

        Raises:
            ValueError:   if *bundle* is not a transaction Bundle.
            FhirAPIError: on any transport or server failure; nothing is
                          retried here.
        """
        if bundle.get("resourceType") != "Bundle" or bundle.get("type") != "transaction":
            raise ValueError("post_consultation_bundle expects a transaction Bundle.")

        logger.info(
            "FhirClient: POST ConsultationBundle with %d entries.",
            len(bundle.get("entry", [])),
        )
        return await self._request("POST", f"{FHIR_R4_PATH}/ConsultationBundle", json=bundle)

    # ── Encounters & visits ──────────────────────────────────────────────────

    async def search_encounters(self, **search_params: Optional[str]) -> list[dict[str, Any]]:
        """
        Search Encounter resources and return the matched resources.

        Parameters whose value is empty or None are dropped before the call.

        Example::

            encounters = await client.search_encounters(
                patient="abc", _tag="encounter", type="…",
            )
        """
        params = {k: v for k, v in search_params.items() if v}
        logger.debug("FhirClient: GET /Encounter params=%s", params or "<all>")
        bundle = await self._request("GET", f"{FHIR_R4_PATH}/Encounter", params=params)
        return [e["resource"] for e in bundle.get("entry") or [] if "resource" in e]

    async def get_active_visit(self, patient_uuid: str) -> Optional[dict[str, Any]]:
        """
        Return the patient's open visit (a visit Encounter without period.end).

        Returns:
            The visit Encounter resource, or None when no visit is open.
        """
        visits = await self.search_encounters(**{
            "subject:Patient": patient_uuid,
            "_tag":            "visit",
        })
        for visit in visits:
            if not (visit.get("period") or {}).get("end"):
                return visit
        return None

    # ── REST v1 ──────────────────────────────────────────────────────────────

    async def get_global_property(self, name: str) -> Optional[str]:
        """Return the value of system setting *name*, or None when unset."""
        body = await self._request("GET", f"{REST_V1_PATH}/systemsetting/{name}")
        return body.get("value")

    async def post_audit_log(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST one audit event to the audit log endpoint."""
        return await self._request("POST", f"{REST_V1_PATH}/auditlog", json=payload)
