"""
clinical_constants.py
---------------------
ConsultPad — Clinical Consultation Composer — Shared clinical constants
-----------------------------------------------------------------------
Code systems, unit tables, validation message keys, notification keys and
the audit event registry shared by the stores, the FHIR mappers and the
submission workflow. Message keys are translation keys; translation itself
happens in the UI layer and is never done here.

Key constants:
    CONDITION_DURATION_UNITS: condition duration unit → day multiplier.
    MEDICATION_DURATION_UNITS: UCUM duration code → DurationUnitOption data.
    IMMEDIATE_FREQUENCY_UUID: frequency uuid that short-circuits total quantity.
    CATEGORY_ORDER: fixed order of fact categories inside a consultation bundle.
    AUDIT_LOG_EVENT_DETAILS: audit event type → message key + module.

Author: Shreelakshmi Gopinatha Rao
Project: ConsultPad — Clinical Consultation Composer
"""

import os

# ── FHIR server paths ─────────────────────────────────────────────────────────

FHIR_R4_PATH = os.getenv("FHIR_R4_PATH", "/openmrs/ws/fhir2/R4").rstrip("/")
REST_V1_PATH = os.getenv("REST_V1_PATH", "/openmrs/ws/rest/v1").rstrip("/")

CONSULTATION_ENCOUNTER_TYPE_UUID = os.getenv(
    "CONSULTATION_ENCOUNTER_TYPE_UUID",
    "d34fe3ab-5e07-11ef-8f7c-0242ac120002",
)

ENCOUNTER_SESSION_DURATION_PROPERTY = "bahmni.encountersession.duration"
DEFAULT_SESSION_DURATION_MIN = 60
FALLBACK_SESSION_DURATION_MIN = 30

# ── Code systems ──────────────────────────────────────────────────────────────

CONDITION_CATEGORY_SYSTEM = "http://terminology.hl7.org/CodeSystem/condition-category"
CONDITION_CLINICAL_SYSTEM = "http://terminology.hl7.org/CodeSystem/condition-clinical"
CONDITION_VERIFICATION_SYSTEM = "http://terminology.hl7.org/CodeSystem/condition-ver-status"
ALLERGY_CLINICAL_SYSTEM = "http://terminology.hl7.org/CodeSystem/allergyintolerance-clinical"
ENCOUNTER_CLASS_SYSTEM = "http://terminology.hl7.org/CodeSystem/v3-ActCode"
UCUM_SYSTEM = "http://unitsofmeasure.org"

# ── Diagnoses & conditions ────────────────────────────────────────────────────

CERTAINTY_CODES = ("provisional", "confirmed")

CONDITION_DURATION_UNITS = {
    "days":   1,
    "months": 30,
    "years":  365,
}

# ── Investigation orders ──────────────────────────────────────────────────────

PRIORITY_ROUTINE = "routine"
PRIORITY_STAT = "stat"
SERVICE_REQUEST_PRIORITIES = (PRIORITY_ROUTINE, PRIORITY_STAT)

# ── Medications ───────────────────────────────────────────────────────────────

IMMEDIATE_FREQUENCY_UUID = "0"

MEDICATION_DURATION_UNITS = {
    "s":   {"display": "Second(s)", "days_multiplier": 1 / 86400},
    "min": {"display": "Minute(s)", "days_multiplier": 1 / 1440},
    "h":   {"display": "Hour(s)",   "days_multiplier": 1 / 24},
    "d":   {"display": "Day(s)",    "days_multiplier": 1},
    "wk":  {"display": "Week(s)",   "days_multiplier": 7},
    "mo":  {"display": "Month(s)",  "days_multiplier": 30},
    "a":   {"display": "Year(s)",   "days_multiplier": 365},
}

# ── Bundle layout ─────────────────────────────────────────────────────────────

CATEGORY_ORDER = (
    "diagnoses",
    "allergies",
    "conditions",
    "investigation_orders",
    "medications",
)

# ── Validation error keys ─────────────────────────────────────────────────────

DROPDOWN_VALUE_REQUIRED = "DROPDOWN_VALUE_REQUIRED"
CONDITIONS_DURATION_VALUE_REQUIRED = "CONDITIONS_DURATION_VALUE_REQUIRED"
CONDITIONS_DURATION_UNIT_REQUIRED = "CONDITIONS_DURATION_UNIT_REQUIRED"
MEDICATION_DOSAGE_REQUIRED = "MEDICATION_DOSAGE_REQUIRED"
MEDICATION_DURATION_REQUIRED = "MEDICATION_DURATION_REQUIRED"

# ── Notification keys ─────────────────────────────────────────────────────────

CONSULTATION_SUBMITTED_SUCCESS_TITLE = "CONSULTATION_SUBMITTED_SUCCESS_TITLE"
CONSULTATION_SUBMITTED_SUCCESS_MESSAGE = "CONSULTATION_SUBMITTED_SUCCESS_MESSAGE"
CONSULTATION_ERROR_TITLE = "ERROR_CONSULTATION_TITLE"
CONSULTATION_ERROR_GENERIC = "CONSULTATION_ERROR_GENERIC"

NOTIFICATION_SUCCESS = "success"
NOTIFICATION_ERROR = "error"

# ── Audit log ─────────────────────────────────────────────────────────────────

MODULE_CLINICAL = "MODULE_LABEL_CLINICAL_KEY"

AUDIT_LOG_EVENT_DETAILS = {
    "VIEWED_CLINICAL_DASHBOARD": {
        "eventType": "VIEWED_CLINICAL_DASHBOARD",
        "message":   "VIEWED_CLINICAL_DASHBOARD_MESSAGE",
        "module":    MODULE_CLINICAL,
    },
    "EDIT_ENCOUNTER": {
        "eventType": "EDIT_ENCOUNTER",
        "message":   "EDIT_ENCOUNTER_MESSAGE",
        "module":    MODULE_CLINICAL,
    },
}

EDIT_ENCOUNTER = "EDIT_ENCOUNTER"
AUDIT_LOG_ENABLED_PROPERTY = "bahmni.enableAuditLog"
