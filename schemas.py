"""
schemas.py
----------
ConsultPad — Clinical Consultation Composer — Pydantic Data Contracts
---------------------------------------------------------------------
Pydantic v2 models that act as the data contract between the category
stores (what the clinician selected) and the FHIR mapping layer (what is
submitted).

Validation policy
-----------------
The models are permissive for in-progress selections: a
selection may be missing its certainty, severity, dose or duration while the
clinician is still editing it.  Business validation is performed by each
store's own validator (see stores.py), which writes per-field error keys onto
the entry instead of raising.  The models only enforce shape:

  1. identifiers are stripped strings; an empty identifier is allowed on the
     model but is filtered out by the mappers.

  2. duration values are non-negative numbers or None.

  3. EncounterContext is the single gate for structural completeness;
     ``missing_fields()`` lists what prevents a submission from starting.

Public API
----------
    Concept, Coding, Provider          Reference data picked from dropdowns.
    Frequency, DurationUnitOption      Medication configuration options.
    DiagnosisEntry, ConditionEntry,
    AllergyEntry, ServiceRequestEntry,
    MedicationEntry                    One per clinical fact category.
    EncounterContext                   Shared parent record of one consultation.
    SubmissionResult                   Terminal outcome of one submit attempt.
    duration_unit_option()             Build a DurationUnitOption from a UCUM code.

Author: Shreelakshmi Gopinatha Rao
Project: ConsultPad — Clinical Consultation Composer
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clinical_constants import MEDICATION_DURATION_UNITS

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------

class Concept(BaseModel):
    """A coded concept as returned by the terminology search (uuid + name)."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    uuid: str
    name: str = ""


class Coding(BaseModel):
    """A FHIR-style coding picked from a dropdown (certainty, severity, reaction)."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    code:    Optional[str] = None
    display: str           = ""
    system:  Optional[str] = None


class Provider(BaseModel):
    """A practitioner taking part in the encounter."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    uuid: str
    name: str = ""


class Frequency(BaseModel):
    """Medication frequency option; ``frequency_per_day`` may be unknown."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    uuid:              str
    name:              str             = ""
    frequency_per_day: Optional[float] = None


class DurationUnitOption(BaseModel):
    """Medication duration unit with the multiplier that converts it to days."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    code:            str
    display:         str   = ""
    days_multiplier: float = 1


def duration_unit_option(code: str) -> DurationUnitOption:
    """
    Return the DurationUnitOption for a UCUM duration *code* (``"d"``, ``"wk"`` …).

    Raises:
        KeyError: if *code* is not a known medication duration unit.
    """
    unit = MEDICATION_DURATION_UNITS[code]
    return DurationUnitOption(
        code=code,
        display=unit["display"],
        days_multiplier=unit["days_multiplier"],
    )


# ---------------------------------------------------------------------------
# Clinical fact selections
# ---------------------------------------------------------------------------

class _FactEntry(BaseModel):
    """Fields shared by every selection: identity plus validation bookkeeping."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=False,   # stores update entries in place
        extra="ignore",
    )

    id:                 str
    display:            str            = ""
    errors:             Dict[str, str] = Field(default_factory=dict)
    has_been_validated: bool           = False


class DiagnosisEntry(_FactEntry):
    """One selected diagnosis; certainty is ``provisional`` or ``confirmed``."""

    selected_certainty: Optional[Coding] = None


class ConditionEntry(_FactEntry):
    """
    One chronic/ongoing condition.

    ``duration_value`` + ``duration_unit`` (``days`` | ``months`` | ``years``)
    describe how long ago the condition started; the onset date is derived
    from them at mapping time.
    """

    duration_value: Optional[int] = None
    duration_unit:  Optional[str] = None

    @field_validator("duration_value", mode="before")
    @classmethod
    def non_negative_duration(cls, v: Any) -> Optional[int]:
        if v is None:
            return None
        n = int(v)
        if n < 0:
            raise ValueError("duration_value must not be negative.")
        return n


class AllergyEntry(_FactEntry):
    """One selected allergen with severity and reactions (validated before mapping)."""

    type:               str           = "medication"
    selected_severity:  Optional[Coding] = None
    selected_reactions: List[Coding]  = Field(default_factory=list)
    note:               Optional[str] = None


class ServiceRequestEntry(BaseModel):
    """One investigation order; priority defaults to ``routine`` at mapping time."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    id:                str
    display:           str           = ""
    selected_priority: Optional[str] = None


class MedicationEntry(_FactEntry):
    """
    One medication order as edited in the prescription form.

    ``dispense_quantity`` is computed upstream with the Total Quantity Rule
    (medication_calculator.calculate_total_quantity) and is carried into the
    MedicationRequest unmodified.
    """

    medication:        Dict[str, Any]               = Field(default_factory=dict)
    dosage:            float                        = 0
    dosage_unit:       Optional[Concept]            = None
    frequency:         Optional[Frequency]          = None
    route:             Optional[Concept]            = None
    duration:          float                        = 0
    duration_unit:     Optional[DurationUnitOption] = None
    is_stat:           bool                         = False
    is_prn:            bool                         = False
    start_date:        datetime                     = Field(default_factory=_utc_now)
    instruction:       Optional[Concept]            = None
    dispense_quantity: float                        = 0
    dispense_unit:     Optional[Concept]            = None


# ---------------------------------------------------------------------------
# Encounter context
# ---------------------------------------------------------------------------

class EncounterContext(BaseModel):
    """
    The shared parent record for one consultation.

    ``encounter_id`` is None when the encounter is created by this submission
    and set when an encounter already exists in the current session (the
    submission then amends it).
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    encounter_id:      Optional[str]     = None
    patient_uuid:      Optional[str]     = None
    practitioner_uuid: Optional[str]     = None
    visit_uuid:        Optional[str]     = None
    location_uuid:     Optional[str]     = None
    encounter_type:    Optional[Concept] = None
    participant_uuids: List[str]         = Field(default_factory=list)
    consultation_date: datetime          = Field(default_factory=_utc_now)

    @property
    def is_new(self) -> bool:
        return not self.encounter_id

    @property
    def patient_reference(self) -> Dict[str, str]:
        return {"reference": f"Patient/{self.patient_uuid}"}

    def missing_fields(self) -> List[str]:
        """Return the names of structural prerequisites that are absent."""
        missing: List[str] = []
        if not self.patient_uuid:
            missing.append("patient_uuid")
        if not self.practitioner_uuid:
            missing.append("practitioner_uuid")
        if not self.visit_uuid:
            missing.append("visit_uuid")
        if not self.location_uuid:
            missing.append("location_uuid")
        if self.encounter_type is None or not self.encounter_type.uuid:
            missing.append("encounter_type")
        if not self.participant_uuids:
            missing.append("participant_uuids")
        return missing

    def is_complete(self) -> bool:
        return not self.missing_fields()


# ---------------------------------------------------------------------------
# Submission outcome
# ---------------------------------------------------------------------------

class SubmissionResult(BaseModel):
    """
    Terminal outcome of one submit attempt.

    Attributes:
        outcome:      ``"success"`` | ``"failure"`` | ``"invalid"``.
        resource_ids: Server-assigned identifiers (success only), e.g.
                      ``"Encounter/abc"``.
        error:        Failure reason surfaced to the user (failure only).
        bundle:       The transaction bundle that was sent, if one was built.
    """

    model_config = ConfigDict(frozen=True)

    outcome:      str
    resource_ids: List[str]                = Field(default_factory=list)
    error:        Optional[str]            = None
    bundle:       Optional[Dict[str, Any]] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == "success"
