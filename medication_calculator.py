"""
medication_calculator.py
------------------------
ConsultPad — Clinical Consultation Composer — Medication value calculator
-------------------------------------------------------------------------
Pure helpers used by the prescription form before a MedicationEntry reaches
the FHIR mapper.  The dispense quantity stored on each entry is produced here
(the Total Quantity Rule) and is never recomputed downstream.

Key functions:
    calculate_total_quantity: dose × doses/day × duration in days, rounded up.
    is_immediate_frequency:   True for the "Immediately" frequency option.
    get_default_route:        Route concept implied by the drug's form.
    get_default_dosing_unit:  Dose-unit concept implied by the drug's form.

Author: Shreelakshmi Gopinatha Rao
Project: ConsultPad — Clinical Consultation Composer
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional

from clinical_constants import IMMEDIATE_FREQUENCY_UUID
from schemas import Concept, DurationUnitOption, Frequency

logger = logging.getLogger(__name__)


def is_immediate_frequency(frequency: Optional[Frequency]) -> bool:
    """Return True only for the frequency whose uuid is exactly ``"0"``."""
    return frequency is not None and frequency.uuid == IMMEDIATE_FREQUENCY_UUID


def calculate_total_quantity(
    dosage: float,
    frequency: Optional[Frequency],
    duration: float,
    duration_unit: Optional[DurationUnitOption],
) -> float:
    """
    Apply the Total Quantity Rule to one medication line.

    ``ceil(dosage × frequency_per_day × duration × days_multiplier)``.  An
    immediate frequency short-circuits to the raw dose, and a positive result
    smaller than one dose is raised to one dose.

    Args:
        dosage:        Amount per administration.
        frequency:     Selected frequency option, or None.
        duration:      Duration value in *duration_unit*.
        duration_unit: Selected duration unit option, or None.

    Returns:
        float | int: Total quantity to dispense; 0 when any input makes the
        calculation meaningless (non-positive dose or duration, missing or
        zero frequency, missing unit).

    Raises:
        Never.
    """
    if is_immediate_frequency(frequency):
        return dosage

    if dosage <= 0 or duration <= 0:
        return 0
    if frequency is None or not frequency.frequency_per_day:
        return 0
    if duration_unit is None:
        return 0

    total = math.ceil(
        dosage * frequency.frequency_per_day * duration * duration_unit.days_multiplier
    )
    if 0 < total < dosage:
        return dosage
    return total


# ── Drug-form defaults ───────────────────────────────────────────────────────

def _drug_form_default(
    medication: Dict[str, Any],
    drug_form_defaults: Dict[str, Dict[str, Any]],
) -> Optional[Dict[str, Any]]:
    form_text = ((medication or {}).get("form") or {}).get("text")
    if not form_text:
        return None
    return drug_form_defaults.get(form_text)


def _find_concept(name: Optional[str], concepts: List[Concept]) -> Optional[Concept]:
    if not name:
        return None
    return next((c for c in concepts if c.name == name), None)


def get_default_route(
    medication: Dict[str, Any],
    drug_form_defaults: Dict[str, Dict[str, Any]],
    routes: List[Concept],
) -> Optional[Concept]:
    """
    Return the route concept configured for the medication's dosage form.

    Returns None when the medication carries no form text, the form has no
    configured default, or the configured route name is not in *routes*.
    """
    default = _drug_form_default(medication, drug_form_defaults)
    if default is None:
        return None
    route = _find_concept(default.get("route"), routes)
    if route is None:
        logger.debug(
            "medication_calculator: no route concept for form default %s", default
        )
    return route


def get_default_dosing_unit(
    medication: Dict[str, Any],
    drug_form_defaults: Dict[str, Dict[str, Any]],
    dose_units: List[Concept],
) -> Optional[Concept]:
    """Return the dose-unit concept configured for the medication's form, or None."""
    default = _drug_form_default(medication, drug_form_defaults)
    if default is None:
        return None
    return _find_concept(default.get("doseUnits"), dose_units)
