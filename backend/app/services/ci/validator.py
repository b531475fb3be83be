"""
Emissions Input Validator

Checks proposed report fields before they reach the calculation engine.
Nothing is coerced or clamped: bad input is rejected with every problem listed.
"""
import logging
import math
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from dateutil.parser import isoparse

from app.models.ci_report import (
    DERIVED_FIELDS,
    EDITABLE_FIELDS,
    EMISSION_FIELDS,
    WORKFLOW_FIELDS,
)
from app.models.db_models import DataQualityLevel, Methodology
from .constants import MAX_EMISSION_VALUE, PLAUSIBLE_TOTAL_CEILING
from .errors import ValidationError

logger = logging.getLogger(__name__)

MIN_REFERENCE_YEAR = 1990
MAX_REFERENCE_YEAR = 2100


def parse_methodology(value: Any) -> Methodology:
    """Map a string (or enum) onto the closed Methodology enumeration."""
    if isinstance(value, Methodology):
        return value
    try:
        return Methodology(value)
    except ValueError:
        allowed = ", ".join(m.value for m in Methodology)
        raise ValidationError(f"Unknown methodology '{value}'. Expected one of: {allowed}")


def parse_data_quality(value: Any) -> DataQualityLevel:
    """Map a string (or enum) onto the closed DataQualityLevel enumeration."""
    if isinstance(value, DataQualityLevel):
        return value
    try:
        return DataQualityLevel(value)
    except ValueError:
        allowed = ", ".join(q.value for q in DataQualityLevel)
        raise ValidationError(f"Unknown data quality level '{value}'. Expected one of: {allowed}")


def _emission_error(name: str, value: Any) -> Optional[str]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return f"{name} must be a number"
    try:
        if not math.isfinite(value):
            return f"{name} must be finite"
    except OverflowError:
        return f"{name} is too large"
    if value < 0:
        return f"{name} cannot be negative"
    if value > MAX_EMISSION_VALUE:
        return f"{name} cannot exceed {MAX_EMISSION_VALUE:g} gCO2e/MJ"
    return None


def validate_emissions(values: Mapping[str, Any], allow_none: bool = True) -> Dict[str, Optional[float]]:
    """
    Validate a (possibly partial) mapping of emission categories.

    Returns the values as floats. None is kept when allow_none, meaning
    "not provided".
    """
    errors: List[str] = []
    cleaned: Dict[str, Optional[float]] = {}

    for name, value in values.items():
        if name not in EMISSION_FIELDS:
            errors.append(f"Unknown emission category '{name}'")
            continue
        if value is None and allow_none:
            cleaned[name] = None
            continue
        problem = _emission_error(name, value)
        if problem:
            errors.append(problem)
        else:
            cleaned[name] = float(value)

    if errors:
        raise ValidationError("Invalid emission values", errors)
    return cleaned


def plausibility_warnings(values: Mapping[str, Optional[float]]) -> List[str]:
    """Soft checks that never block a save."""
    total = math.fsum(v for v in values.values() if v)
    if total > PLAUSIBLE_TOTAL_CEILING:
        message = (
            f"Total emissions of {total:.2f} gCO2e/MJ seem unusually high. "
            "Please verify input values."
        )
        logger.warning(message)
        return [message]
    return []


def _parse_date(name: str, value: Any, errors: List[str]) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        # Accepts plain dates and full ISO timestamps
        try:
            return isoparse(value).date()
        except ValueError:
            pass
    errors.append(f"{name} must be an ISO date (YYYY-MM-DD)")
    return None


def check_reporting_period(start: Optional[date], end: Optional[date]) -> None:
    if start is not None and end is not None and not start < end:
        raise ValidationError("reporting_period_start must be before reporting_period_end")


def validate_update(payload: Mapping[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """
    Validate the fields of a draft create/update request.

    Returns (cleaned_changes, warnings). Emission categories are returned
    under the same top-level keys as the payload.
    """
    if not payload:
        raise ValidationError("No valid fields to update")

    errors: List[str] = []
    cleaned: Dict[str, Any] = {}

    for name in payload:
        if name in DERIVED_FIELDS:
            errors.append(f"{name} is computed by the engine and cannot be set directly")
        elif name in WORKFLOW_FIELDS:
            errors.append(f"{name} is managed by the report workflow and cannot be set directly")
        elif name not in EDITABLE_FIELDS:
            errors.append(f"Unknown field '{name}'")

    emission_input = {k: v for k, v in payload.items() if k in EMISSION_FIELDS}
    if emission_input:
        try:
            cleaned.update(validate_emissions(emission_input))
        except ValidationError as e:
            errors.extend(e.errors)

    if "methodology" in payload:
        if payload["methodology"] is None:
            cleaned["methodology"] = None
        else:
            try:
                cleaned["methodology"] = parse_methodology(payload["methodology"])
            except ValidationError as e:
                errors.extend(e.errors)

    if "data_quality_level" in payload:
        try:
            cleaned["data_quality_level"] = parse_data_quality(payload["data_quality_level"])
        except ValidationError as e:
            errors.extend(e.errors)

    for name in ("reporting_period_start", "reporting_period_end"):
        if name in payload:
            cleaned[name] = _parse_date(name, payload[name], errors)

    if "reference_year" in payload:
        year = payload["reference_year"]
        if year is None:
            cleaned["reference_year"] = None
        elif isinstance(year, bool) or not isinstance(year, int):
            errors.append("reference_year must be an integer")
        elif not MIN_REFERENCE_YEAR <= year <= MAX_REFERENCE_YEAR:
            errors.append(f"reference_year must be between {MIN_REFERENCE_YEAR} and {MAX_REFERENCE_YEAR}")
        else:
            cleaned["reference_year"] = year

    if "is_new_installation" in payload:
        if not isinstance(payload["is_new_installation"], bool):
            errors.append("is_new_installation must be true or false")
        else:
            cleaned["is_new_installation"] = payload["is_new_installation"]

    for name in ("methodology_version", "calculation_notes"):
        if name in payload:
            value = payload[name]
            if value is not None and not isinstance(value, str):
                errors.append(f"{name} must be text")
            else:
                cleaned[name] = value

    if "supporting_documents" in payload:
        documents = payload["supporting_documents"]
        if documents is None:
            cleaned["supporting_documents"] = []
        elif not isinstance(documents, list) or not all(
            isinstance(d, str) and d.strip() for d in documents
        ):
            errors.append("supporting_documents must be a list of non-empty document references")
        else:
            cleaned["supporting_documents"] = list(documents)

    if errors:
        raise ValidationError("Invalid report fields", errors)

    warnings = plausibility_warnings({k: v for k, v in cleaned.items() if k in EMISSION_FIELDS})
    return cleaned, warnings
