"""
Carbon Intensity Calculation Engine

Pure function from (emissions, methodology, data quality) to the derived
report values. No hidden state, no I/O, no randomness: the same inputs
always give the same result, so auditors can reproduce any figure.
"""

import math
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from app.models.ci_report import EMISSION_FIELDS, SCOPE1_FIELDS, SCOPE2_FIELDS, SCOPE3_FIELDS
from app.models.db_models import DataQualityLevel, FeedstockCategory, Methodology
from .constants import (
    DATA_QUALITY_BAND,
    DEFAULT_EMISSION_FACTORS,
    DEFAULT_FACTOR_MARKUP,
    FAILING_GRADE,
    MethodologyProfile,
    resolve_profiles,
)
from .errors import ComputationError, ValidationError
from .validator import parse_data_quality, parse_methodology, validate_emissions


@dataclass(frozen=True)
class CICalculationResult:
    """Derived values for one report. Field names match the report columns."""
    methodology: Methodology
    data_quality_level: DataQualityLevel
    scope1_total: float
    scope2_total: float
    scope3_total: float
    total_ci_value: float
    ci_score: float
    ci_unit: str
    uncertainty_range_low: float
    uncertainty_range_high: float
    ci_rating: str
    ghg_savings_percentage: float
    compliance_threshold: float
    meets_compliance_threshold: bool

    def is_lower_than(self, other: "CICalculationResult") -> bool:
        """Compare scores. Only meaningful within one methodology."""
        if self.methodology != other.methodology:
            raise ValidationError(
                f"Cannot compare a {self.methodology.value} score with a {other.methodology.value} score"
            )
        return self.ci_score < other.ci_score


# =============================================================================
# BUILDING BLOCKS
# =============================================================================

def scope_totals(values: Mapping[str, float]) -> Dict[str, float]:
    return {
        "scope1_total": math.fsum(values[f] for f in SCOPE1_FIELDS),
        "scope2_total": math.fsum(values[f] for f in SCOPE2_FIELDS),
        "scope3_total": math.fsum(values[f] for f in SCOPE3_FIELDS),
    }


def uncertainty_half_width(data_quality: DataQualityLevel, profile: MethodologyProfile) -> float:
    """Relative half-width combining provenance and methodology terms in quadrature."""
    return math.sqrt(DATA_QUALITY_BAND[data_quality] ** 2 + profile.uncertainty_band ** 2)


def ghg_savings(ci_score: float, profile: MethodologyProfile) -> float:
    """Savings against the fossil comparator, in percent. Unbounded below; negative is reportable."""
    baseline = profile.fossil_comparator
    return (baseline - ci_score) / baseline * 100


def ci_rating(ci_score: float, profile: MethodologyProfile) -> str:
    """Letter grade, lower score is better."""
    for grade, upper_bound in profile.rating_thresholds:
        if ci_score < upper_bound:
            return grade
    return FAILING_GRADE


# =============================================================================
# MAIN CALCULATION
# =============================================================================

def calculate(
    emissions: Mapping[str, Optional[float]],
    methodology,
    data_quality,
    *,
    profiles: Optional[Mapping[Methodology, MethodologyProfile]] = None,
    is_new_installation: bool = False,
) -> CICalculationResult:
    """
    Compute every derived value for a set of emission inputs.

    Missing categories (or None) count as zero. Negative or non-numeric
    values, unknown methodologies and unknown data quality levels raise
    ValidationError.
    """
    methodology = parse_methodology(methodology)
    data_quality = parse_data_quality(data_quality)
    checked = validate_emissions(emissions)

    table = resolve_profiles(profiles)
    profile = table.get(methodology)
    if profile is None:
        raise ValidationError(f"No calculation profile configured for {methodology.value}")

    values = {name: checked.get(name) or 0.0 for name in EMISSION_FIELDS}
    totals = scope_totals(values)
    total = math.fsum(values.values())

    score = total * profile.unit_factor
    half_width = uncertainty_half_width(data_quality, profile)
    low = score * (1 - half_width)
    high = score * (1 + half_width)
    savings = ghg_savings(score, profile)
    threshold = profile.threshold_for(is_new_installation)

    result = CICalculationResult(
        methodology=methodology,
        data_quality_level=data_quality,
        scope1_total=totals["scope1_total"],
        scope2_total=totals["scope2_total"],
        scope3_total=totals["scope3_total"],
        total_ci_value=total,
        ci_score=score,
        ci_unit=profile.unit,
        uncertainty_range_low=low,
        uncertainty_range_high=high,
        ci_rating=ci_rating(score, profile),
        ghg_savings_percentage=savings,
        compliance_threshold=threshold,
        meets_compliance_threshold=savings >= threshold,
    )
    _check_postconditions(result)
    return result


def _check_postconditions(result: CICalculationResult) -> None:
    numbers = (
        result.total_ci_value,
        result.ci_score,
        result.uncertainty_range_low,
        result.uncertainty_range_high,
        result.ghg_savings_percentage,
    )
    if not all(math.isfinite(n) for n in numbers):
        raise ComputationError(f"Non-finite value in calculation result: {result}")
    if result.total_ci_value < 0:
        raise ComputationError(f"Negative total from non-negative inputs: {result.total_ci_value}")
    if not result.uncertainty_range_low <= result.ci_score <= result.uncertainty_range_high:
        raise ComputationError(
            f"Uncertainty band [{result.uncertainty_range_low}, {result.uncertainty_range_high}] "
            f"does not contain score {result.ci_score}"
        )


# =============================================================================
# DEFAULT VALUES
# =============================================================================

def default_emissions(category, data_quality=DataQualityLevel.DEFAULT_VALUE) -> Dict[str, float]:
    """
    Conservative default factors for a feedstock category.

    Unknown categories fall back to OTHER.
    """
    data_quality = parse_data_quality(data_quality)
    try:
        category = FeedstockCategory(category)
    except ValueError:
        category = FeedstockCategory.OTHER
    markup = DEFAULT_FACTOR_MARKUP[data_quality]
    return {name: value * markup for name, value in DEFAULT_EMISSION_FACTORS[category].items()}


def fill_missing_with_defaults(
    emissions: Mapping[str, Optional[float]],
    category,
    data_quality=DataQualityLevel.DEFAULT_VALUE,
) -> Dict[str, float]:
    """Keep provided values, take defaults for the rest."""
    defaults = default_emissions(category, data_quality)
    return {
        name: emissions[name] if emissions.get(name) is not None else defaults[name]
        for name in EMISSION_FIELDS
    }
