"""
Carbon Intensity Constants

Per-methodology configuration for the calculation engine.
Values below are the platform defaults for RED II, RTFO, ISO 14064, ISCC
and RSB. They are injectable: pass a different profile table to the engine
when an applicable standard publishes other figures.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

from app.models.ci_report import EMISSION_FIELDS
from app.models.db_models import DataQualityLevel, FeedstockCategory, Methodology


# =============================================================================
# DATA QUALITY
# =============================================================================

# Relative half-width contributed by input provenance. Must not decrease
# as quality degrades.
DATA_QUALITY_BAND: Dict[DataQualityLevel, float] = {
    DataQualityLevel.PRIMARY_MEASURED: 0.0,
    DataQualityLevel.INDUSTRY_AVERAGE: 0.15,
    DataQualityLevel.DEFAULT_VALUE: 0.30,
    DataQualityLevel.ESTIMATED: 0.50,
}

# Plausibility ceiling for the summed inputs (gCO2e/MJ). Above this the
# validator warns; it does not reject.
PLAUSIBLE_TOTAL_CEILING = 200.0

# Hard ceiling for a single category (gCO2e/MJ). Far beyond any physical
# pathway, and small enough that the summed and converted values stay finite.
MAX_EMISSION_VALUE = 1_000_000.0

DEFAULT_VALIDITY_DAYS = 365
MAX_VALIDITY_DAYS = 1825


# =============================================================================
# METHODOLOGY PROFILES
# =============================================================================

# Upper bound (exclusive) for each grade, best grade first; anything at or
# above the last bound is graded F.
STANDARD_RATING_THRESHOLDS: Tuple[Tuple[str, float], ...] = (
    ("A+", 10.0),
    ("A", 20.0),
    ("B+", 30.0),
    ("B", 40.0),
    ("C+", 50.0),
    ("C", 60.0),
    ("D", 70.0),
)
FAILING_GRADE = "F"


@dataclass(frozen=True)
class MethodologyProfile:
    """
    Everything the engine needs to know about one methodology.

    unit_factor converts gCO2e/MJ into the methodology's canonical unit.
    fossil_comparator and rating_thresholds are expressed in that unit.
    """
    methodology: Methodology
    label: str
    unit: str
    unit_factor: float
    fossil_comparator: float
    rating_thresholds: Tuple[Tuple[str, float], ...]
    uncertainty_band: float
    compliance_threshold: float
    new_installation_threshold: Optional[float] = None
    required_categories: Tuple[str, ...] = field(default=EMISSION_FIELDS)

    def __post_init__(self):
        if self.unit_factor <= 0:
            raise ValueError(f"{self.methodology.value}: unit_factor must be positive")
        if self.fossil_comparator <= 0:
            raise ValueError(f"{self.methodology.value}: fossil_comparator must be positive")
        if self.uncertainty_band < 0:
            raise ValueError(f"{self.methodology.value}: uncertainty_band cannot be negative")
        # Widest band any report can get; the low end of the range must stay positive
        worst = math.sqrt(max(DATA_QUALITY_BAND.values()) ** 2 + self.uncertainty_band ** 2)
        if worst >= 1:
            raise ValueError(
                f"{self.methodology.value}: combined uncertainty half-width {worst:.3f} must be below 1"
            )
        bounds = [bound for _, bound in self.rating_thresholds]
        if bounds != sorted(bounds) or len(set(bounds)) != len(bounds):
            raise ValueError(f"{self.methodology.value}: rating thresholds must be strictly increasing")
        unknown = set(self.required_categories) - set(EMISSION_FIELDS)
        if unknown:
            raise ValueError(f"{self.methodology.value}: unknown required categories {sorted(unknown)}")

    def threshold_for(self, is_new_installation: bool) -> float:
        if is_new_installation and self.new_installation_threshold is not None:
            return self.new_installation_threshold
        return self.compliance_threshold


DEFAULT_PROFILES: Dict[Methodology, MethodologyProfile] = {
    Methodology.RED_II: MethodologyProfile(
        methodology=Methodology.RED_II,
        label="EU Renewable Energy Directive II",
        unit="gCO2e/MJ",
        unit_factor=1.0,
        fossil_comparator=94.0,
        rating_thresholds=STANDARD_RATING_THRESHOLDS,
        uncertainty_band=0.0,
        compliance_threshold=50.0,  # Existing installations
        new_installation_threshold=65.0,  # Post January 2021
    ),
    Methodology.RTFO: MethodologyProfile(
        methodology=Methodology.RTFO,
        label="UK Renewable Transport Fuel Obligation",
        unit="gCO2e/MJ",
        unit_factor=1.0,
        fossil_comparator=94.0,
        rating_thresholds=STANDARD_RATING_THRESHOLDS,
        uncertainty_band=0.0,
        compliance_threshold=50.0,
    ),
    Methodology.ISO_14064: MethodologyProfile(
        methodology=Methodology.ISO_14064,
        label="ISO 14064 GHG Accounting",
        unit="kgCO2e/GJ",
        unit_factor=1.0,  # 1 gCO2e/MJ == 1 kgCO2e/GJ
        fossil_comparator=94.0,
        rating_thresholds=STANDARD_RATING_THRESHOLDS,
        uncertainty_band=0.10,
        compliance_threshold=0.0,  # Reporting standard, no minimum
        # Excludes indirect land-use change
        required_categories=tuple(f for f in EMISSION_FIELDS if f != "scope3_land_use_change"),
    ),
    Methodology.ISCC: MethodologyProfile(
        methodology=Methodology.ISCC,
        label="International Sustainability & Carbon Certification",
        unit="gCO2e/MJ",
        unit_factor=1.0,
        fossil_comparator=94.0,
        rating_thresholds=STANDARD_RATING_THRESHOLDS,
        uncertainty_band=0.0,
        compliance_threshold=50.0,
    ),
    Methodology.RSB: MethodologyProfile(
        methodology=Methodology.RSB,
        label="Roundtable on Sustainable Biomaterials",
        unit="gCO2e/MJ",
        unit_factor=1.0,
        fossil_comparator=94.0,
        rating_thresholds=STANDARD_RATING_THRESHOLDS,
        uncertainty_band=0.05,
        compliance_threshold=50.0,
    ),
}


def resolve_profiles(
    profiles: Optional[Mapping[Methodology, MethodologyProfile]] = None,
) -> Mapping[Methodology, MethodologyProfile]:
    return DEFAULT_PROFILES if profiles is None else profiles


# =============================================================================
# DEFAULT EMISSION FACTORS (gCO2e/MJ)
# =============================================================================
# Industry averages used only when a supplier explicitly asks for missing
# categories to be filled. Scaled up by DEFAULT_FACTOR_MARKUP so a default
# never flatters a pathway.

DEFAULT_FACTOR_MARKUP: Dict[DataQualityLevel, float] = {
    DataQualityLevel.PRIMARY_MEASURED: 1.0,
    DataQualityLevel.INDUSTRY_AVERAGE: 1.15,
    DataQualityLevel.DEFAULT_VALUE: 1.3,
    DataQualityLevel.ESTIMATED: 1.3,
}

DEFAULT_EMISSION_FACTORS: Dict[FeedstockCategory, Dict[str, float]] = {
    FeedstockCategory.OILSEED: {
        "scope1_cultivation": 12.5,
        "scope1_processing": 5.8,
        "scope1_transport": 2.3,
        "scope2_electricity": 3.2,
        "scope2_steam_heat": 2.1,
        "scope3_upstream_inputs": 4.5,
        "scope3_land_use_change": 8.0,
        "scope3_distribution": 2.5,
        "scope3_end_of_life": 0.0,
    },
    FeedstockCategory.UCO: {
        "scope1_cultivation": 0.0,  # Waste product, no cultivation
        "scope1_processing": 3.5,
        "scope1_transport": 1.2,
        "scope2_electricity": 1.8,
        "scope2_steam_heat": 0.5,
        "scope3_upstream_inputs": 0.3,
        "scope3_land_use_change": 0.0,
        "scope3_distribution": 1.5,
        "scope3_end_of_life": 0.0,
    },
    FeedstockCategory.TALLOW: {
        "scope1_cultivation": 0.0,
        "scope1_processing": 4.2,
        "scope1_transport": 1.5,
        "scope2_electricity": 2.1,
        "scope2_steam_heat": 1.2,
        "scope3_upstream_inputs": 0.5,
        "scope3_land_use_change": 0.0,
        "scope3_distribution": 1.8,
        "scope3_end_of_life": 0.0,
    },
    FeedstockCategory.LIGNOCELLULOSIC: {
        "scope1_cultivation": 1.8,
        "scope1_processing": 4.0,
        "scope1_transport": 2.8,
        "scope2_electricity": 1.8,
        "scope2_steam_heat": 0.9,
        "scope3_upstream_inputs": 1.4,
        "scope3_land_use_change": 0.0,
        "scope3_distribution": 2.0,
        "scope3_end_of_life": 0.0,
    },
    FeedstockCategory.WASTE: {
        "scope1_cultivation": 0.0,
        "scope1_processing": 6.8,
        "scope1_transport": 2.3,
        "scope2_electricity": 3.3,
        "scope2_steam_heat": 1.8,
        "scope3_upstream_inputs": 0.9,
        "scope3_land_use_change": 0.0,
        "scope3_distribution": 1.9,
        "scope3_end_of_life": 0.0,  # Inputs are non-negative; no landfill credit
    },
    FeedstockCategory.ALGAE: {
        "scope1_cultivation": 8.0,
        "scope1_processing": 7.5,
        "scope1_transport": 1.0,
        "scope2_electricity": 12.0,
        "scope2_steam_heat": 3.0,
        "scope3_upstream_inputs": 5.0,
        "scope3_land_use_change": 0.0,
        "scope3_distribution": 1.5,
        "scope3_end_of_life": 0.0,
    },
    FeedstockCategory.BAMBOO: {
        "scope1_cultivation": 3.5,
        "scope1_processing": 5.0,
        "scope1_transport": 2.5,
        "scope2_electricity": 2.8,
        "scope2_steam_heat": 1.5,
        "scope3_upstream_inputs": 1.5,
        "scope3_land_use_change": 2.0,
        "scope3_distribution": 2.0,
        "scope3_end_of_life": 0.0,
    },
    FeedstockCategory.OTHER: {
        "scope1_cultivation": 10.0,
        "scope1_processing": 6.0,
        "scope1_transport": 2.5,
        "scope2_electricity": 3.5,
        "scope2_steam_heat": 2.0,
        "scope3_upstream_inputs": 4.0,
        "scope3_land_use_change": 5.0,
        "scope3_distribution": 2.5,
        "scope3_end_of_life": 0.0,
    },
}
