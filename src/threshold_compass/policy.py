"""Policy table for day classification, confidence bands, carryover and patterns.

Every cut point the presentation layer shows to a user lives here, so a
change of policy is a change to one table. Substance profiles follow the
same registry-by-name shape as the other profile tables in this package.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True)
class ClassificationPolicy:
    """Cut points on the 0-10 signal/texture/interference scores."""

    green_min_signal: float = 6.0
    green_max_interference: float = 2.0
    red_min_interference: float = 5.0
    yellow_min_interference: float = 3.0
    yellow_min_texture: float = 6.0
    # threshold feel derived from scores when the user did not tag one
    nothing_max_signal: float = 2.0
    nothing_max_interference: float = 2.0
    sweetspot_min_signal: float = 6.0
    sweetspot_max_interference: float = 2.0
    over_min_interference: float = 5.0


# Band edges are consumed verbatim by the UI layer. Ordered high to low.
QUALIFIER_BANDS: tuple[tuple[int, str], ...] = (
    (70, "Calibrated range."),
    (50, "Working range. Refine with more doses."),
    (30, "Preliminary range. Keep logging."),
    (0, "Need more data."),
)


@dataclass(frozen=True)
class ThresholdRangePolicy:
    min_usable_events: int = 5
    established_events: int = 10
    floor_fallback_percentile: float = 0.10
    ceiling_fallback_percentile: float = 0.90
    ceiling_fallback_min_events: int = 10
    sample_weight: float = 60.0
    sample_scale: float = 6.0
    consistency_weight: float = 40.0
    consistency_support_samples: int = 3
    max_sweet_spot_cv: float = 0.25
    fallback_penalty: float = 5.0
    qualifier_bands: tuple[tuple[int, str], ...] = QUALIFIER_BANDS


@dataclass(frozen=True)
class SubstanceProfile:
    name: str
    unit: str
    reference_dose: float
    acute_load_at_reference: float
    half_life_hours: float


@dataclass(frozen=True)
class CarryoverPolicy:
    # (upper bound inclusive, tier); anything above the last bound is "elevated"
    tier_bands: tuple[tuple[float, str], ...] = (
        (15.0, "clear"),
        (35.0, "mild"),
        (60.0, "moderate"),
    )
    top_tier: str = "elevated"
    clear_threshold_pct: float = 5.0
    horizon_half_lives: float = 3.0
    max_acute_load: float = 100.0


_MIN_SAMPLES: dict[str, int] = {
    "food_correlation": 8,
    "day_clustering": 10,
    "sleep_correlation": 10,
    "environment_correlation": 8,
    "caffeine_timing": 8,
    "cycle_correlation": 6,
    "body_cluster": 10,
    "anti_pattern": 5,
    "day_classification_trend": 5,
    "interference_risk": 5,
    "timing_correlation": 5,
}


@dataclass(frozen=True)
class PatternPolicy:
    confidence_low: int = 40
    max_results: int = 5
    match_window_hours: float = 8.0
    min_samples: Mapping[str, int] = field(
        default_factory=lambda: MappingProxyType(dict(_MIN_SAMPLES))
    )

    def min_samples_for(self, pattern_type: str) -> int:
        return int(self.min_samples.get(pattern_type, 0))


_SUBSTANCE_REGISTRY: dict[str, SubstanceProfile] = {
    # Relative units: a dose of 100 carries a full acute load.
    "relative": SubstanceProfile(
        name="relative",
        unit="units",
        reference_dose=100.0,
        acute_load_at_reference=100.0,
        half_life_hours=288.0,
    ),
    "psilocybin": SubstanceProfile(
        name="psilocybin",
        unit="g",
        reference_dose=0.1,
        acute_load_at_reference=70.0,
        half_life_hours=288.0,
    ),
    "lsd": SubstanceProfile(
        name="lsd",
        unit="ug",
        reference_dose=10.0,
        acute_load_at_reference=70.0,
        half_life_hours=192.0,
    ),
}

DEFAULT_SUBSTANCE = "relative"


@dataclass(frozen=True)
class EnginePolicy:
    classification: ClassificationPolicy = field(default_factory=ClassificationPolicy)
    threshold_range: ThresholdRangePolicy = field(default_factory=ThresholdRangePolicy)
    carryover: CarryoverPolicy = field(default_factory=CarryoverPolicy)
    patterns: PatternPolicy = field(default_factory=PatternPolicy)
    substances: Mapping[str, SubstanceProfile] = field(
        default_factory=lambda: MappingProxyType(dict(_SUBSTANCE_REGISTRY))
    )

    def substance_profile(self, name: str | None) -> SubstanceProfile:
        """Look up a substance profile, falling back to relative units."""
        key = str(name or "").strip().lower()
        profile = self.substances.get(key)
        if profile is None:
            return self.substances[DEFAULT_SUBSTANCE]
        return profile


DEFAULT_POLICY = EnginePolicy()


def qualifier_for_confidence(
    confidence: int,
    bands: tuple[tuple[int, str], ...] = QUALIFIER_BANDS,
) -> str:
    for lower_bound, qualifier in bands:
        if confidence >= lower_bound:
            return qualifier
    return bands[-1][1]


def carryover_tier(percentage: float, policy: CarryoverPolicy | None = None) -> str:
    policy = policy or DEFAULT_POLICY.carryover
    for upper_bound, tier in policy.tier_bands:
        if percentage <= upper_bound:
            return tier
    return policy.top_tier


def substance_names() -> list[str]:
    return sorted(_SUBSTANCE_REGISTRY)
