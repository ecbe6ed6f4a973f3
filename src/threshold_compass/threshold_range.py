"""Personal threshold range: floor, sweet spot and ceiling for one batch.

The range is derived from the user's own threshold-feel tags:
- floor: the highest dose that still felt like nothing / under threshold
- ceiling: the lowest dose that felt over
- sweet spot: the mean of the doses tagged as the sweet spot

Missing anchors fall back to percentiles (floor, ceiling) or to the midpoint
of floor and ceiling (sweet spot). Confidence grows with sample count and
with the tightness of the sweet-spot cluster. Sums use ``math.fsum`` so the
result does not depend on input order.

The module also holds the helpers that read a range back: batch potency
comparison, dose suggestions and the above-threshold check for one dose.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, Literal, Mapping

from .errors import MalformedRecord, UnitMismatch
from .models import CheckIn, DoseEvent, ThresholdRange
from .normalization import normalize_check_in_record, normalize_dose_record, normalize_threshold_feel
from .policy import DEFAULT_POLICY, EnginePolicy, ThresholdRangePolicy, qualifier_for_confidence

logger = logging.getLogger(__name__)

RangeStatus = Literal["insufficient_data", "emerging", "established"]
Intention = Literal["subtle", "standard", "strong"]


@dataclass(frozen=True)
class _UsableEvent:
    amount: float
    unit: str
    feel: str


@dataclass(frozen=True)
class RangeProgress:
    status: RangeStatus
    message: str
    doses_analyzed: int
    doses_needed: int


def _mean(values: list[float]) -> float:
    if not values:
        return 0.0
    return math.fsum(values) / len(values)


def _stddev(values: list[float]) -> float:
    if len(values) <= 1:
        return 0.0
    mu = _mean(values)
    return math.sqrt(math.fsum((v - mu) ** 2 for v in values) / (len(values) - 1))


def _quantile(values: list[float], q: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    if len(ordered) == 1:
        return ordered[0]
    q = max(0.0, min(1.0, q))
    pos = q * (len(ordered) - 1)
    lo = int(math.floor(pos))
    hi = int(math.ceil(pos))
    if lo == hi:
        return ordered[lo]
    mix = pos - lo
    return ((1.0 - mix) * ordered[lo]) + (mix * ordered[hi])


def round_dose(dose: float) -> float:
    """0.01 precision for doses of 1 or more, 0.001 below."""
    if dose >= 1:
        return round(dose, 2)
    return round(dose, 3)


def _usable_events(
    events: Iterable[DoseEvent | Mapping[str, Any]],
    batch_id: str | None,
) -> list[_UsableEvent]:
    usable: list[_UsableEvent] = []
    for raw in events:
        if isinstance(raw, DoseEvent):
            event = raw
        else:
            try:
                event = normalize_dose_record(raw)
            except MalformedRecord as exc:
                logger.debug(
                    "Excluded malformed dose from range: %s",
                    exc.message,
                    extra={"compass_error_code": exc.code, "compass_batch_id": batch_id},
                )
                continue
        feel = normalize_threshold_feel(event.threshold_feel)
        if feel is None:
            continue
        if batch_id is not None and event.batch_id is not None and event.batch_id != batch_id:
            continue
        usable.append(_UsableEvent(amount=event.amount, unit=event.unit, feel=feel))
    return usable


def _check_units(usable: list[_UsableEvent]) -> None:
    units = tuple(sorted({event.unit for event in usable}))
    if len(units) > 1:
        raise UnitMismatch(units)


def _confidence(
    total: int,
    sweet_amounts: list[float],
    fallbacks: int,
    policy: ThresholdRangePolicy,
) -> int:
    sample_component = policy.sample_weight * (1.0 - math.exp(-total / policy.sample_scale))

    consistency_component = 0.0
    if sweet_amounts:
        mean = _mean(sweet_amounts)
        cv = _stddev(sweet_amounts) / mean if mean > 0 else 1.0
        tightness = max(0.0, 1.0 - cv / policy.max_sweet_spot_cv)
        support = min(1.0, len(sweet_amounts) / policy.consistency_support_samples)
        consistency_component = policy.consistency_weight * support * tightness

    raw = sample_component + consistency_component - policy.fallback_penalty * fallbacks
    return int(round(max(0.0, min(100.0, raw))))


def calculate_threshold_range(
    events: Iterable[DoseEvent | Mapping[str, Any]],
    batch_id: str | None = None,
    *,
    policy: EnginePolicy = DEFAULT_POLICY,
) -> ThresholdRange | None:
    """Floor / sweet spot / ceiling estimate for one batch.

    Returns None with fewer than the minimum usable events (events carrying
    a threshold feel) or when the usable events mix dose units.
    """
    range_policy = policy.threshold_range
    usable = _usable_events(events, batch_id)

    try:
        _check_units(usable)
    except UnitMismatch as exc:
        logger.warning(
            "Threshold range aborted: %s",
            exc.message,
            extra={"compass_batch_id": batch_id, "compass_units": list(exc.units)},
        )
        return None

    if len(usable) < range_policy.min_usable_events:
        logger.debug(
            "Threshold range needs %d usable events, have %d",
            range_policy.min_usable_events,
            len(usable),
            extra={"compass_batch_id": batch_id},
        )
        return None

    amounts = sorted(event.amount for event in usable)
    below = sorted(e.amount for e in usable if e.feel in ("nothing", "under"))
    over = sorted(e.amount for e in usable if e.feel == "over")
    sweet = sorted(e.amount for e in usable if e.feel == "sweetspot")

    fallbacks = 0
    if below:
        floor_dose: float | None = below[-1]
    else:
        floor_dose = _quantile(amounts, range_policy.floor_fallback_percentile)
        fallbacks += 1

    if over:
        ceiling_dose: float | None = over[0]
    elif len(usable) >= range_policy.ceiling_fallback_min_events:
        ceiling_dose = _quantile(amounts, range_policy.ceiling_fallback_percentile)
        fallbacks += 1
    else:
        ceiling_dose = None

    if sweet:
        sweet_spot: float | None = _mean(sweet)
    elif floor_dose is not None and ceiling_dose is not None:
        sweet_spot = (floor_dose + ceiling_dose) / 2.0
    else:
        sweet_spot = None

    confidence = _confidence(len(usable), sweet, fallbacks, range_policy)

    return ThresholdRange(
        floor_dose=round_dose(floor_dose) if floor_dose is not None else None,
        sweet_spot=round_dose(sweet_spot) if sweet_spot is not None else None,
        ceiling_dose=round_dose(ceiling_dose) if ceiling_dose is not None else None,
        confidence=confidence,
        qualifier=qualifier_for_confidence(confidence, range_policy.qualifier_bands),
        doses_used=len(usable),
    )


def range_progress(
    events: Iterable[DoseEvent | Mapping[str, Any]],
    batch_id: str | None = None,
    *,
    policy: EnginePolicy = DEFAULT_POLICY,
) -> RangeProgress:
    """Discovery status shown next to the range while data is accumulating."""
    range_policy = policy.threshold_range
    analyzed = len(_usable_events(events, batch_id))

    if analyzed < range_policy.min_usable_events:
        needed = range_policy.min_usable_events - analyzed
        return RangeProgress(
            status="insufficient_data",
            message=f"Log {needed} more doses to see your threshold range.",
            doses_analyzed=analyzed,
            doses_needed=needed,
        )
    if analyzed < range_policy.established_events:
        needed = range_policy.established_events - analyzed
        return RangeProgress(
            status="emerging",
            message=f"Range emerging. {needed} more doses will increase confidence.",
            doses_analyzed=analyzed,
            doses_needed=needed,
        )
    return RangeProgress(
        status="established",
        message=f"Your threshold range is established based on {analyzed} doses.",
        doses_analyzed=analyzed,
        doses_needed=0,
    )


def compare_batch_ranges(
    range_a: ThresholdRange,
    range_b: ThresholdRange,
    name_a: str,
    name_b: str,
) -> str | None:
    """Relative potency of two batches from their sweet spots."""
    if not range_a.sweet_spot or not range_b.sweet_spot:
        return None
    ratio = range_a.sweet_spot / range_b.sweet_spot
    if ratio > 1.3:
        return (
            f"{name_b} appears {round((ratio - 1) * 100)}% more potent than {name_a}. "
            "Your sweet spot is lower."
        )
    if ratio < 0.7:
        return (
            f"{name_a} appears {round((1 - ratio) * 100)}% more potent than {name_b}. "
            "Your sweet spot is lower."
        )
    return f"{name_a} and {name_b} have similar potency. Your threshold range is consistent."


def suggest_dose(
    threshold_range: ThresholdRange,
    carryover_multiplier: float,
    intention: Intention = "standard",
) -> tuple[float, str] | None:
    """Target dose for an intention, scaled up to offset residual carryover.

    Returns None when the anchor for the intention is unknown or carryover
    leaves no effective sensitivity.
    """
    if intention == "subtle":
        base, rationale = threshold_range.floor_dose, "Low end of your range for subtle support."
    elif intention == "strong":
        base, rationale = threshold_range.ceiling_dose, "Upper end of your range for stronger effects."
    else:
        base, rationale = threshold_range.sweet_spot, "Your sweet spot for balanced effects."

    if base is None or carryover_multiplier <= 0:
        return None

    adjusted = base / carryover_multiplier
    if carryover_multiplier < 1:
        rationale += (
            f" Adjusted up to account for {round((1 - carryover_multiplier) * 100)}% carryover."
        )
    return round_dose(adjusted), rationale


@dataclass(frozen=True)
class AboveThreshold:
    likely: bool
    confidence: int
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"likely": self.likely, "confidence": self.confidence, "reason": self.reason}


def detect_above_threshold(
    dose: DoseEvent | Mapping[str, Any],
    check_in: CheckIn | Mapping[str, Any] | None,
    threshold_range: ThresholdRange | None,
    carryover_multiplier: float = 1.0,
) -> AboveThreshold:
    """Whether a dose was likely taken above threshold.

    The effective dose is the amount scaled by the carryover multiplier. A
    dose more than 20% over the ceiling is the strongest hint; otherwise the
    check-in signals decide. Without a check-in nothing can be said.
    """
    if check_in is None:
        return AboveThreshold(likely=False, confidence=0, reason="No check-in data")
    dose = normalize_dose_record(dose)
    check_in = normalize_check_in_record(check_in)

    effective = dose.amount * carryover_multiplier
    ceiling = threshold_range.ceiling_dose if threshold_range is not None else None
    if ceiling is not None and effective > ceiling * 1.2:
        return AboveThreshold(
            likely=True,
            confidence=80,
            reason="Dose significantly above your established high threshold.",
        )

    signals = check_in.signals
    if signals.clarity >= 5 and signals.energy >= 4:
        return AboveThreshold(
            likely=True,
            confidence=60,
            reason="Signal pattern suggests perceptual effects.",
        )
    if signals.stability <= 2 and signals.energy >= 4:
        return AboveThreshold(
            likely=True,
            confidence=70,
            reason="High energy with low stability often indicates above threshold.",
        )
    return AboveThreshold(likely=False, confidence=50, reason="Signals within normal threshold range.")
