"""Carryover decay model.

Every dose adds an acute load proportional to its amount (normalized against
the substance's reference dose). Each load decays exponentially with rate
ln(2)/half_life, and the loads of overlapping doses superpose:

    carryover(t) = sum_i min(cap, amount_i / ref * load_at_ref) * exp(-k * (t - t_i))

Doses in the future or at least ``horizon_half_lives`` half-lives old are
skipped. Because every dose shares one decay rate, the sum over any fixed set
of doses is itself a single exponential, which makes ``hours_to_clear`` an
exact piecewise inversion rather than a search.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Mapping

from .errors import MalformedRecord
from .models import CarryoverResult, DoseEvent
from .normalization import coerce_doses, parse_timestamp
from .policy import DEFAULT_POLICY, EnginePolicy, SubstanceProfile, carryover_tier

logger = logging.getLogger(__name__)

_RECOMMENDATIONS: dict[str, str] = {
    "clear": "Full sensitivity expected. Clear to proceed.",
    "mild": "Slight tolerance detected. Consider reducing dose by 10-15%.",
    "moderate": "Moderate tolerance. Consider resting or reducing dose by 20-25%.",
    "elevated": "High tolerance. Strongly recommend a rest day.",
}


@dataclass(frozen=True)
class _Contribution:
    dose: DoseEvent
    acute_load: float
    hours_since: float
    current: float


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _resolve_reference(reference_time: Any) -> datetime:
    parsed = parse_timestamp(reference_time)
    if parsed is None:
        raise MalformedRecord(
            code="invalid_reference_time",
            message=f"reference time is not a timestamp: {reference_time!r}",
            field="reference_time",
        )
    return parsed


def _resolve_half_life(half_life_hours: float | None, profile: SubstanceProfile) -> float:
    if half_life_hours is None:
        return profile.half_life_hours
    try:
        value = float(half_life_hours)
    except (TypeError, ValueError):
        return profile.half_life_hours
    if not math.isfinite(value) or value <= 0:
        logger.debug("Ignoring invalid half-life %r; using %s default", half_life_hours, profile.name)
        return profile.half_life_hours
    return value


def acute_load(amount: float, profile: SubstanceProfile, cap: float = 100.0) -> float:
    """Load carried by one dose at the moment it is taken."""
    if amount <= 0 or profile.reference_dose <= 0:
        return 0.0
    return min(cap, amount / profile.reference_dose * profile.acute_load_at_reference)


def _contributions(
    doses: Iterable[DoseEvent],
    reference: datetime,
    half_life: float,
    profile: SubstanceProfile,
    policy: EnginePolicy,
) -> list[_Contribution]:
    rate = math.log(2) / half_life
    horizon = policy.carryover.horizon_half_lives * half_life
    contributions: list[_Contribution] = []
    for dose in doses:
        hours_since = (reference - dose.timestamp).total_seconds() / 3600.0
        if hours_since < 0 or hours_since >= horizon:
            continue
        load = acute_load(dose.amount, profile, policy.carryover.max_acute_load)
        contributions.append(
            _Contribution(
                dose=dose,
                acute_load=load,
                hours_since=hours_since,
                current=load * math.exp(-rate * hours_since),
            )
        )
    return contributions


def _hours_until_below(
    contributions: list[_Contribution],
    target: float,
    half_life: float,
    horizon_half_lives: float,
) -> float:
    """Hours until the superposed load first drops below ``target``.

    Solves C * exp(-k t) = target on each interval between horizon exits.
    """
    rate = math.log(2) / half_life
    horizon = horizon_half_lives * half_life
    remaining = sorted(contributions, key=lambda c: (horizon - c.hours_since, c.dose.id))

    elapsed = 0.0
    while remaining:
        coefficient = math.fsum(c.current for c in remaining)
        next_exit = horizon - remaining[0].hours_since
        if coefficient <= target:
            return elapsed
        crossing = math.log(coefficient / target) / rate
        if crossing <= next_exit:
            return max(elapsed, crossing)
        elapsed = next_exit
        remaining.pop(0)
    return elapsed


def _round_up(value: float, step: float = 0.1) -> float:
    return round(math.ceil(value / step - 1e-9) * step, 1)


def carryover_at(
    dose_history: Iterable[DoseEvent | Mapping[str, Any]],
    at: Any,
    half_life_hours: float | None = None,
    *,
    substance: str | None = None,
    policy: EnginePolicy = DEFAULT_POLICY,
) -> float:
    """Unclamped superposed load at one instant."""
    profile = policy.substance_profile(substance)
    half_life = _resolve_half_life(half_life_hours, profile)
    reference = _resolve_reference(at)
    doses = coerce_doses(dose_history)
    return math.fsum(c.current for c in _contributions(doses, reference, half_life, profile, policy))


def compute_carryover(
    dose_history: Iterable[DoseEvent | Mapping[str, Any]],
    reference_time: Any,
    half_life_hours: float | None = None,
    *,
    substance: str | None = None,
    policy: EnginePolicy = DEFAULT_POLICY,
) -> CarryoverResult:
    """Residual load at ``reference_time`` and the multiplier for the next dose.

    Malformed dose rows are dropped. A missing or invalid half-life falls
    back to the substance default. An unparseable ``reference_time`` is a
    caller error and raises MalformedRecord with code
    ``invalid_reference_time``; the same holds for every function here that
    takes a reference time.
    """
    profile = policy.substance_profile(substance)
    half_life = _resolve_half_life(half_life_hours, profile)
    reference = _resolve_reference(reference_time)
    doses = coerce_doses(dose_history)

    contributions = _contributions(doses, reference, half_life, profile, policy)
    raw = math.fsum(c.current for c in contributions)
    percentage = round(_clamp(raw, 0.0, 100.0), 1)
    effective_multiplier = round(max(0.0, 1.0 - percentage / 100.0), 4)

    clear_threshold = policy.carryover.clear_threshold_pct
    hours_to_clear: float | None = None
    if raw >= clear_threshold:
        hours_to_clear = _round_up(
            _hours_until_below(
                contributions,
                clear_threshold,
                half_life,
                policy.carryover.horizon_half_lives,
            )
        )

    return CarryoverResult(
        percentage=percentage,
        tier=carryover_tier(percentage, policy.carryover),
        effective_multiplier=effective_multiplier,
        hours_to_clear=hours_to_clear,
    )


def project_carryover_curve(
    dose_history: Iterable[DoseEvent | Mapping[str, Any]],
    start: Any,
    hours: float,
    step_hours: float = 6.0,
    half_life_hours: float | None = None,
    *,
    substance: str | None = None,
    policy: EnginePolicy = DEFAULT_POLICY,
) -> list[tuple[datetime, float]]:
    """Sample carryover percentage from ``start`` forward, e.g. for a decay chart."""
    if step_hours <= 0:
        raise ValueError("step_hours must be positive")
    profile = policy.substance_profile(substance)
    half_life = _resolve_half_life(half_life_hours, profile)
    origin = _resolve_reference(start)
    doses = coerce_doses(dose_history)

    points: list[tuple[datetime, float]] = []
    steps = int(math.floor(hours / step_hours))
    for idx in range(steps + 1):
        at = origin + timedelta(hours=idx * step_hours)
        raw = math.fsum(c.current for c in _contributions(doses, at, half_life, profile, policy))
        points.append((at, round(_clamp(raw, 0.0, 100.0), 1)))
    return points


def contributing_doses(
    dose_history: Iterable[DoseEvent | Mapping[str, Any]],
    reference_time: Any,
    half_life_hours: float | None = None,
    *,
    substance: str | None = None,
    limit: int = 5,
    policy: EnginePolicy = DEFAULT_POLICY,
) -> list[dict[str, Any]]:
    """Largest per-dose contributions at ``reference_time``."""
    profile = policy.substance_profile(substance)
    half_life = _resolve_half_life(half_life_hours, profile)
    reference = _resolve_reference(reference_time)
    doses = coerce_doses(dose_history)
    ranked = sorted(
        _contributions(doses, reference, half_life, profile, policy),
        key=lambda c: (-c.current, c.dose.id),
    )
    return [
        {
            "dose_id": c.dose.id,
            "timestamp": c.dose.timestamp.isoformat(),
            "amount": c.dose.amount,
            "hours_since": round(c.hours_since, 1),
            "contribution": round(c.current, 2),
        }
        for c in ranked[:limit]
    ]


def effective_dose(amount: float, carryover: CarryoverResult) -> float:
    return amount * carryover.effective_multiplier


def consecutive_dose_days(
    dose_history: Iterable[DoseEvent | Mapping[str, Any]],
    reference_time: Any,
) -> int:
    """Length of the dosing streak ending today or yesterday."""
    reference = _resolve_reference(reference_time)
    today = reference.date()
    days: set[date] = {
        dose.timestamp.astimezone(reference.tzinfo).date()
        for dose in coerce_doses(dose_history)
        if dose.timestamp <= reference
    }
    if not days:
        return 0

    latest = max(days)
    if latest not in (today, today - timedelta(days=1)):
        return 0

    count = 1
    cursor = latest - timedelta(days=1)
    while cursor in days:
        count += 1
        cursor -= timedelta(days=1)
    return count


def carryover_recommendation(result: CarryoverResult, consecutive_days: int = 0) -> str:
    message = _RECOMMENDATIONS.get(result.tier, _RECOMMENDATIONS["elevated"])
    if consecutive_days >= 3:
        message += (
            f" You've dosed {consecutive_days} days in a row."
            " Extended breaks improve sensitivity."
        )
    return message


def suggest_next_dose_time(
    dose_history: Iterable[DoseEvent | Mapping[str, Any]],
    reference_time: Any,
    half_life_hours: float | None = None,
    *,
    substance: str | None = None,
    policy: EnginePolicy = DEFAULT_POLICY,
) -> datetime:
    """Earliest time carryover is back inside the "clear" tier."""
    profile = policy.substance_profile(substance)
    half_life = _resolve_half_life(half_life_hours, profile)
    reference = _resolve_reference(reference_time)
    doses = coerce_doses(dose_history)
    contributions = _contributions(doses, reference, half_life, profile, policy)

    clear_bound = policy.carryover.tier_bands[0][0]
    raw = math.fsum(c.current for c in contributions)
    if raw <= clear_bound:
        return reference
    hours = _hours_until_below(contributions, clear_bound, half_life, policy.carryover.horizon_half_lives)
    return reference + timedelta(hours=_round_up(hours))
