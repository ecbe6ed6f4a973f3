"""Context-versus-outcome detectors over matched dose/check-in pairs.

Each detector groups matched doses by one context field, compares a mean
check-in signal across groups and reports the best group when the
separation clears the detector's gate.
"""

from __future__ import annotations

from ..matching import MatchedDose
from ..models import FOOD_STATES, Pattern
from .context import DetectionContext, mean
from .registry import detector

_FOOD_LABELS: dict[str, str] = {
    "empty": "on an empty stomach",
    "light": "after a light meal",
    "full": "after a full meal",
}

_ENVIRONMENT_LABELS: dict[str, str] = {
    "home_alone": "at home alone",
    "home_others": "at home with others",
    "outdoor": "outdoors",
    "work": "at work",
    "social": "in social settings",
    "travel": "while traveling",
}

# (phase, first day, last day, label)
_CYCLE_PHASES: tuple[tuple[str, int, int, str], ...] = (
    ("follicular", 1, 13, "follicular phase (days 1-13)"),
    ("ovulation", 14, 16, "ovulation (days 14-16)"),
    ("luteal", 17, 28, "luteal phase (days 17-28)"),
)


def _clarity(pair: MatchedDose) -> float:
    assert pair.check_in is not None
    return pair.check_in.signals.clarity


def _stability(pair: MatchedDose) -> float:
    assert pair.check_in is not None
    return pair.check_in.signals.stability


def _overall(pair: MatchedDose) -> float:
    assert pair.check_in is not None
    return pair.check_in.signals.mean


def _dose_ids(pairs: list[MatchedDose]) -> list[str]:
    return [pair.dose.id for pair in pairs]


def _check_in_ids(pairs: list[MatchedDose]) -> list[str]:
    return [pair.check_in.id for pair in pairs if pair.check_in is not None]


@detector("food_correlation")
def detect_food_correlation(context: DetectionContext) -> Pattern | None:
    samples = [p for p in context.with_check_in() if p.dose.food_state is not None]
    if len(samples) < context.min_samples("food_correlation"):
        return None

    groups = {
        state: [p for p in samples if p.dose.food_state == state]
        for state in FOOD_STATES
    }
    averages = {
        state: mean(_clarity(p) for p in group)
        for state, group in groups.items()
        if len(group) >= 2
    }
    if len(averages) < 2:
        return None

    # Stable sort keeps empty/light/full order on ties
    ranked = sorted(averages, key=lambda state: -averages[state])
    best, worst = ranked[0], ranked[-1]
    diff = averages[best] - averages[worst]
    if diff < 0.8:
        return None

    best_pairs = groups[best]
    return context.make_pattern(
        "food_correlation",
        title="Food timing matters for you",
        description=(
            f"Your highest clarity scores come {_FOOD_LABELS[best]}. "
            "Consider adjusting meal timing around doses."
        ),
        confidence=min(95, 50 + diff * 15 + len(best_pairs) * 3),
        evidence_dose_ids=_dose_ids(best_pairs),
        evidence_check_in_ids=_check_in_ids(best_pairs),
        recommendation=f"Plan your next doses {_FOOD_LABELS[best]} and compare clarity.",
    )


@detector("sleep_correlation")
def detect_sleep_correlation(context: DetectionContext) -> Pattern | None:
    with_sleep = [p for p in context.matched if p.dose.sleep_quality is not None]
    if len(with_sleep) < context.min_samples("sleep_correlation"):
        return None

    high = [p for p in with_sleep if p.check_in is not None and p.dose.sleep_quality >= 4]
    low = [p for p in with_sleep if p.check_in is not None and p.dose.sleep_quality <= 2]
    if len(high) < 3 or len(low) < 3:
        return None

    high_avg = mean(_clarity(p) for p in high)
    low_avg = mean(_clarity(p) for p in low)
    diff = high_avg - low_avg
    if diff < 0.5:
        return None

    return context.make_pattern(
        "sleep_correlation",
        title="Sleep quality multiplies your results",
        description=(
            f"When you sleep well (4-5), your clarity scores are "
            f"{round(diff * 100 / low_avg)}% higher. Sleep is not optional for this practice."
        ),
        confidence=min(90, 50 + diff * 20),
        evidence_dose_ids=_dose_ids(high),
        evidence_check_in_ids=_check_in_ids(high),
        recommendation="Skip or postpone doses after a poor night of sleep.",
    )


@detector("environment_correlation")
def detect_environment_correlation(context: DetectionContext) -> Pattern | None:
    with_env = [p for p in context.matched if p.dose.environment is not None]
    if len(with_env) < context.min_samples("environment_correlation"):
        return None

    groups: dict[str, list[MatchedDose]] = {}
    for pair in with_env:
        if pair.check_in is None:
            continue
        groups.setdefault(pair.dose.environment, []).append(pair)

    averages = {
        env: mean(_overall(p) for p in group)
        for env, group in groups.items()
        if len(group) >= 2
    }
    if len(averages) < 2:
        return None

    ranked = sorted(averages, key=lambda env: (-averages[env], env))
    best, worst = ranked[0], ranked[-1]
    diff = averages[best] - averages[worst]
    if diff < 0.5:
        return None

    label = _ENVIRONMENT_LABELS.get(best, best)
    best_pairs = groups[best]
    return context.make_pattern(
        "environment_correlation",
        title=f"{label[0].upper()}{label[1:]} works best",
        description=(
            f"Your highest signal scores come {label}. "
            "Consider optimizing your dose days around this environment."
        ),
        confidence=min(85, 50 + diff * 15 + len(best_pairs) * 2),
        evidence_dose_ids=_dose_ids(best_pairs),
        evidence_check_in_ids=_check_in_ids(best_pairs),
        recommendation=f"Schedule dose days {label} when you can.",
    )


@detector("caffeine_timing")
def detect_caffeine_timing(context: DetectionContext) -> Pattern | None:
    with_caffeine = [p for p in context.matched if p.dose.caffeine_timing is not None]
    if len(with_caffeine) < context.min_samples("caffeine_timing"):
        return None

    # Positive timing: hours of caffeine before the dose
    caffeine_first = [p for p in with_caffeine if p.check_in is not None and p.dose.caffeine_timing > 0]
    dose_first = [p for p in with_caffeine if p.check_in is not None and p.dose.caffeine_timing <= 0]
    if len(caffeine_first) < 3 or len(dose_first) < 3:
        return None

    caffeine_avg = mean(_stability(p) for p in caffeine_first)
    dose_avg = mean(_stability(p) for p in dose_first)
    diff = abs(caffeine_avg - dose_avg)
    if diff < 0.4:
        return None

    if caffeine_avg > dose_avg:
        winners = caffeine_first
        description = (
            "Your stability is higher when you have caffeine before dosing. "
            "The order matters for you."
        )
        recommendation = "Keep caffeine ahead of your dose."
    else:
        winners = dose_first
        description = (
            "Your stability is higher when you dose before having caffeine. "
            "Consider adjusting your morning routine."
        )
        recommendation = "Take your dose first and hold caffeine until afterwards."

    return context.make_pattern(
        "caffeine_timing",
        title="Caffeine timing affects your stability",
        description=description,
        confidence=min(80, 50 + diff * 20),
        evidence_dose_ids=_dose_ids(winners),
        evidence_check_in_ids=_check_in_ids(winners),
        recommendation=recommendation,
    )


@detector("cycle_correlation", requires=("menstrual_tracking",))
def detect_cycle_correlation(context: DetectionContext) -> Pattern | None:
    with_cycle = [p for p in context.matched if p.dose.cycle_day is not None]
    if len(with_cycle) < context.min_samples("cycle_correlation"):
        return None

    phases: dict[str, list[MatchedDose]] = {}
    averages: dict[str, float] = {}
    labels: dict[str, str] = {}
    for phase, first, last, label in _CYCLE_PHASES:
        group = [p for p in with_cycle if first <= p.dose.cycle_day <= last]
        phases[phase] = group
        labels[phase] = label
        scored = [p for p in group if p.check_in is not None]
        if len(group) >= 2 and scored:
            averages[phase] = mean(_overall(p) for p in scored)

    if len(averages) < 2:
        return None

    ranked = sorted(averages, key=lambda phase: -averages[phase])
    best, worst = ranked[0], ranked[-1]
    diff = averages[best] - averages[worst]
    if diff < 0.4:
        return None

    return context.make_pattern(
        "cycle_correlation",
        title="Your cycle affects your response",
        description=(
            f"Your best experiences happen during your {labels[best]}. "
            "Consider timing around this."
        ),
        confidence=min(80, 50 + diff * 15),
        evidence_dose_ids=_dose_ids(phases[best]),
        evidence_check_in_ids=_check_in_ids(phases[best]),
        recommendation=f"Favor dosing during your {best} phase and go lighter in the {worst} phase.",
    )
