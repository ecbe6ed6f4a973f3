"""Frequency detectors: weekday rhythm, body-map signature, difficult sessions."""

from __future__ import annotations

from collections import Counter

from ..models import Pattern
from .context import DetectionContext
from .registry import detector

_DAY_NAMES: tuple[str, ...] = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)

_REGION_LABELS: dict[str, str] = {
    "head": "your head",
    "chest": "your chest",
    "gut": "your gut",
    "hands": "your hands",
    "legs": "your legs",
}

# Checked in this order; ties keep it
_FACTOR_LABELS: dict[str, str] = {
    "high_load": "high external load",
    "low_sleep": "poor sleep the night before",
    "evening": "evening timing",
    "full_stomach": "dosing on a full stomach",
    "high_caffeine": "high caffeine intake",
}

_FACTOR_RECOMMENDATIONS: dict[str, str] = {
    "high_load": "Save doses for days with a lighter external load.",
    "low_sleep": "Skip dosing after a poor night of sleep.",
    "evening": "Move doses earlier in the day.",
    "full_stomach": "Dose on an empty stomach or after a light meal.",
    "high_caffeine": "Keep caffeine under 200 mg on dose days.",
}

EVENING_HOUR = 18
HIGH_CAFFEINE_MG = 200


@detector("day_clustering")
def detect_day_clustering(context: DetectionContext) -> Pattern | None:
    doses = context.doses
    if len(doses) < context.min_samples("day_clustering"):
        return None

    counts = Counter(dose.timestamp.weekday() for dose in doses)
    total = len(doses)
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    top_day, top_count = ranked[0]
    top_share = top_count / total
    if top_share <= 0.3:
        return None

    confidence = min(90, top_share * 100 + 20)

    if len(ranked) >= 2 and ranked[1][1] / total > 0.2:
        second_day, second_count = ranked[1]
        combined = (top_count + second_count) / total
        days = {top_day, second_day}
        return context.make_pattern(
            "day_clustering",
            title=f"Your {_DAY_NAMES[top_day]} and {_DAY_NAMES[second_day]} pattern",
            description=(
                f"{round(combined * 100)}% of your doses happen on these two days. "
                "Is this intentional?"
            ),
            confidence=confidence,
            evidence_dose_ids=[d.id for d in doses if d.timestamp.weekday() in days],
            evidence_check_in_ids=[],
            recommendation="Check that these days still suit your protocol rather than habit.",
        )

    return context.make_pattern(
        "day_clustering",
        title=f"{_DAY_NAMES[top_day]}s are your day",
        description=(
            f"{round(top_share * 100)}% of your doses happen on {_DAY_NAMES[top_day]}s. "
            "Your practice has a rhythm."
        ),
        confidence=confidence,
        evidence_dose_ids=[d.id for d in doses if d.timestamp.weekday() == top_day],
        evidence_check_in_ids=[],
        recommendation=f"Keep {_DAY_NAMES[top_day]} as your anchor day if it is working.",
    )


@detector("body_cluster", requires=("body_map",))
def detect_body_cluster(context: DetectionContext) -> Pattern | None:
    with_body = [c for c in context.check_ins if c.body_map]
    if len(with_body) < context.min_samples("body_cluster"):
        return None

    counts: Counter[str] = Counter()
    for check_in in with_body:
        counts.update(check_in.body_map)
    if not counts:
        return None

    region, count = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[0]
    share = count / len(with_body)
    if share < 0.4:
        return None

    label = _REGION_LABELS.get(region, region)
    return context.make_pattern(
        "body_cluster",
        title=f"You feel it in {label}",
        description=(
            f"{round(share * 100)}% of your check-ins note sensation in {label}. "
            "This is your body's signature response."
        ),
        confidence=min(85, share * 100 + 20),
        evidence_dose_ids=[],
        evidence_check_in_ids=[c.id for c in with_body if region in c.body_map],
        recommendation=f"Use sensation in {label} as an early cue when judging a dose.",
    )


@detector("anti_pattern")
def detect_anti_pattern(context: DetectionContext) -> Pattern | None:
    difficult = [
        p
        for p in context.with_check_in()
        if p.check_in.signals.stability <= 2 and p.check_in.signals.clarity <= 2
    ]
    if len(difficult) < context.min_samples("anti_pattern"):
        return None

    factors: Counter[str] = Counter({name: 0 for name in _FACTOR_LABELS})
    for pair in difficult:
        dose, check_in = pair.dose, pair.check_in
        if check_in.load == "high":
            factors["high_load"] += 1
        if dose.sleep_quality is not None and dose.sleep_quality <= 2:
            factors["low_sleep"] += 1
        if dose.timestamp.hour >= EVENING_HOUR:
            factors["evening"] += 1
        if dose.food_state == "full":
            factors["full_stomach"] += 1
        if dose.caffeine_mg is not None and dose.caffeine_mg > HIGH_CAFFEINE_MG:
            factors["high_caffeine"] += 1

    order = list(_FACTOR_LABELS)
    ranked = sorted(
        (item for item in factors.items() if item[1] >= 2),
        key=lambda item: (-item[1], order.index(item[0])),
    )
    if not ranked:
        return None

    factor, count = ranked[0]
    share = count / len(difficult)
    if share < 0.5:
        return None

    return context.make_pattern(
        "anti_pattern",
        title="Difficult experiences share this",
        description=(
            f"{round(share * 100)}% of your difficult experiences involved "
            f"{_FACTOR_LABELS[factor]}. This might be worth avoiding."
        ),
        confidence=min(80, share * 80 + 20),
        evidence_dose_ids=[p.dose.id for p in difficult],
        evidence_check_in_ids=[p.check_in.id for p in difficult],
        recommendation=_FACTOR_RECOMMENDATIONS[factor],
    )
