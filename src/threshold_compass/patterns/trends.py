"""Detectors over recent day classifications and timing tags.

Shares are taken over all recent doses, unclassified ones included, and the
minimum counts round half up.
"""

from __future__ import annotations

from ..models import DoseEvent, Pattern
from .context import DetectionContext, round_half_up
from .registry import detector

# Only the most recent doses describe a trend
TREND_WINDOW = 120
MAX_TREND_EVIDENCE = 12


def _recent(context: DetectionContext) -> list[DoseEvent]:
    return sorted(context.doses, key=lambda d: (d.timestamp, d.id), reverse=True)[:TREND_WINDOW]


def _evidence(doses: list[DoseEvent]) -> list[str]:
    return [d.id for d in doses[:MAX_TREND_EVIDENCE]]


@detector("day_classification_trend")
def detect_green_trend(context: DetectionContext) -> Pattern | None:
    recent = _recent(context)
    if len(recent) < context.min_samples("day_classification_trend"):
        return None

    green = [d for d in recent if d.day_classification == "green"]
    if len(green) < max(3, round_half_up(len(recent) * 0.35)):
        return None

    return context.make_pattern(
        "day_classification_trend",
        title="Strong green-day response",
        description="A high proportion of your recent doses are classified green.",
        confidence=min(95, len(green) / len(recent) * 100),
        evidence_dose_ids=_evidence(green),
        evidence_check_in_ids=[],
        recommendation="Hold dose steady and keep context consistent for 2-3 sessions.",
    )


@detector("interference_risk")
def detect_interference_risk(context: DetectionContext) -> Pattern | None:
    recent = _recent(context)
    if len(recent) < context.min_samples("interference_risk"):
        return None

    red = [d for d in recent if d.day_classification == "red"]
    if len(red) < max(2, round_half_up(len(recent) * 0.2)):
        return None

    return context.make_pattern(
        "interference_risk",
        title="Interference drift",
        description="Red-day interference is showing up frequently in recent logs.",
        confidence=min(95, len(red) / len(recent) * 100),
        evidence_dose_ids=_evidence(red),
        evidence_check_in_ids=[],
        recommendation="Reduce dose slightly or increase spacing between sessions.",
    )


@detector("timing_correlation")
def detect_timing_correlation(context: DetectionContext) -> Pattern | None:
    recent = _recent(context)
    if len(recent) < context.min_samples("timing_correlation"):
        return None

    morning = [d for d in recent if d.timing_tag == "morning"]
    sweet = [d for d in recent if d.threshold_feel == "sweetspot"]
    if len(morning) < 4 or len(sweet) < 4:
        return None

    overlap = [d for d in morning if d.threshold_feel == "sweetspot"]
    if len(overlap) < 3:
        return None

    return context.make_pattern(
        "timing_correlation",
        title="Morning timing correlation",
        description="Morning doses appear to align with sweet-spot reports.",
        confidence=min(90, len(overlap) * 18),
        evidence_dose_ids=_evidence(overlap),
        evidence_check_in_ids=[],
        recommendation="Prefer morning protocol windows when practical.",
    )
