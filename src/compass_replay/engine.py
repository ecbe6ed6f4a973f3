"""Replay engine: day-by-day loop simulating a discovery protocol.

Each simulated dose is scored from its size relative to the substance's
reference dose and from the residual carryover of earlier doses, then run
through the same normalizer, carryover model and threshold-range calculator
the app uses. The replay therefore exercises the engine end to end.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any

from threshold_compass.carryover import compute_carryover
from threshold_compass.models import DoseEvent
from threshold_compass.normalization import normalize_dose_record
from threshold_compass.policy import DEFAULT_POLICY, EnginePolicy
from threshold_compass.threshold_range import calculate_threshold_range

from compass_replay.models import BASELINE_DOSES, ReplayResult, ReplaySummary, Scenario

logger = logging.getLogger(__name__)

DOSE_HOUR = 8

INTERVENTIONS: dict[str, tuple[str, ...]] = {
    "overheating": (
        "Increase rest interval by 1 day.",
        "Reduce next 2 doses by 10-15%.",
        "Prioritize low-noise context tags.",
    ),
    "drifting": (
        "Hold dose steady for 3 sessions.",
        "Capture post-dose scores every dose day.",
        "Constrain timing to a single window.",
    ),
    "stabilizing": (
        "Maintain current schedule.",
        "Keep context tags consistent.",
        "Re-check threshold range after 10 doses.",
    ),
}


def _score(value: float) -> float:
    return max(0.0, min(10.0, round(value * 10) / 10))


def trend_note(green: int, yellow: int, red: int, dose_count: int) -> str:
    if red > max(2, int(dose_count * 0.22)):
        return "overheating"
    if yellow > green:
        return "drifting"
    return "stabilizing"


class ReplayEngine:
    """Seeded simulation of one scenario."""

    def __init__(
        self,
        scenario: Scenario,
        *,
        policy: EnginePolicy = DEFAULT_POLICY,
        generated_at: str | None = None,
    ):
        self.scenario = scenario
        self.policy = policy
        self.generated_at = generated_at
        self.rng = random.Random(scenario.seed)
        self.profile = policy.substance_profile(scenario.substance)

    def run(self) -> ReplayResult:
        """Run the scenario for its configured number of days."""
        scenario = self.scenario
        history: list[DoseEvent] = []
        events: list[dict[str, Any]] = []
        dose_number = 0

        for day in range(1, scenario.days + 1):
            at = scenario.start + timedelta(days=day - 1, hours=DOSE_HOUR)
            planned = (day - 1) % scenario.spacing_days == 0
            adheres = self.rng.random() <= scenario.adherence

            # Residual load from earlier doses only
            carryover = compute_carryover(
                history,
                at,
                scenario.half_life_hours,
                substance=scenario.substance,
                policy=self.policy,
            )

            if planned and adheres:
                dose_number += 1
                dose = self._simulate_dose(day, at, dose_number, carryover.effective_multiplier, carryover.percentage)
                history.append(dose)
                events.append(
                    {
                        "day_index": day,
                        "date": at.date().isoformat(),
                        "action": "dose",
                        "dose_id": dose.id,
                        "dose_amount": dose.amount,
                        "carryover_score": carryover.percentage,
                        "carryover_tier": carryover.tier,
                        "effective_dose": round(dose.amount * carryover.effective_multiplier, 3),
                        "signal_score": dose.signal,
                        "texture_score": dose.texture,
                        "interference_score": dose.interference,
                        "day_classification": dose.day_classification,
                        "threshold_feel": dose.threshold_feel,
                        "phase": "baseline" if dose_number <= BASELINE_DOSES else "context",
                        "dose_number": dose_number,
                    }
                )
                continue

            events.append(
                {
                    "day_index": day,
                    "date": at.date().isoformat(),
                    "action": "rest",
                    "dose_id": None,
                    "dose_amount": 0,
                    "carryover_score": carryover.percentage,
                    "carryover_tier": carryover.tier,
                    "effective_dose": 0,
                    "signal_score": None,
                    "texture_score": None,
                    "interference_score": None,
                    "day_classification": "unclassified",
                    "threshold_feel": None,
                    "phase": "baseline" if dose_number <= BASELINE_DOSES else "context",
                    "dose_number": None,
                }
            )

        summary = self._summarize(history)
        logger.info(
            "Replayed scenario %s: %d doses, trend %s",
            scenario.name,
            summary.dose_count,
            summary.trend_note,
            extra={"compass_scenario": scenario.name, "compass_seed": scenario.seed},
        )
        return ReplayResult(
            scenario=scenario,
            generated_at=self.generated_at or datetime.now(timezone.utc).isoformat(),
            events=events,
            summary=summary,
        )

    def _simulate_dose(
        self,
        day: int,
        at: datetime,
        dose_number: int,
        multiplier: float,
        residual: float,
    ) -> DoseEvent:
        scenario = self.scenario
        variation = 1 + (self.rng.random() - 0.5) * 2 * scenario.variability
        escalation = 1 + dose_number * scenario.escalation_per_dose
        amount = round(scenario.base_dose * variation * escalation, 3)

        # Dose strength as felt: size relative to the reference, dulled by carryover
        ratio = amount * multiplier / self.profile.reference_dose
        bias = (scenario.sensitivity - 3) * 0.8

        signal = _score(3 + 4 * ratio + self.rng.random() * 2 - bias - residual / 35)
        texture = _score(4 + self.rng.random() * 3 + bias * 0.4)
        interference = _score(
            0.5 + 6 * max(0.0, ratio - 1) + residual / 20 + self.rng.random() * 2 + bias
        )

        return normalize_dose_record(
            {
                "id": f"{scenario.name}-d{day:03d}",
                "amount": max(amount, 0.001),
                "unit": self.profile.unit,
                "dosed_at": at,
                "batch_id": scenario.name,
                "signal_score": signal,
                "texture_score": texture,
                "interference_score": interference,
                "timing_tag": "morning",
            },
            derive_feel=True,
            policy=self.policy.classification,
        )

    def _summarize(self, history: list[DoseEvent]) -> ReplaySummary:
        counts = {label: 0 for label in ("green", "yellow", "red", "unclassified")}
        for dose in history:
            counts[dose.day_classification] += 1

        threshold_range = calculate_threshold_range(history, self.scenario.name, policy=self.policy)
        if threshold_range is None:
            projection: dict[str, Any] = {
                "floor": None,
                "sweet": None,
                "ceiling": None,
                "confidence": None,
                "qualifier": None,
            }
        else:
            projection = {
                "floor": threshold_range.floor_dose,
                "sweet": threshold_range.sweet_spot,
                "ceiling": threshold_range.ceiling_dose,
                "confidence": threshold_range.confidence,
                "qualifier": threshold_range.qualifier,
            }
        projection["unit"] = self.profile.unit

        note = trend_note(counts["green"], counts["yellow"], counts["red"], len(history))
        return ReplaySummary(
            dose_count=len(history),
            classification_ratios=counts,
            threshold_projection=projection,
            trend_note=note,
            interventions=INTERVENTIONS[note],
        )
