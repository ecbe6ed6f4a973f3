"""Core data models for protocol replays."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any

from threshold_compass.normalization import parse_timestamp
from threshold_compass.policy import substance_names

SCHEDULE_SPACING: dict[str, int] = {
    "every_2_days": 2,
    "every_3_days": 3,
}

# First N doses establish a baseline; later doses are "context" doses
BASELINE_DOSES = 4


@dataclass(frozen=True)
class Scenario:
    """Immutable replay configuration: defines one simulated protocol."""

    name: str
    days: int
    seed: int
    schedule: str  # every_2_days, every_3_days
    adherence: float  # probability a planned dose is actually taken
    base_dose: float
    variability: float  # +/- fraction applied to each dose
    sensitivity: int  # 1-5, 3 is neutral
    escalation_per_dose: float = 0.0  # e.g. 0.015 = +1.5% per dose taken
    substance: str = "psilocybin"
    half_life_hours: float | None = None
    start: datetime = field(default_factory=lambda: datetime(2026, 1, 1, tzinfo=timezone.utc))

    def __post_init__(self) -> None:
        if not self.name.strip():
            raise ValueError("scenario name must not be empty")
        if self.days < 1:
            raise ValueError(f"{self.name}: days must be at least 1")
        if self.schedule not in SCHEDULE_SPACING:
            raise ValueError(
                f"{self.name}: unknown schedule {self.schedule!r} "
                f"(expected one of {sorted(SCHEDULE_SPACING)})"
            )
        if not 0.0 <= self.adherence <= 1.0:
            raise ValueError(f"{self.name}: adherence must be within [0, 1]")
        if self.base_dose <= 0:
            raise ValueError(f"{self.name}: base_dose must be positive")
        if not 0.0 <= self.variability < 1.0:
            raise ValueError(f"{self.name}: variability must be within [0, 1)")
        if not 1 <= self.sensitivity <= 5:
            raise ValueError(f"{self.name}: sensitivity must be within [1, 5]")
        if self.substance not in substance_names():
            raise ValueError(f"{self.name}: unknown substance {self.substance!r}")
        if self.half_life_hours is not None and self.half_life_hours <= 0:
            raise ValueError(f"{self.name}: half_life_hours must be positive")

    @property
    def spacing_days(self) -> int:
        return SCHEDULE_SPACING[self.schedule]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Scenario:
        """Build a scenario from JSON data; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        kwargs = {key: value for key, value in data.items() if key in known}
        if "start" in kwargs:
            start = parse_timestamp(kwargs["start"])
            if start is None:
                raise ValueError(f"invalid scenario start: {kwargs['start']!r}")
            kwargs["start"] = start
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "days": self.days,
            "seed": self.seed,
            "schedule": self.schedule,
            "adherence": self.adherence,
            "base_dose": self.base_dose,
            "variability": self.variability,
            "sensitivity": self.sensitivity,
            "escalation_per_dose": self.escalation_per_dose,
            "substance": self.substance,
            "half_life_hours": self.half_life_hours,
            "start": self.start.isoformat(),
        }


@dataclass(frozen=True)
class ReplaySummary:
    dose_count: int
    classification_ratios: dict[str, int]
    threshold_projection: dict[str, Any]
    trend_note: str
    interventions: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "dose_count": self.dose_count,
            "classification_ratios": dict(self.classification_ratios),
            "threshold_projection": dict(self.threshold_projection),
            "trend_note": self.trend_note,
            "interventions": list(self.interventions),
        }


@dataclass(frozen=True)
class ReplayResult:
    scenario: Scenario
    generated_at: str
    events: list[dict[str, Any]]
    summary: ReplaySummary

    @property
    def dose_events(self) -> list[dict[str, Any]]:
        return [e for e in self.events if e["action"] == "dose"]

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenario": self.scenario.name,
            "parameters": self.scenario.to_dict(),
            "generated_at": self.generated_at,
            "events": self.events,
            "summary": self.summary.to_dict(),
        }
