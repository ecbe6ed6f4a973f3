"""Pre-built protocol scenarios for quick replays."""

from __future__ import annotations

from compass_replay.models import Scenario

STEADY_DISCOVERY = Scenario(
    name="steady_discovery",
    days=42,
    seed=101,
    schedule="every_3_days",
    adherence=0.9,
    base_dose=0.1,
    variability=0.15,
    sensitivity=3,
    half_life_hours=24.0,
)

SENSITIVE_STARTER = Scenario(
    name="sensitive_starter",
    days=42,
    seed=202,
    schedule="every_3_days",
    adherence=0.85,
    base_dose=0.08,
    variability=0.2,
    sensitivity=4,
    half_life_hours=24.0,
)

OVEREAGER_ESCALATION = Scenario(
    name="overeager_escalation",
    days=42,
    seed=303,
    schedule="every_2_days",
    adherence=0.95,
    base_dose=0.12,
    variability=0.1,
    sensitivity=3,
    escalation_per_dose=0.015,  # +1.5% per dose taken
    half_life_hours=48.0,
)

IRREGULAR_ADHERENCE = Scenario(
    name="irregular_adherence",
    days=56,
    seed=404,
    schedule="every_2_days",
    adherence=0.55,
    base_dose=0.1,
    variability=0.3,
    sensitivity=2,
    half_life_hours=24.0,
)

PRESETS: dict[str, Scenario] = {
    "steady_discovery": STEADY_DISCOVERY,
    "sensitive_starter": SENSITIVE_STARTER,
    "overeager_escalation": OVEREAGER_ESCALATION,
    "irregular_adherence": IRREGULAR_ADHERENCE,
}
