"""Dose drift relative to an established threshold range."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, Literal, Mapping

from .models import DoseEvent, ThresholdRange
from .normalization import coerce_doses

DRIFT_WINDOW = 3


@dataclass(frozen=True)
class DriftResult:
    is_drifting: bool
    direction: Literal["above", "below"] | None
    message: str
    severity: Literal["info", "warning"]

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_drifting": self.is_drifting,
            "direction": self.direction,
            "message": self.message,
            "severity": self.severity,
        }


NO_DRIFT = DriftResult(is_drifting=False, direction=None, message="", severity="info")


def detect_drift(
    recent_doses: Iterable[DoseEvent | Mapping[str, Any]],
    threshold_range: ThresholdRange | None,
) -> DriftResult:
    """Flag when the average of the latest doses leaves the personal range."""
    if (
        threshold_range is None
        or threshold_range.sweet_spot is None
        or threshold_range.floor_dose is None
        or threshold_range.ceiling_dose is None
    ):
        return NO_DRIFT

    doses = coerce_doses(recent_doses)
    if len(doses) < DRIFT_WINDOW:
        return NO_DRIFT

    latest = sorted(doses, key=lambda d: (d.timestamp, d.id), reverse=True)[:DRIFT_WINDOW]
    average = math.fsum(d.amount for d in latest) / len(latest)

    if average > threshold_range.ceiling_dose:
        return DriftResult(
            is_drifting=True,
            direction="above",
            message=(
                f"Recent doses averaging {average:.1f}, "
                f"above your ceiling of {threshold_range.ceiling_dose}"
            ),
            severity="warning",
        )
    if average < threshold_range.floor_dose:
        return DriftResult(
            is_drifting=True,
            direction="below",
            message=(
                f"Recent doses averaging {average:.1f}, "
                f"below your floor of {threshold_range.floor_dose}"
            ),
            severity="info",
        )
    return NO_DRIFT
