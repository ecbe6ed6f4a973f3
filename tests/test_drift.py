from __future__ import annotations

from datetime import datetime, timedelta, timezone

from threshold_compass.drift import NO_DRIFT, detect_drift
from threshold_compass.models import DoseEvent, ThresholdRange

T0 = datetime(2026, 1, 1, 8, tzinfo=timezone.utc)

RANGE = ThresholdRange(
    floor_dose=80.0,
    sweet_spot=100.0,
    ceiling_dose=120.0,
    confidence=80,
    qualifier="Calibrated range.",
    doses_used=10,
)


def _doses(amounts: list[float]) -> list[DoseEvent]:
    # oldest first
    return [
        DoseEvent(id=f"d{i}", amount=a, unit="mg", timestamp=T0 + timedelta(days=i))
        for i, a in enumerate(amounts)
    ]


def test_latest_doses_above_ceiling():
    result = detect_drift(_doses([100, 100, 130, 130, 130]), RANGE)
    assert result.is_drifting
    assert result.direction == "above"
    assert result.severity == "warning"
    assert result.message == "Recent doses averaging 130.0, above your ceiling of 120.0"


def test_latest_doses_below_floor():
    result = detect_drift(_doses([100, 70, 70, 70]), RANGE)
    assert result.direction == "below"
    assert result.severity == "info"


def test_only_latest_three_count():
    assert detect_drift(_doses([200, 200, 100, 100, 100]), RANGE) == NO_DRIFT


def test_input_order_does_not_matter():
    doses = _doses([100, 100, 130, 130, 130])
    assert detect_drift(list(reversed(doses)), RANGE) == detect_drift(doses, RANGE)


def test_needs_three_doses_and_complete_range():
    assert detect_drift(_doses([200, 200]), RANGE) == NO_DRIFT
    incomplete = ThresholdRange(
        floor_dose=80.0,
        sweet_spot=100.0,
        ceiling_dose=None,
        confidence=40,
        qualifier="Preliminary range. Keep logging.",
        doses_used=6,
    )
    assert detect_drift(_doses([200, 200, 200]), incomplete) == NO_DRIFT
    assert detect_drift(_doses([200, 200, 200]), None) == NO_DRIFT
