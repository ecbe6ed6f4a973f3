from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import pytest

from threshold_compass.models import CheckIn, DoseEvent, Signals, ThresholdRange
from threshold_compass.threshold_range import (
    calculate_threshold_range,
    compare_batch_ranges,
    detect_above_threshold,
    range_progress,
    round_dose,
    suggest_dose,
)

T0 = datetime(2026, 1, 1, 8, tzinfo=timezone.utc)


def _events(rows: list[tuple[float, str | None]], *, unit: str = "mg", batch_id: str | None = None) -> list[DoseEvent]:
    return [
        DoseEvent(
            id=f"d{i:02d}",
            amount=amount,
            unit=unit,
            timestamp=T0 + timedelta(days=i),
            threshold_feel=feel,
            batch_id=batch_id,
        )
        for i, (amount, feel) in enumerate(rows)
    ]


def _scenario_a() -> list[DoseEvent]:
    sweet = [(a, "sweetspot") for a in (100, 102, 104, 98, 101, 103)]
    return _events(sweet + [(80, "under"), (85, "under"), (120, "over"), (125, "over")])


class TestCalculateThresholdRange:
    def test_tight_sweet_spot_cluster_is_calibrated(self):
        result = calculate_threshold_range(_scenario_a())
        assert result is not None
        assert result.floor_dose == 85
        assert result.ceiling_dose == 120
        assert result.sweet_spot == pytest.approx(101.33)
        assert result.confidence >= 70
        assert result.qualifier == "Calibrated range."
        assert result.doses_used == 10

    def test_four_events_is_insufficient(self):
        events = _events([(100, "sweetspot"), (90, "under"), (130, "over"), (101, "sweetspot")])
        assert calculate_threshold_range(events) is None

    def test_events_without_feel_are_excluded(self):
        events = _events([(100, "sweetspot")] * 4 + [(90, None), (95, None)])
        assert calculate_threshold_range(events) is None

    def test_other_batches_are_excluded(self):
        mine = _events([(100, "sweetspot")] * 5, batch_id="b1")
        theirs = [
            e.model_copy(update={"id": f"x{i}", "batch_id": "b2", "amount": 500.0})
            for i, e in enumerate(mine)
        ]
        result = calculate_threshold_range(mine + theirs, "b1")
        assert result is not None
        assert result.doses_used == 5
        assert result.sweet_spot == 100

    def test_mixed_units_abort(self, caplog):
        events = _events([(100, "sweetspot")] * 3) + _events([(0.1, "sweetspot")] * 3, unit="g")
        with caplog.at_level(logging.WARNING, logger="threshold_compass.threshold_range"):
            assert calculate_threshold_range(events) is None
        assert any("Threshold range aborted" in r.getMessage() for r in caplog.records)

    def test_percentile_floor_fallback(self):
        result = calculate_threshold_range(_events([(10, "sweetspot")] * 5))
        assert result is not None
        assert result.floor_dose == 10
        assert result.ceiling_dose is None
        assert result.sweet_spot == 10
        # 60*(1-e^-5/6) + 40 - 5 fallback penalty
        assert result.confidence == 69
        assert result.qualifier == "Working range. Refine with more doses."

    def test_ceiling_fallback_needs_ten_events(self):
        nine = [(float(a), "under") for a in range(10, 19)]
        assert calculate_threshold_range(_events(nine)).ceiling_dose is None

        ten = [(float(a), "under") for a in range(10, 20)]
        result = calculate_threshold_range(_events(ten))
        assert result.floor_dose == 19
        # 90th percentile of 10..19 by linear interpolation
        assert result.ceiling_dose == pytest.approx(18.1)
        assert result.sweet_spot == pytest.approx(18.55)

    def test_no_sweet_spot_without_both_bounds(self):
        result = calculate_threshold_range(_events([(10, "under")] * 3 + [(20, "nothing")] * 2))
        assert result.sweet_spot is None
        assert result.ceiling_dose is None

    def test_accepts_raw_rows(self):
        rows = [
            {"id": f"r{i}", "amount": "0,1", "unit": "g", "dosed_at": "2026-01-01T08:00:00Z", "zone": "sweet_spot"}
            for i in range(5)
        ]
        result = calculate_threshold_range(rows + [{"id": "broken"}])
        assert result is not None
        assert result.sweet_spot == 0.1

    def test_order_independent(self):
        events = _scenario_a()
        assert calculate_threshold_range(events) == calculate_threshold_range(list(reversed(events)))

    def test_wide_sweet_spot_lowers_confidence(self):
        tight = calculate_threshold_range(_scenario_a())
        loose_rows = [(a, "sweetspot") for a in (60, 140, 80, 120, 70, 130)]
        loose_rows += [(50, "under"), (55, "under"), (150, "over"), (160, "over")]
        loose = calculate_threshold_range(_events(loose_rows))
        assert loose.confidence < tight.confidence


def test_round_dose():
    assert round_dose(12.3456) == 12.35
    assert round_dose(0.12345) == 0.123


class TestRangeProgress:
    def test_statuses(self):
        low = range_progress(_events([(10, "sweetspot")] * 3))
        assert (low.status, low.doses_needed) == ("insufficient_data", 2)
        mid = range_progress(_events([(10, "sweetspot")] * 7))
        assert (mid.status, mid.doses_needed) == ("emerging", 3)
        high = range_progress(_events([(10, "sweetspot")] * 12))
        assert (high.status, high.doses_needed) == ("established", 0)
        assert "12 doses" in high.message


def _range(floor=80.0, sweet=100.0, ceiling=120.0) -> ThresholdRange:
    return ThresholdRange(
        floor_dose=floor,
        sweet_spot=sweet,
        ceiling_dose=ceiling,
        confidence=80,
        qualifier="Calibrated range.",
        doses_used=10,
    )


class TestCompareBatchRanges:
    def test_second_batch_more_potent(self):
        message = compare_batch_ranges(_range(sweet=150), _range(sweet=100), "Old", "New")
        assert message.startswith("New appears 50% more potent than Old")

    def test_first_batch_more_potent(self):
        message = compare_batch_ranges(_range(sweet=50), _range(sweet=100), "Old", "New")
        assert message.startswith("Old appears 50% more potent than New")

    def test_similar(self):
        assert "similar potency" in compare_batch_ranges(_range(), _range(sweet=110), "A", "B")

    def test_missing_sweet_spot(self):
        assert compare_batch_ranges(_range(sweet=None), _range(), "A", "B") is None


class TestSuggestDose:
    def test_standard_offsets_carryover(self):
        amount, rationale = suggest_dose(_range(), 0.8)
        assert amount == 125.0
        assert "20% carryover" in rationale

    def test_intentions_use_range_anchors(self):
        assert suggest_dose(_range(), 1.0, "subtle")[0] == 80.0
        assert suggest_dose(_range(), 1.0, "strong")[0] == 120.0

    def test_missing_anchor_or_no_sensitivity(self):
        assert suggest_dose(_range(ceiling=None), 1.0, "strong") is None
        assert suggest_dose(_range(), 0.0) is None


def _check_in(energy: float, clarity: float, stability: float) -> CheckIn:
    return CheckIn(
        id="c1",
        timestamp=T0 + timedelta(hours=2),
        signals=Signals(energy=energy, clarity=clarity, stability=stability),
    )


def _dose(amount: float) -> DoseEvent:
    return DoseEvent(id="d1", amount=amount, unit="mg", timestamp=T0)


class TestDetectAboveThreshold:
    def test_no_check_in(self):
        result = detect_above_threshold(_dose(100), None, _range())
        assert result.to_dict() == {"likely": False, "confidence": 0, "reason": "No check-in data"}

    def test_dose_well_over_ceiling(self):
        result = detect_above_threshold(_dose(150), _check_in(3, 3, 3), _range())
        assert (result.likely, result.confidence) == (True, 80)
        assert "above your established high threshold" in result.reason

    def test_twenty_percent_over_ceiling_is_not_enough(self):
        result = detect_above_threshold(_dose(144), _check_in(3, 3, 3), _range())
        assert (result.likely, result.confidence) == (False, 50)

    def test_carryover_scales_effective_dose(self):
        assert not detect_above_threshold(_dose(150), _check_in(3, 3, 3), _range(), 0.8).likely

    def test_perceptual_signals(self):
        result = detect_above_threshold(_dose(100), _check_in(4, 5, 3), _range())
        assert (result.likely, result.confidence) == (True, 60)

    def test_high_energy_low_stability(self):
        result = detect_above_threshold(_dose(100), _check_in(5, 3, 2), None)
        assert (result.likely, result.confidence) == (True, 70)
        assert "low stability" in result.reason

    def test_clarity_checked_before_stability(self):
        assert detect_above_threshold(_dose(100), _check_in(5, 5, 1), None).confidence == 60

    def test_missing_ceiling_falls_through_to_signals(self):
        result = detect_above_threshold(_dose(500), _check_in(3, 3, 3), _range(ceiling=None))
        assert result.to_dict() == {
            "likely": False,
            "confidence": 50,
            "reason": "Signals within normal threshold range.",
        }

    def test_accepts_raw_rows(self):
        result = detect_above_threshold(
            {"id": "d1", "amount": "150", "unit": "mg", "timestamp": "2026-01-01T08:00:00Z"},
            {"id": "c1", "timestamp": "2026-01-01T10:00:00Z", "energy": 3, "clarity": 3, "stability": 3},
            _range(),
        )
        assert result.confidence == 80
