from __future__ import annotations

import logging
import random
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from threshold_compass.models import CheckIn, DoseEvent, Signals, UserSettings
from threshold_compass.patterns import (
    build_context,
    detect_patterns,
    detector,
    registered_pattern_types,
)
from threshold_compass.patterns import registry
from threshold_compass.patterns.trends import detect_green_trend, detect_interference_risk
from threshold_compass.policy import DEFAULT_POLICY

# Monday
MONDAY = datetime(2026, 1, 5, 8, tzinfo=timezone.utc)
USER = UserSettings(id="user-1")


def _dose(i: int, *, day: int | None = None, hour: int = 8, **fields) -> DoseEvent:
    timestamp = MONDAY.replace(hour=hour) + timedelta(days=i if day is None else day)
    return DoseEvent(id=f"d{i:02d}", amount=0.1, unit="g", timestamp=timestamp, **fields)


def _check_in(dose: DoseEvent, *, energy=3, clarity=3, stability=3, **fields) -> CheckIn:
    return CheckIn(
        id=f"c-{dose.id}",
        timestamp=dose.timestamp + timedelta(hours=2),
        signals=Signals(energy=energy, clarity=clarity, stability=stability),
        dose_id=dose.id,
        **fields,
    )


def _food_history(*, morning_sweetspot: bool = False):
    doses: list[DoseEvent] = []
    check_ins: list[CheckIn] = []
    for i in range(20):
        empty = i % 2 == 0
        extra = {}
        if morning_sweetspot:
            extra = {"timing_tag": "morning", "threshold_feel": "sweetspot" if empty else "under"}
        dose = _dose(i, food_state="empty" if empty else "full", **extra)
        clarity = (4 if i % 4 == 0 else 5) if empty else 2
        doses.append(dose)
        check_ins.append(_check_in(dose, clarity=clarity))
    return doses, check_ins


def _types(patterns) -> list[str]:
    return [p.type for p in patterns]


class TestFoodCorrelation:
    def test_empty_stomach_pattern(self):
        doses, check_ins = _food_history()
        patterns = detect_patterns(USER, doses, check_ins)
        assert _types(patterns) == ["food_correlation"]
        food = patterns[0]
        assert "empty stomach" in food.description
        assert food.confidence >= 50
        assert set(food.evidence_dose_ids) == {d.id for d in doses if d.food_state == "empty"}
        assert food.recommendation

    def test_small_separation_is_ignored(self):
        doses, _ = _food_history()
        check_ins = [_check_in(d, clarity=3 if d.food_state == "empty" else 2.5) for d in doses]
        assert "food_correlation" not in _types(detect_patterns(USER, doses, check_ins))

    def test_needs_matched_samples(self):
        doses, check_ins = _food_history()
        assert detect_patterns(USER, doses[:7], check_ins[:7]) == []


class TestGates:
    def _cycle_history(self):
        doses, check_ins = [], []
        for i in range(6):
            follicular = i < 3
            dose = _dose(i, cycle_day=5 if follicular else 20)
            level = 5 if follicular else 2
            doses.append(dose)
            check_ins.append(_check_in(dose, energy=level, clarity=level, stability=level))
        return doses, check_ins

    def test_cycle_detector_needs_tracking(self):
        doses, check_ins = self._cycle_history()
        assert "cycle_correlation" not in _types(detect_patterns(USER, doses, check_ins))

        tracking = UserSettings(id="user-1", menstrual_tracking=True)
        patterns = detect_patterns(tracking, doses, check_ins)
        assert _types(patterns) == ["cycle_correlation"]
        assert "follicular" in patterns[0].description

    def test_user_mapping_accepted(self):
        doses, check_ins = self._cycle_history()
        patterns = detect_patterns({"id": "user-1", "menstrual_tracking": "yes"}, doses, check_ins)
        assert _types(patterns) == ["cycle_correlation"]

    def test_body_map_capability(self):
        doses = [_dose(i, day=i * 3) for i in range(10)]
        plain = [_check_in(d) for d in doses]
        assert "body_map" not in build_context(USER, doses, plain).capabilities

        mapped = [_check_in(d, body_map=frozenset({"head"} if i % 5 else {"head", "gut"})) for i, d in enumerate(doses)]
        context = build_context(USER, doses, mapped)
        assert "body_map" in context.capabilities
        patterns = detect_patterns(USER, doses, mapped)
        assert _types(patterns) == ["body_cluster"]
        assert patterns[0].title == "You feel it in your head"
        assert patterns[0].confidence == 85


class TestOtherDetectors:
    def test_single_day_clustering(self):
        days = [0, 7, 14, 21, 28, 35, 1, 2, 3, 4]
        doses = [_dose(i, day=d) for i, d in enumerate(days)]
        patterns = detect_patterns(USER, doses, [])
        assert _types(patterns) == ["day_clustering"]
        assert patterns[0].title == "Mondays are your day"
        assert patterns[0].confidence == 80

    def test_two_day_clustering(self):
        # 4 Mondays, 3 Wednesdays, one each of Tue/Thu/Fri
        days = [0, 7, 14, 21, 2, 9, 16, 1, 3, 4]
        doses = [_dose(i, day=d) for i, d in enumerate(days)]
        patterns = detect_patterns(USER, doses, [])
        assert _types(patterns) == ["day_clustering"]
        assert patterns[0].title == "Your Monday and Wednesday pattern"
        assert patterns[0].description.startswith("70% of your doses")
        assert patterns[0].confidence == 60
        assert set(patterns[0].evidence_dose_ids) == {f"d{i:02d}" for i in range(7)}

    def test_second_day_at_twenty_percent_stays_single(self):
        days = [0, 7, 14, 21, 2, 9, 1, 3, 4, 5]
        doses = [_dose(i, day=d) for i, d in enumerate(days)]
        patterns = detect_patterns(USER, doses, [])
        assert patterns[0].title == "Mondays are your day"

    def test_no_clustering_at_thirty_percent(self):
        days = [0, 7, 14, 1, 8, 15, 2, 9, 3, 10]
        doses = [_dose(i, day=d) for i, d in enumerate(days)]
        assert "day_clustering" not in _types(detect_patterns(USER, doses, []))

    def _environment_history(self, outdoor_level: float, home_level: float, outdoor_count: int = 4):
        doses, check_ins = [], []
        for i in range(8):
            outdoor = i < outdoor_count
            level = outdoor_level if outdoor else home_level
            dose = _dose(i, day=i * 3, environment="outdoor" if outdoor else "home_alone")
            doses.append(dose)
            check_ins.append(_check_in(dose, energy=level, clarity=level, stability=level))
        return doses, check_ins

    def test_environment_correlation(self):
        doses, check_ins = self._environment_history(5, 3)
        patterns = detect_patterns(USER, doses, check_ins)
        assert _types(patterns) == ["environment_correlation"]
        env = patterns[0]
        assert env.title == "Outdoors works best"
        assert "outdoors" in env.description
        assert env.confidence == 85
        assert env.evidence_dose_ids == ("d00", "d01", "d02", "d03")
        assert len(env.evidence_check_in_ids) == 4

    def test_environment_needs_separation(self):
        doses, check_ins = self._environment_history(4, 3.7)
        assert "environment_correlation" not in _types(detect_patterns(USER, doses, check_ins))

    def test_environment_needs_two_per_group(self):
        doses, check_ins = self._environment_history(5, 3, outdoor_count=1)
        assert "environment_correlation" not in _types(detect_patterns(USER, doses, check_ins))

    def test_interference_risk(self):
        doses = [
            _dose(i, day=i * 3, day_classification="red" if i < 5 else "yellow")
            for i in range(10)
        ]
        patterns = detect_patterns(USER, doses, [])
        assert _types(patterns) == ["interference_risk"]
        assert patterns[0].confidence == 50
        assert set(patterns[0].evidence_dose_ids) == {f"d{i:02d}" for i in range(5)}

    def test_interference_risk_needs_enough_red_days(self):
        doses = [
            _dose(i, day=i * 3, day_classification="red" if i < 1 else "yellow")
            for i in range(10)
        ]
        assert detect_interference_risk(build_context(USER, doses, [])) is None

    def test_sleep_correlation(self):
        doses, check_ins = [], []
        for i in range(10):
            rested = i < 5
            dose = _dose(i, day=i * 3, sleep_quality=5 if rested else 1)
            doses.append(dose)
            check_ins.append(_check_in(dose, clarity=5 if rested else 2))
        patterns = detect_patterns(USER, doses, check_ins)
        assert _types(patterns) == ["sleep_correlation"]
        assert patterns[0].confidence == 90

    def test_anti_pattern_names_common_factor(self):
        doses, check_ins = [], []
        for i in range(5):
            dose = _dose(i, day=i * 3, hour=20)
            doses.append(dose)
            check_ins.append(_check_in(dose, clarity=1, stability=2))
        patterns = detect_patterns(USER, doses, check_ins)
        assert _types(patterns) == ["anti_pattern"]
        assert "evening timing" in patterns[0].description
        assert patterns[0].recommendation == "Move doses earlier in the day."

    def test_caffeine_first(self):
        doses, check_ins = [], []
        for i in range(8):
            first = i < 4
            dose = _dose(i, day=i * 3, caffeine_timing=1.5 if first else -1)
            doses.append(dose)
            check_ins.append(_check_in(dose, stability=4 if first else 3))
        patterns = detect_patterns(USER, doses, check_ins)
        assert _types(patterns) == ["caffeine_timing"]
        assert "before dosing" in patterns[0].description


class TestRanking:
    def test_sorted_by_confidence_and_capped(self):
        doses, check_ins = _food_history(morning_sweetspot=True)
        patterns = detect_patterns(USER, doses, check_ins)
        assert _types(patterns) == ["food_correlation", "timing_correlation"]
        assert [p.confidence for p in patterns] == [95, 90]

        capped = detect_patterns(USER, doses, check_ins, max_results=1)
        assert _types(capped) == ["food_correlation"]

    def test_confidence_floor(self):
        # 5 of 14 recent doses are green: 36% clears the share gate but not the floor
        doses = [
            _dose(i, day=i * 3, day_classification="green" if i < 5 else "yellow")
            for i in range(14)
        ]
        context = build_context(USER, doses, [])
        raw = detect_green_trend(context)
        assert raw is not None and raw.confidence == 36
        assert detect_patterns(USER, doses, []) == []

        lowered = replace(DEFAULT_POLICY, patterns=replace(DEFAULT_POLICY.patterns, confidence_low=30))
        assert _types(detect_patterns(USER, doses, [], policy=lowered)) == ["day_classification_trend"]

    def test_unclassified_doses_count_toward_trend_share(self):
        def history(green: int) -> list[DoseEvent]:
            return [
                _dose(i, day=i * 3, day_classification="green" if i < green else "unclassified")
                for i in range(10)
            ]

        # 3.5 rounds up to 4 green days needed out of 10
        assert detect_green_trend(build_context(USER, history(3), [])) is None
        trend = detect_green_trend(build_context(USER, history(4), []))
        assert trend is not None
        assert trend.confidence == 40

    def test_deterministic_and_order_independent(self):
        doses, check_ins = _food_history(morning_sweetspot=True)
        first = [p.to_dict() for p in detect_patterns(USER, doses, check_ins)]

        shuffled_doses, shuffled_check_ins = list(doses), list(check_ins)
        rng = random.Random(7)
        rng.shuffle(shuffled_doses)
        rng.shuffle(shuffled_check_ins)
        second = [p.to_dict() for p in detect_patterns(USER, shuffled_doses, shuffled_check_ins)]
        assert first == second

    def test_ids_depend_on_user(self):
        doses, check_ins = _food_history()
        mine = detect_patterns(USER, doses, check_ins)[0]
        theirs = detect_patterns(UserSettings(id="user-2"), doses, check_ins)[0]
        assert mine.id != theirs.id


class TestRegistry:
    def test_builtin_detectors_in_registration_order(self):
        types = registered_pattern_types()
        assert len(types) == 11
        assert types[0] == "food_correlation"
        assert types[-1] == "timing_correlation"

    def test_duplicate_registration_rejected(self):
        with pytest.raises(ValueError):
            detector("food_correlation")(lambda context: None)

    def test_unknown_capability_rejected(self):
        with pytest.raises(ValueError):
            detector("weather_correlation", requires=("weather",))(lambda context: None)
        assert "weather_correlation" not in registered_pattern_types()

    def test_failing_detector_is_isolated(self, monkeypatch, caplog):
        def boom(context):
            raise RuntimeError("detector bug")

        builtin = registry.get_detector("food_correlation")
        monkeypatch.setitem(
            registry._registry,
            "food_correlation",
            registry.RegisteredDetector(
                pattern_type="food_correlation",
                fn=boom,
                requires=builtin.requires,
                order=builtin.order,
            ),
        )
        doses, check_ins = _food_history(morning_sweetspot=True)
        with caplog.at_level(logging.ERROR, logger="threshold_compass.patterns.engine"):
            patterns = detect_patterns(USER, doses, check_ins)
        assert _types(patterns) == ["timing_correlation"]
        assert any(r.exc_info for r in caplog.records)
