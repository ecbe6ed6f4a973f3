"""Personal dosing-calibration engine: threshold range, carryover and patterns."""

from .carryover import compute_carryover
from .errors import CompassError, MalformedRecord, UnitMismatch
from .matching import MatchedDose, match_doses_with_check_ins
from .models import CarryoverResult, CheckIn, DoseEvent, Pattern, Signals, ThresholdRange, UserSettings
from .normalization import normalize_check_in_record, normalize_dose_record, normalize_history
from .patterns import detect_patterns
from .policy import DEFAULT_POLICY, EnginePolicy
from .threshold_range import AboveThreshold, calculate_threshold_range, detect_above_threshold

__all__ = [
    "AboveThreshold",
    "CarryoverResult",
    "CheckIn",
    "CompassError",
    "DEFAULT_POLICY",
    "DoseEvent",
    "EnginePolicy",
    "MalformedRecord",
    "MatchedDose",
    "Pattern",
    "Signals",
    "ThresholdRange",
    "UnitMismatch",
    "UserSettings",
    "calculate_threshold_range",
    "compute_carryover",
    "detect_above_threshold",
    "detect_patterns",
    "match_doses_with_check_ins",
    "normalize_check_in_record",
    "normalize_dose_record",
    "normalize_history",
]
