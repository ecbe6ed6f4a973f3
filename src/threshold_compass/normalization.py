"""Normalization of raw diary rows into canonical dose and check-in records.

Supports the collaborator's column names (``dosed_at``, ``signal_score``,
``threshold_zone`` ...) as well as the canonical field names, decimal
strings with either separator, and nested or flat check-in signals.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from .errors import MalformedRecord
from .models import DAY_CLASSIFICATIONS, FOOD_STATES, CheckIn, DoseEvent
from .policy import DEFAULT_POLICY, ClassificationPolicy

logger = logging.getLogger(__name__)

_DOSE_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("id", "dose_log_id", "uuid"),
    "amount": ("amount", "dose_amount", "dose"),
    "unit": ("unit", "dose_unit"),
    "timestamp": ("timestamp", "dosed_at", "occurred_at", "logged_at"),
    "batch_id": ("batch_id", "batch"),
    "signal": ("signal", "signal_score"),
    "texture": ("texture", "texture_score"),
    "interference": ("interference", "interference_score"),
    "threshold_feel": ("threshold_feel", "feel", "threshold_zone", "zone"),
    "day_classification": ("day_classification", "classification"),
    "food_state": ("food_state", "food"),
    "sleep_quality": ("sleep_quality", "sleep"),
    "environment": ("environment", "env", "setting"),
    "caffeine_timing": ("caffeine_timing", "caffeine_hours_before"),
    "caffeine_mg": ("caffeine_mg", "caffeine"),
    "cycle_day": ("cycle_day",),
    "timing_tag": ("timing_tag", "timing"),
}

_CHECK_IN_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("id", "check_in_id", "uuid"),
    "timestamp": ("timestamp", "checked_in_at", "occurred_at", "created_at"),
    "dose_id": ("dose_id", "dose_log_id"),
    "body_map": ("body_map", "body", "regions"),
    "load": ("load", "load_level", "external_load"),
}

_SIGNAL_FIELDS: tuple[str, ...] = ("energy", "clarity", "stability")

_FEEL_ALIASES: dict[str, str] = {
    "nothing": "nothing",
    "none": "nothing",
    "sub": "nothing",
    "under": "under",
    "low": "under",
    "sweetspot": "sweetspot",
    "sweet_spot": "sweetspot",
    "sweet-spot": "sweetspot",
    "sweet": "sweetspot",
    "over": "over",
    "high": "over",
}

_ZONE_BY_FEEL: dict[str, str] = {
    "nothing": "sub",
    "under": "low",
    "sweetspot": "sweet_spot",
    "over": "over",
}

_LOAD_ALIASES: dict[str, str] = {
    "low": "low",
    "med": "med",
    "medium": "med",
    "mid": "med",
    "high": "high",
}

_FOOD_ALIASES: dict[str, str] = {
    "empty": "empty",
    "fasted": "empty",
    "empty_stomach": "empty",
    "light": "light",
    "snack": "light",
    "full": "full",
    "meal": "full",
    "full_meal": "full",
}


@dataclass(frozen=True)
class RejectedRecord:
    kind: str
    index: int
    code: str
    reason: str


@dataclass(frozen=True)
class NormalizedHistory:
    doses: tuple[DoseEvent, ...]
    check_ins: tuple[CheckIn, ...]
    rejected: tuple[RejectedRecord, ...]


def _parse_decimal(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        parsed = float(value)
        return parsed if math.isfinite(parsed) else None
    if not isinstance(value, str):
        return None

    raw = value.strip()
    if not raw:
        return None

    if "," in raw and "." in raw:
        comma_idx = raw.rfind(",")
        dot_idx = raw.rfind(".")
        if comma_idx > dot_idx:
            raw = raw.replace(".", "").replace(",", ".")
        else:
            raw = raw.replace(",", "")
    elif "," in raw:
        raw = raw.replace(",", ".")

    try:
        parsed = float(raw)
    except ValueError:
        return None
    return parsed if math.isfinite(parsed) else None


def _parse_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return float(value) > 0.0
    if not isinstance(value, str):
        return None

    raw = value.strip().lower()
    if raw in {"true", "yes", "y", "1", "on"}:
        return True
    if raw in {"false", "no", "n", "0", "off"}:
        return False
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO strings, datetimes and epoch seconds/milliseconds.

    Naive values are taken as UTC. Returns None for anything unparseable.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, bool):
        return None
    elif isinstance(value, (int, float)):
        if not math.isfinite(float(value)):
            return None
        seconds = float(value)
        if abs(seconds) > 1e11:
            seconds /= 1000.0
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        if raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _pick(row: Mapping[str, Any], aliases: tuple[str, ...]) -> Any:
    for key in aliases:
        if key in row and row[key] is not None:
            return row[key]
    return None


def _text(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


def _malformed(code: str, message: str, field: str | None = None) -> MalformedRecord:
    return MalformedRecord(code=code, message=message, field=field)


def _optional_number(
    row: Mapping[str, Any],
    field: str,
    aliases: tuple[str, ...],
    *,
    integral: bool = False,
) -> float | int | None:
    raw = _pick(row, aliases)
    if raw is None:
        return None
    parsed = _parse_decimal(raw)
    if parsed is None:
        raise _malformed(f"invalid_{field}", f"{field} is not a number: {raw!r}", field)
    if integral:
        return int(round(parsed))
    return parsed


def normalize_threshold_feel(value: Any) -> str | None:
    """Map a feel or a zone label onto the canonical threshold feel."""
    text = _text(value)
    if text is None:
        return None
    return _FEEL_ALIASES.get(text.lower())


def feel_to_zone(feel: str | None) -> str | None:
    if feel is None:
        return None
    return _ZONE_BY_FEEL.get(feel)


def zone_to_feel(zone: str | None) -> str | None:
    return normalize_threshold_feel(zone)


def classify_day(
    signal: float | None,
    texture: float | None,
    interference: float | None,
    policy: ClassificationPolicy | None = None,
) -> str:
    """Bucket a dosing day from its post-dose scores."""
    policy = policy or DEFAULT_POLICY.classification
    if signal is None or texture is None or interference is None:
        return "unclassified"
    if signal >= policy.green_min_signal and interference <= policy.green_max_interference:
        return "green"
    if interference >= policy.red_min_interference:
        return "red"
    if interference >= policy.yellow_min_interference or texture >= policy.yellow_min_texture:
        return "yellow"
    return "unclassified"


def threshold_feel_from_scores(
    signal: float,
    interference: float,
    policy: ClassificationPolicy | None = None,
) -> str:
    policy = policy or DEFAULT_POLICY.classification
    if signal <= policy.nothing_max_signal and interference <= policy.nothing_max_interference:
        return "nothing"
    if signal >= policy.sweetspot_min_signal and interference <= policy.sweetspot_max_interference:
        return "sweetspot"
    if interference >= policy.over_min_interference:
        return "over"
    return "under"


def _validation_message(exc: ValidationError) -> tuple[str | None, str]:
    errors = exc.errors()
    if not errors:
        return None, str(exc)
    first = errors[0]
    loc = ".".join(str(part) for part in first.get("loc", ()))
    return (loc or None), f"{loc}: {first.get('msg', 'invalid value')}"


def normalize_dose_record(
    row: Mapping[str, Any],
    *,
    default_unit: str | None = None,
    derive_feel: bool = False,
    policy: ClassificationPolicy | None = None,
) -> DoseEvent:
    """Build a DoseEvent from one raw row.

    Raises MalformedRecord when a required field is missing or a value is
    out of range. ``derive_feel`` fills a missing threshold feel from the
    signal/interference scores.
    """
    if isinstance(row, DoseEvent):
        return row
    if not isinstance(row, Mapping):
        raise _malformed("not_a_mapping", f"dose row must be a mapping, got {type(row).__name__}")

    policy = policy or DEFAULT_POLICY.classification

    dose_id = _text(_pick(row, _DOSE_ALIASES["id"]))
    if dose_id is None:
        raise _malformed("missing_id", "dose row has no id", "id")

    amount = _parse_decimal(_pick(row, _DOSE_ALIASES["amount"]))
    if amount is None:
        raise _malformed("missing_amount", "dose row has no numeric amount", "amount")

    unit = _text(_pick(row, _DOSE_ALIASES["unit"])) or _text(default_unit)
    if unit is None:
        raise _malformed("missing_unit", "dose row has no unit", "unit")

    timestamp = parse_timestamp(_pick(row, _DOSE_ALIASES["timestamp"]))
    if timestamp is None:
        raise _malformed("invalid_timestamp", "dose row has no parseable timestamp", "timestamp")

    signal = _optional_number(row, "signal", _DOSE_ALIASES["signal"])
    texture = _optional_number(row, "texture", _DOSE_ALIASES["texture"])
    interference = _optional_number(row, "interference", _DOSE_ALIASES["interference"])

    raw_feel = _pick(row, _DOSE_ALIASES["threshold_feel"])
    threshold_feel = normalize_threshold_feel(raw_feel)
    if raw_feel is not None and threshold_feel is None:
        raise _malformed("invalid_threshold_feel", f"unknown threshold feel {raw_feel!r}", "threshold_feel")
    if threshold_feel is None and derive_feel and signal is not None and interference is not None:
        threshold_feel = threshold_feel_from_scores(signal, interference, policy)

    day_classification = classify_day(signal, texture, interference, policy)
    if day_classification == "unclassified":
        provided = _text(_pick(row, _DOSE_ALIASES["day_classification"]))
        if provided is not None and provided.lower() in DAY_CLASSIFICATIONS:
            day_classification = provided.lower()

    food_raw = _text(_pick(row, _DOSE_ALIASES["food_state"]))
    food_state = None
    if food_raw is not None:
        food_state = _FOOD_ALIASES.get(food_raw.lower())
        if food_state not in FOOD_STATES:
            raise _malformed("invalid_food_state", f"unknown food state {food_raw!r}", "food_state")

    payload = {
        "id": dose_id,
        "amount": amount,
        "unit": unit,
        "timestamp": timestamp,
        "batch_id": _text(_pick(row, _DOSE_ALIASES["batch_id"])),
        "signal": signal,
        "texture": texture,
        "interference": interference,
        "threshold_feel": threshold_feel,
        "day_classification": day_classification,
        "food_state": food_state,
        "sleep_quality": _optional_number(row, "sleep_quality", _DOSE_ALIASES["sleep_quality"], integral=True),
        "environment": _text(_pick(row, _DOSE_ALIASES["environment"])),
        "caffeine_timing": _optional_number(row, "caffeine_timing", _DOSE_ALIASES["caffeine_timing"]),
        "caffeine_mg": _optional_number(row, "caffeine_mg", _DOSE_ALIASES["caffeine_mg"]),
        "cycle_day": _optional_number(row, "cycle_day", _DOSE_ALIASES["cycle_day"], integral=True),
        "timing_tag": _text(_pick(row, _DOSE_ALIASES["timing_tag"])),
    }
    if payload["environment"] is not None:
        payload["environment"] = payload["environment"].lower()
    if payload["timing_tag"] is not None:
        payload["timing_tag"] = payload["timing_tag"].lower()

    try:
        return DoseEvent.model_validate(payload)
    except ValidationError as exc:
        field, message = _validation_message(exc)
        raise _malformed("validation_error", message, field) from exc


def _body_regions(value: Any) -> frozenset[str]:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        items: Iterable[Any] = value.replace(";", ",").split(",")
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = value
    else:
        return frozenset()

    regions: set[str] = set()
    for item in items:
        if isinstance(item, Mapping):
            item = item.get("region")
        text = _text(item)
        if text is not None:
            regions.add(text.lower())
    return frozenset(regions)


def normalize_check_in_record(row: Mapping[str, Any]) -> CheckIn:
    """Build a CheckIn from one raw row; raises MalformedRecord."""
    if isinstance(row, CheckIn):
        return row
    if not isinstance(row, Mapping):
        raise _malformed("not_a_mapping", f"check-in row must be a mapping, got {type(row).__name__}")

    check_in_id = _text(_pick(row, _CHECK_IN_ALIASES["id"]))
    if check_in_id is None:
        raise _malformed("missing_id", "check-in row has no id", "id")

    timestamp = parse_timestamp(_pick(row, _CHECK_IN_ALIASES["timestamp"]))
    if timestamp is None:
        raise _malformed("invalid_timestamp", "check-in row has no parseable timestamp", "timestamp")

    nested = row.get("signals")
    source: Mapping[str, Any] = nested if isinstance(nested, Mapping) else row
    signals: dict[str, float] = {}
    for name in _SIGNAL_FIELDS:
        parsed = _parse_decimal(source.get(name))
        if parsed is None:
            raise _malformed(f"missing_{name}", f"check-in has no numeric {name} signal", f"signals.{name}")
        signals[name] = parsed

    conditions = row.get("conditions")
    raw_load = conditions.get("load") if isinstance(conditions, Mapping) else None
    if raw_load is None:
        raw_load = _pick(row, _CHECK_IN_ALIASES["load"])
    load_text = _text(raw_load)
    load = None
    if load_text is not None:
        load = _LOAD_ALIASES.get(load_text.lower())
        if load is None:
            raise _malformed("invalid_load", f"unknown load level {load_text!r}", "load")

    payload = {
        "id": check_in_id,
        "timestamp": timestamp,
        "signals": signals,
        "dose_id": _text(_pick(row, _CHECK_IN_ALIASES["dose_id"])),
        "body_map": _body_regions(_pick(row, _CHECK_IN_ALIASES["body_map"])),
        "load": load,
    }
    try:
        return CheckIn.model_validate(payload)
    except ValidationError as exc:
        field, message = _validation_message(exc)
        raise _malformed("validation_error", message, field) from exc


def chronological(records: Iterable[Any]) -> list[Any]:
    """Sort records by (timestamp, id) so every consumer sees one order."""
    return sorted(records, key=lambda record: (record.timestamp, record.id))


def normalize_history(
    dose_rows: Iterable[Mapping[str, Any]],
    check_in_rows: Iterable[Mapping[str, Any]] = (),
    *,
    default_unit: str | None = None,
    derive_feel: bool = False,
    policy: ClassificationPolicy | None = None,
) -> NormalizedHistory:
    """Normalize a user's history once; malformed rows are skipped, not fatal."""
    doses: list[DoseEvent] = []
    check_ins: list[CheckIn] = []
    rejected: list[RejectedRecord] = []

    for index, row in enumerate(dose_rows):
        try:
            doses.append(
                normalize_dose_record(
                    row,
                    default_unit=default_unit,
                    derive_feel=derive_feel,
                    policy=policy,
                )
            )
        except MalformedRecord as exc:
            rejected.append(RejectedRecord("dose", index, exc.code, exc.message))
            logger.debug(
                "Skipped malformed dose row %d: %s",
                index,
                exc.message,
                extra={"compass_record_kind": "dose", "compass_error_code": exc.code},
            )

    for index, row in enumerate(check_in_rows):
        try:
            check_ins.append(normalize_check_in_record(row))
        except MalformedRecord as exc:
            rejected.append(RejectedRecord("check_in", index, exc.code, exc.message))
            logger.debug(
                "Skipped malformed check-in row %d: %s",
                index,
                exc.message,
                extra={"compass_record_kind": "check_in", "compass_error_code": exc.code},
            )

    return NormalizedHistory(
        doses=tuple(chronological(doses)),
        check_ins=tuple(chronological(check_ins)),
        rejected=tuple(rejected),
    )


def coerce_doses(
    records: Iterable[DoseEvent | Mapping[str, Any]],
    *,
    default_unit: str | None = None,
) -> list[DoseEvent]:
    """Accept canonical events or raw rows; drop anything malformed."""
    doses: list[DoseEvent] = []
    for record in records:
        try:
            doses.append(normalize_dose_record(record, default_unit=default_unit))
        except MalformedRecord as exc:
            logger.debug(
                "Dropped malformed dose: %s",
                exc.message,
                extra={"compass_record_kind": "dose", "compass_error_code": exc.code},
            )
    return chronological(doses)


def coerce_check_ins(records: Iterable[CheckIn | Mapping[str, Any]]) -> list[CheckIn]:
    check_ins: list[CheckIn] = []
    for record in records:
        try:
            check_ins.append(normalize_check_in_record(record))
        except MalformedRecord as exc:
            logger.debug(
                "Dropped malformed check-in: %s",
                exc.message,
                extra={"compass_record_kind": "check_in", "compass_error_code": exc.code},
            )
    return chronological(check_ins)


def parse_flag(value: Any) -> bool:
    """Lenient boolean used for user settings such as menstrual tracking."""
    return bool(_parse_bool(value))
