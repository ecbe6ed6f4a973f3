"""Canonical records consumed by the engine and the typed results it returns.

Input records are frozen pydantic models; the normalizer is the usual way to
build them from raw diary rows. Results are frozen dataclasses whose
``to_dict()`` keys are the compatibility surface for the presentation layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ThresholdFeel = Literal["nothing", "under", "sweetspot", "over"]
DayClassification = Literal["green", "yellow", "red", "unclassified"]
FoodState = Literal["empty", "light", "full"]
LoadLevel = Literal["low", "med", "high"]
CarryoverTier = Literal["clear", "mild", "moderate", "elevated"]

THRESHOLD_FEELS: tuple[str, ...] = ("nothing", "under", "sweetspot", "over")
DAY_CLASSIFICATIONS: tuple[str, ...] = ("green", "yellow", "red", "unclassified")
FOOD_STATES: tuple[str, ...] = ("empty", "light", "full")


def _ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _required_text(value: str, field_name: str) -> str:
    cleaned = value.strip()
    if not cleaned:
        raise ValueError(f"{field_name} must not be empty")
    return cleaned


class DoseEvent(BaseModel):
    """One administered dose. Read-only to the engine."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    amount: float = Field(gt=0, allow_inf_nan=False)
    unit: str
    timestamp: datetime
    batch_id: str | None = None
    signal: float | None = Field(default=None, ge=0, le=10)
    texture: float | None = Field(default=None, ge=0, le=10)
    interference: float | None = Field(default=None, ge=0, le=10)
    threshold_feel: ThresholdFeel | None = None
    day_classification: DayClassification = "unclassified"
    food_state: FoodState | None = None
    sleep_quality: int | None = Field(default=None, ge=1, le=5)
    environment: str | None = None
    caffeine_timing: float | None = Field(default=None, allow_inf_nan=False)
    caffeine_mg: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    cycle_day: int | None = Field(default=None, ge=1, le=40)
    timing_tag: str | None = None

    @field_validator("id", "unit")
    @classmethod
    def validate_required_strings(cls, value: str, info: Any) -> str:
        return _required_text(value, info.field_name)

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, value: datetime) -> datetime:
        return _ensure_aware(value)

    @field_validator("batch_id", "environment", "timing_tag")
    @classmethod
    def trim_optional_text(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None


class Signals(BaseModel):
    model_config = ConfigDict(frozen=True)

    energy: float = Field(ge=1, le=5)
    clarity: float = Field(ge=1, le=5)
    stability: float = Field(ge=1, le=5)

    @property
    def mean(self) -> float:
        return (self.energy + self.clarity + self.stability) / 3.0


class CheckIn(BaseModel):
    """A subjective-state snapshot, optionally linked to a dose."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    timestamp: datetime
    signals: Signals
    dose_id: str | None = None
    body_map: frozenset[str] = frozenset()
    load: LoadLevel | None = None

    @field_validator("id")
    @classmethod
    def validate_id(cls, value: str) -> str:
        return _required_text(value, "id")

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, value: datetime) -> datetime:
        return _ensure_aware(value)

    @field_validator("dose_id")
    @classmethod
    def trim_dose_id(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None


class UserSettings(BaseModel):
    """The only user facts the pattern engine reads."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    menstrual_tracking: bool = False


@dataclass(frozen=True)
class CarryoverResult:
    percentage: float
    tier: CarryoverTier
    effective_multiplier: float
    hours_to_clear: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "percentage": self.percentage,
            "tier": self.tier,
            "effective_multiplier": self.effective_multiplier,
            "hours_to_clear": self.hours_to_clear,
        }


@dataclass(frozen=True)
class ThresholdRange:
    floor_dose: float | None
    sweet_spot: float | None
    ceiling_dose: float | None
    confidence: int
    qualifier: str
    doses_used: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "floor_dose": self.floor_dose,
            "sweet_spot": self.sweet_spot,
            "ceiling_dose": self.ceiling_dose,
            "confidence": self.confidence,
            "qualifier": self.qualifier,
            "doses_used": self.doses_used,
        }


@dataclass(frozen=True)
class Pattern:
    id: str
    type: str
    title: str
    description: str
    confidence: int
    evidence_dose_ids: tuple[str, ...]
    evidence_check_in_ids: tuple[str, ...]
    recommendation: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "confidence": self.confidence,
            "evidence_dose_ids": list(self.evidence_dose_ids),
            "evidence_check_in_ids": list(self.evidence_check_in_ids),
            "recommendation": self.recommendation,
        }
