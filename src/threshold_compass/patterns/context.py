"""Shared, read-only input handed to every detector."""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from typing import Iterable

from ..matching import MatchedDose
from ..models import CheckIn, DoseEvent, Pattern
from ..policy import EnginePolicy

# Fixed namespace so pattern ids are stable across runs and machines
PATTERN_NAMESPACE = uuid.UUID("6f1c2b8e-3d4a-5e6f-9a0b-1c2d3e4f5a6b")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def mean(values: Iterable[float]) -> float | None:
    items = list(values)
    if not items:
        return None
    return math.fsum(items) / len(items)


def pattern_id(user_id: str, pattern_type: str, dose_ids: Iterable[str], check_in_ids: Iterable[str]) -> str:
    key = "|".join(
        [user_id, pattern_type, ",".join(dose_ids), ",".join(check_in_ids)]
    )
    return str(uuid.uuid5(PATTERN_NAMESPACE, key))


@dataclass(frozen=True)
class DetectionContext:
    user_id: str
    menstrual_tracking: bool
    doses: tuple[DoseEvent, ...]
    check_ins: tuple[CheckIn, ...]
    matched: tuple[MatchedDose, ...]
    policy: EnginePolicy

    @property
    def capabilities(self) -> frozenset[str]:
        caps: set[str] = set()
        if self.menstrual_tracking:
            caps.add("menstrual_tracking")
        if any(check_in.body_map for check_in in self.check_ins):
            caps.add("body_map")
        return frozenset(caps)

    def min_samples(self, pattern_type: str) -> int:
        return self.policy.patterns.min_samples_for(pattern_type)

    def with_check_in(self) -> list[MatchedDose]:
        return [pair for pair in self.matched if pair.check_in is not None]

    def make_pattern(
        self,
        pattern_type: str,
        *,
        title: str,
        description: str,
        confidence: float,
        evidence_dose_ids: Iterable[str],
        evidence_check_in_ids: Iterable[str],
        recommendation: str,
    ) -> Pattern:
        dose_ids = tuple(evidence_dose_ids)
        check_in_ids = tuple(evidence_check_in_ids)
        return Pattern(
            id=pattern_id(self.user_id, pattern_type, dose_ids, check_in_ids),
            type=pattern_type,
            title=title,
            description=description,
            confidence=max(0, min(100, round_half_up(confidence))),
            evidence_dose_ids=dose_ids,
            evidence_check_in_ids=check_in_ids,
            recommendation=recommendation,
        )
