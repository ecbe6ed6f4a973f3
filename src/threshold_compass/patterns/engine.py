"""Pattern detection: run every applicable detector once, rank, cap."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from ..matching import match_doses_with_check_ins
from ..models import CheckIn, DoseEvent, Pattern, UserSettings
from ..normalization import coerce_check_ins, coerce_doses, parse_flag
from ..policy import DEFAULT_POLICY, EnginePolicy
from .context import DetectionContext
from .registry import registered_detectors

logger = logging.getLogger(__name__)


def _user_settings(user: UserSettings | Mapping[str, Any]) -> UserSettings:
    if isinstance(user, UserSettings):
        return user
    return UserSettings(
        id=str(user.get("id") or user.get("user_id") or ""),
        menstrual_tracking=parse_flag(user.get("menstrual_tracking")),
    )


def build_context(
    user: UserSettings | Mapping[str, Any],
    doses: Iterable[DoseEvent | Mapping[str, Any]],
    check_ins: Iterable[CheckIn | Mapping[str, Any]],
    *,
    policy: EnginePolicy = DEFAULT_POLICY,
) -> DetectionContext:
    settings = _user_settings(user)
    dose_events = tuple(coerce_doses(doses))
    check_in_events = tuple(coerce_check_ins(check_ins))
    matched = match_doses_with_check_ins(
        dose_events,
        check_in_events,
        window_hours=policy.patterns.match_window_hours,
    )
    return DetectionContext(
        user_id=settings.id,
        menstrual_tracking=settings.menstrual_tracking,
        doses=dose_events,
        check_ins=check_in_events,
        matched=matched,
        policy=policy,
    )


def detect_patterns(
    user: UserSettings | Mapping[str, Any],
    doses: Iterable[DoseEvent | Mapping[str, Any]],
    check_ins: Iterable[CheckIn | Mapping[str, Any]],
    *,
    policy: EnginePolicy = DEFAULT_POLICY,
    max_results: int | None = None,
) -> list[Pattern]:
    """Ranked patterns for one user's history.

    Cycle and body-map detectors only run when the user tracks their cycle or
    some check-in carries a body map. Patterns below the LOW confidence bar
    are dropped; the rest are sorted by confidence (registration order breaks
    ties) and capped.
    """
    context = build_context(user, doses, check_ins, policy=policy)
    capabilities = context.capabilities
    limit = policy.patterns.max_results if max_results is None else max_results

    found: list[tuple[int, Pattern]] = []
    for entry in registered_detectors():
        if not entry.requires <= capabilities:
            continue
        try:
            pattern = entry.fn(context)
        except Exception:
            logger.exception(
                "Detector %s failed",
                entry.pattern_type,
                extra={"compass_pattern_type": entry.pattern_type, "compass_user_id": context.user_id},
            )
            continue
        if pattern is None:
            logger.debug(
                "Detector %s found no pattern",
                entry.pattern_type,
                extra={"compass_pattern_type": entry.pattern_type},
            )
            continue
        if pattern.confidence < policy.patterns.confidence_low:
            logger.debug(
                "Dropped %s pattern below confidence floor (%d)",
                entry.pattern_type,
                pattern.confidence,
                extra={"compass_pattern_type": entry.pattern_type},
            )
            continue
        found.append((entry.order, pattern))

    found.sort(key=lambda item: (-item[1].confidence, item[0]))
    return [pattern for _, pattern in found[: max(0, limit)]]
