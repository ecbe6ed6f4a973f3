"""Detector registry.

Detectors register themselves at import time with ``@detector``; the engine
runs them in registration order. The registry is never mutated after the
detector modules have been imported.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..models import Pattern
    from .context import DetectionContext

logger = logging.getLogger(__name__)

# Detector signature: def detect(context: DetectionContext) -> Pattern | None
DetectorFn = Callable[["DetectionContext"], "Pattern | None"]

# Capabilities a detector may require before it is run
CAPABILITIES: frozenset[str] = frozenset({"menstrual_tracking", "body_map"})


@dataclass(frozen=True)
class RegisteredDetector:
    pattern_type: str
    fn: DetectorFn
    requires: frozenset[str]
    order: int


_registry: dict[str, RegisteredDetector] = {}


def detector(
    pattern_type: str,
    *,
    requires: tuple[str, ...] = (),
) -> Callable[[DetectorFn], DetectorFn]:
    """Register a detector for one pattern type.

    Usage:
        @detector("cycle_correlation", requires=("menstrual_tracking",))
        def detect_cycle_correlation(context):
            ...
    """

    def decorator(fn: DetectorFn) -> DetectorFn:
        if pattern_type in _registry:
            raise ValueError(f"Duplicate detector for pattern_type={pattern_type!r}")
        unknown = set(requires) - CAPABILITIES
        if unknown:
            raise ValueError(
                f"Unknown capabilities {sorted(unknown)} for detector {fn.__name__}"
            )
        _registry[pattern_type] = RegisteredDetector(
            pattern_type=pattern_type,
            fn=fn,
            requires=frozenset(requires),
            order=len(_registry),
        )
        logger.debug("Registered detector %s for pattern_type=%s", fn.__name__, pattern_type)
        return fn

    return decorator


def registered_detectors() -> list[RegisteredDetector]:
    """All detectors in registration order."""
    return sorted(_registry.values(), key=lambda entry: entry.order)


def registered_pattern_types() -> list[str]:
    return [entry.pattern_type for entry in registered_detectors()]


def get_detector(pattern_type: str) -> RegisteredDetector | None:
    return _registry.get(pattern_type)
