"""Pattern detection engine.

Importing this package registers the built-in detectors, in this order:
correlations (food, sleep, environment, caffeine, cycle), clusters (weekday,
body map, difficult sessions), trends (green days, red days, morning timing).
"""

# Import order is registration order, which breaks confidence ties.
from . import correlations  # noqa: F401  isort: skip
from . import clusters  # noqa: F401  isort: skip
from . import trends  # noqa: F401  isort: skip
from .context import DetectionContext
from .engine import build_context, detect_patterns
from .registry import detector, registered_detectors, registered_pattern_types

__all__ = [
    "DetectionContext",
    "build_context",
    "detect_patterns",
    "detector",
    "registered_detectors",
    "registered_pattern_types",
]
