import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Config:
    log_format: str = "json"
    log_level: str = "INFO"
    substance: str = "relative"
    half_life_hours: float | None = None
    replay_output_dir: str = "out"

    @classmethod
    def from_env(cls) -> "Config":
        half_life_raw = os.environ.get("COMPASS_HALF_LIFE_HOURS", "").strip()
        half_life_hours = float(half_life_raw) if half_life_raw else None
        if half_life_hours is not None and half_life_hours <= 0:
            raise RuntimeError("COMPASS_HALF_LIFE_HOURS must be positive")

        return cls(
            log_format=os.environ.get("COMPASS_LOG_FORMAT", "json"),
            log_level=os.environ.get("COMPASS_LOG_LEVEL", "INFO").upper(),
            substance=os.environ.get("COMPASS_SUBSTANCE", "relative").strip().lower(),
            half_life_hours=half_life_hours,
            replay_output_dir=os.environ.get("COMPASS_REPLAY_OUTPUT_DIR", "out"),
        )

    def scenario_defaults(self) -> dict[str, object]:
        """Fields a replay scenario file may omit."""
        defaults: dict[str, object] = {"substance": self.substance}
        if self.half_life_hours is not None:
            defaults["half_life_hours"] = self.half_life_hours
        return defaults
