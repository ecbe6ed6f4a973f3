"""Error taxonomy for the calibration engine.

Insufficient data is never an exception: engines return ``None`` or ``[]``.
The classes below are raised by single-record helpers and caught at the
batch boundary so one bad row or one bad unit never aborts a whole history.
"""

from __future__ import annotations

from typing import Literal

CompassErrorClass = Literal["malformed_record", "unit_mismatch", "other"]


class CompassError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.field = field

    @property
    def error_class(self) -> CompassErrorClass:
        return "other"


class MalformedRecord(CompassError, ValueError):
    """A diary row is missing a required field or carries an out-of-range value."""

    @property
    def error_class(self) -> CompassErrorClass:
        return "malformed_record"


class UnitMismatch(CompassError):
    """More than one dose unit inside a single calculation."""

    def __init__(self, units: tuple[str, ...]) -> None:
        super().__init__(
            code="unit_mismatch",
            message=f"Cannot combine dose units {', '.join(units)} in one calculation",
            field="unit",
        )
        self.units = units

    @property
    def error_class(self) -> CompassErrorClass:
        return "unit_mismatch"
