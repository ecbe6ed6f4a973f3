"""Pairing of doses with the check-in that reports on them."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable

from .models import CheckIn, DoseEvent
from .normalization import chronological

DEFAULT_MATCH_WINDOW_HOURS = 8.0


@dataclass(frozen=True)
class MatchedDose:
    dose: DoseEvent
    check_in: CheckIn | None


def match_doses_with_check_ins(
    doses: Iterable[DoseEvent],
    check_ins: Iterable[CheckIn],
    window_hours: float = DEFAULT_MATCH_WINDOW_HOURS,
) -> tuple[MatchedDose, ...]:
    """Pair every dose with at most one check-in.

    An explicit ``dose_id`` link wins. Otherwise the closest check-in within
    ``window_hours`` either side of the dose is used, provided it is not
    explicitly linked to some other dose. Ties go to the earlier check-in, then
    the lower id. Output is in chronological dose order and is independent of
    input order.
    """
    ordered_doses = chronological(doses)
    ordered_check_ins = chronological(check_ins)
    dose_ids = {dose.id for dose in ordered_doses}
    window = timedelta(hours=window_hours)

    linked: dict[str, CheckIn] = {}
    floating: list[CheckIn] = []
    for check_in in ordered_check_ins:
        if check_in.dose_id is None or check_in.dose_id not in dose_ids:
            floating.append(check_in)
        elif check_in.dose_id not in linked:
            linked[check_in.dose_id] = check_in

    matched: list[MatchedDose] = []
    for dose in ordered_doses:
        explicit = linked.get(dose.id)
        if explicit is not None:
            matched.append(MatchedDose(dose, explicit))
            continue

        best: CheckIn | None = None
        best_gap: timedelta | None = None
        for check_in in floating:
            offset = check_in.timestamp - dose.timestamp
            if offset < -window:
                continue
            if offset > window:
                break
            gap = abs(offset)
            if best_gap is None or gap < best_gap:
                best, best_gap = check_in, gap
        matched.append(MatchedDose(dose, best))

    return tuple(matched)
