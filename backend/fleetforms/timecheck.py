"""Time-of-day parsing, duty hours and checkpoint ordering.

Ordering never assumes a later checkpoint falls on the next day, so a
checkpoint earlier than its predecessor is always reported. Duty hours on the
other hand treat a negative difference as a shift that crossed midnight.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from fleetforms.schemas import FieldError

_TWELVE_HOUR = re.compile(r"^(\d{1,2}):(\d{2})\s*([AaPp][Mm])$")
_TWENTY_FOUR_HOUR = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")

MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class TimeCheckpointSpec:
    id: str
    sequence: int
    label: str


TRANSACTION_CHECKPOINTS = (
    TimeCheckpointSpec("VehicleReportingAtHub", 1, "Vehicle Reporting at Hub/WH"),
    TimeCheckpointSpec("VehicleEntryInHub", 2, "Vehicle Entry in Hub/WH"),
    TimeCheckpointSpec("VehicleOutFromHubForDelivery", 3, "Vehicle Out from Hub/WH for Delivery"),
    TimeCheckpointSpec("VehicleReturnAtHub", 4, "Vehicle Return at Hub/WH"),
    TimeCheckpointSpec("VehicleEnteredAtHubReturn", 5, "Vehicle Entered at Hub/WH (Return)"),
    TimeCheckpointSpec("VehicleOutFromHubFinal", 6, "Vehicle Out from Hub Final (Trip Close)"),
)


def to_minutes(text) -> Optional[int]:
    """Minutes since midnight for "21:30", "21:30:00" or "9:30 PM"; None if unreadable."""
    if not isinstance(text, str):
        return None
    value = text.strip()

    match = _TWELVE_HOUR.match(value)
    if match:
        hours, minutes, meridiem = int(match.group(1)), int(match.group(2)), match.group(3).upper()
        if not 1 <= hours <= 12 or minutes > 59:
            return None
        if meridiem == "PM" and hours != 12:
            hours += 12
        elif meridiem == "AM" and hours == 12:
            hours = 0
        return hours * 60 + minutes

    match = _TWENTY_FOUR_HOUR.match(value)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        if hours > 23 or minutes > 59:
            return None
        return hours * 60 + minutes

    return None


def duty_hours(start, end) -> Optional[float]:
    start_minutes = to_minutes(start)
    end_minutes = to_minutes(end)
    if start_minutes is None or end_minutes is None:
        return None

    diff = end_minutes - start_minutes
    if diff < 0:
        diff += MINUTES_PER_DAY
    return diff / 60


class TimeSequenceValidator:
    def __init__(self, checkpoints: Iterable[TimeCheckpointSpec]):
        self.checkpoints = sorted(checkpoints, key=lambda c: c.sequence)
        sequences = [c.sequence for c in self.checkpoints]
        if len(set(sequences)) != len(sequences):
            raise ValueError("Checkpoint sequence indexes must be unique")

    @property
    def fields(self) -> List[str]:
        return [c.id for c in self.checkpoints]

    def validate(self, values: Mapping[str, object]) -> Dict[str, List[FieldError]]:
        """Errors for every checkpoint; checkpoints without problems map to []."""
        errors: Dict[str, List[FieldError]] = {c.id: [] for c in self.checkpoints}
        previous: Optional[TimeCheckpointSpec] = None
        previous_minutes: Optional[int] = None

        for checkpoint in self.checkpoints:
            raw = values.get(checkpoint.id)
            if raw is None or (isinstance(raw, str) and not raw.strip()):
                # blank checkpoints are reported as required elsewhere
                continue

            minutes = to_minutes(raw)
            if minutes is None:
                errors[checkpoint.id].append(FieldError(
                    field=checkpoint.id,
                    kind="FormatError",
                    message=f"{checkpoint.label} has an invalid time format",
                ))
                continue

            if previous_minutes is not None and minutes < previous_minutes:
                errors[checkpoint.id].append(FieldError(
                    field=checkpoint.id,
                    kind="ChronologyError",
                    message=f"{checkpoint.label} cannot be earlier than {previous.label}",
                ))

            previous, previous_minutes = checkpoint, minutes

        return errors
