"""Domain models for field meter tests."""
from __future__ import annotations

import dataclasses
import datetime as dt
import math
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class _LabelledEnum(str, Enum):
    """Enum whose value is the display label."""

    @property
    def label(self) -> str:
        return self.value

    @property
    def slug(self) -> str:
        return self.name.lower().replace("_", "-")

    @classmethod
    def parse(cls, value: Any) -> Any:
        """Resolve a member from itself, its label, its name or its slug."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().casefold()
        for member in cls:
            if text in (member.value.casefold(), member.name.casefold(), member.slug):
                return member
        raise ValueError(f"Unknown {cls.__name__} value: {value!r}")


class VolumeUnit(_LabelledEnum):
    GALLONS = "Gallons"
    LITERS = "Liters"
    CUBIC_FEET = "Cubic Feet"


class TestType(_LabelledEnum):
    LOW_FLOW = "Low Flow"
    HIGH_FLOW = "High Flow"


class ExportFormat(_LabelledEnum):
    CSV = "CSV"
    JSON = "JSON"
    PDF = "PDF"


class ChartType(_LabelledEnum):
    BAR = "Bar"
    LINE = "Line"


class AppearanceOption(_LabelledEnum):
    SYSTEM = "System Default"
    LIGHT = "Light"
    DARK = "Dark"


# Inclusive accuracy bands (percent).
PASS_BANDS: dict[TestType, tuple[float, float]] = {
    TestType.LOW_FLOW: (95.0, 101.0),
    TestType.HIGH_FLOW: (98.5, 101.5),
}


def round2(value: float) -> float:
    """Round to two decimals, half away from zero."""
    scaled = abs(value * 100)
    if not math.isfinite(scaled):
        return value
    whole = math.floor(scaled)
    if scaled - whole >= 0.5:
        whole += 1
    return math.copysign(whole, value) / 100


@dataclass(frozen=True)
class MeterReading:
    small_meter_start: float
    small_meter_end: float
    large_meter_start: float
    large_meter_end: float
    total_volume: float
    flow_rate: float

    def __post_init__(self) -> None:
        for item in dataclasses.fields(self):
            object.__setattr__(self, item.name, float(getattr(self, item.name)))

    def meter_delta(self) -> float:
        small_diff = self.small_meter_end - self.small_meter_start
        large_diff = self.large_meter_end - self.large_meter_start
        return small_diff + large_diff

    def accuracy(self) -> float:
        """Registered volume as a percentage of the reference volume.

        A zero reference volume yields 0, which fails every pass band.
        """
        if self.total_volume == 0:
            return 0.0
        return round2((self.meter_delta() / self.total_volume) * 100)

    def advisories(self) -> list[str]:
        messages: list[str] = []
        if self.small_meter_end < self.small_meter_start:
            messages.append("Small meter: End reading must be ≥ start reading.")
        if self.large_meter_end < self.large_meter_start:
            messages.append("Large meter: End reading must be ≥ start reading.")
        return messages


_MUTABLE_FIELDS = frozenset({"notes"})


def _utc_now() -> dt.datetime:
    return dt.datetime.now(tz=dt.timezone.utc)


def as_utc(value: dt.datetime) -> dt.datetime:
    """Naive timestamps are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


@dataclass(eq=False)
class TestResult:
    test_type: TestType
    reading: MeterReading
    notes: str = ""
    date: dt.datetime = field(default_factory=_utc_now)
    meter_image: Optional[bytes] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    def __post_init__(self) -> None:
        # Record dates are always comparable with each other.
        object.__setattr__(self, "date", as_utc(self.date))

    def __setattr__(self, name: str, value: Any) -> None:
        if name in self.__dict__ and name not in _MUTABLE_FIELDS:
            raise dataclasses.FrozenInstanceError(f"cannot assign to field {name!r}")
        super().__setattr__(name, value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TestResult):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def is_passing(self) -> bool:
        low, high = PASS_BANDS[self.test_type]
        return low <= self.reading.accuracy() <= high

    def status_label(self) -> str:
        return "PASS" if self.is_passing() else "FAIL"

    def append_note(self, text: str) -> None:
        self.notes = f"{self.notes}\n{text}" if self.notes else text
