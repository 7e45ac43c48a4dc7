"""Record a field test from raw form input."""
from __future__ import annotations

import datetime as dt
import logging
import math
from dataclasses import dataclass
from typing import Optional

from vf4_tester.domain.models import MeterReading, TestResult, TestType
from vf4_tester.domain.store import ResultStore

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadingInput:
    """Free-text values as typed into the test form."""

    small_meter_start: str = ""
    small_meter_end: str = ""
    large_meter_start: str = ""
    large_meter_end: str = ""
    total_volume: str = ""
    flow_rate: str = ""


@dataclass(frozen=True)
class RecordOutcome:
    result: TestResult
    advisories: tuple[str, ...] = ()


def parse_reading_value(text: Optional[str]) -> float:
    """Parse a meter value; anything unusable counts as 0.0."""
    if text is None:
        return 0.0
    stripped = text.strip()
    if not stripped:
        return 0.0
    # Digit separators are Python literal syntax, not meter input.
    if "_" in stripped:
        LOGGER.debug("Unparsable reading %r treated as 0.0", text)
        return 0.0
    try:
        value = float(stripped)
    except ValueError:
        LOGGER.debug("Unparsable reading %r treated as 0.0", text)
        return 0.0
    if not math.isfinite(value):
        LOGGER.debug("Non-finite reading %r treated as 0.0", text)
        return 0.0
    return value


def build_reading(form: ReadingInput) -> MeterReading:
    return MeterReading(
        small_meter_start=parse_reading_value(form.small_meter_start),
        small_meter_end=parse_reading_value(form.small_meter_end),
        large_meter_start=parse_reading_value(form.large_meter_start),
        large_meter_end=parse_reading_value(form.large_meter_end),
        total_volume=parse_reading_value(form.total_volume),
        flow_rate=parse_reading_value(form.flow_rate),
    )


def record_test(
    store: ResultStore,
    form: ReadingInput,
    test_type: TestType,
    notes: str = "",
    *,
    meter_image: Optional[bytes] = None,
    date: Optional[dt.datetime] = None,
) -> RecordOutcome:
    """Build a result from the form and append it to the store.

    Advisories (end below start) are reported back but never block recording.
    """
    reading = build_reading(form)
    advisories = tuple(reading.advisories())
    for message in advisories:
        LOGGER.warning(message)

    result_kwargs = {"date": date} if date is not None else {}
    result = TestResult(
        test_type=test_type,
        reading=reading,
        notes=notes,
        meter_image=meter_image,
        **result_kwargs,
    )
    store.append(result)
    LOGGER.info(
        "Recorded %s test %s: accuracy %.2f%% (%s)",
        test_type.label,
        result.id,
        reading.accuracy(),
        result.status_label(),
    )
    return RecordOutcome(result=result, advisories=advisories)
