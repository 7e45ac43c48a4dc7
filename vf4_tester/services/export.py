"""Export serializers for recorded test results.

Every serializer works on the sequence it is given: callers filter and sort
before exporting.
"""
from __future__ import annotations

import base64
import binascii
import csv
import datetime as dt
import io
import json
import logging
import math
import os
import pathlib
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from vf4_tester.config import Configuration
from vf4_tester.domain.models import (
    ExportFormat,
    MeterReading,
    TestResult,
    TestType,
    VolumeUnit,
    as_utc,
)

LOGGER = logging.getLogger(__name__)

CSV_HEADER = [
    "Test Type",
    "Small Start",
    "Small End",
    "Large Start",
    "Large End",
    "Total Volume",
    "Flow Rate",
    "Accuracy",
    "Notes",
    "Date",
]
SUMMARY_CSV_HEADER = ["Date", "Test Type", "Accuracy", "Status"]

HISTORY_TITLE = "Test History"
ANALYTICS_TITLE = "Test Analytics Summary"
REPORT_CREATOR = "VEROflow-4 Field Tester"
REPORT_AUTHOR = "MARS Company"


class ExportError(RuntimeError):
    """Raised when results cannot be serialized or decoded."""


def format_short_date(value: dt.datetime) -> str:
    return as_utc(value).strftime("%Y-%m-%d %H:%M")


def format_long_date(value: dt.datetime) -> str:
    stamp = as_utc(value)
    return f"{stamp.day} {stamp:%B %Y %H:%M:%S} UTC"


def format_report_date(value: dt.datetime) -> str:
    return as_utc(value).strftime("%Y-%m-%d %H:%M:%S %z")


def format_accuracy(value: float) -> str:
    return f"{value:.1f}"


def _writer(buffer: io.StringIO) -> Any:
    return csv.writer(buffer, lineterminator="\n")


def results_to_csv(results: Sequence[TestResult], *, long_dates: bool = False) -> bytes:
    """History CSV, one row per result.

    ``long_dates`` selects the detail view date style; the columns are the same.
    """
    date_format = format_long_date if long_dates else format_short_date
    buffer = io.StringIO()
    writer = _writer(buffer)
    writer.writerow(CSV_HEADER)
    for result in results:
        reading = result.reading
        writer.writerow(
            [
                result.test_type.label,
                reading.small_meter_start,
                reading.small_meter_end,
                reading.large_meter_start,
                reading.large_meter_end,
                reading.total_volume,
                reading.flow_rate,
                format_accuracy(reading.accuracy()),
                result.notes,
                date_format(result.date),
            ]
        )
    return buffer.getvalue().encode("utf-8")


def results_to_summary_csv(results: Sequence[TestResult]) -> bytes:
    buffer = io.StringIO()
    writer = _writer(buffer)
    writer.writerow(SUMMARY_CSV_HEADER)
    for result in results:
        writer.writerow(
            [
                format_short_date(result.date),
                result.test_type.label,
                format_accuracy(result.reading.accuracy()),
                result.status_label(),
            ]
        )
    return buffer.getvalue().encode("utf-8")


def result_to_dict(result: TestResult) -> dict[str, Any]:
    reading = result.reading
    return {
        "id": str(result.id),
        "testType": result.test_type.label,
        "reading": {
            "smallMeterStart": reading.small_meter_start,
            "smallMeterEnd": reading.small_meter_end,
            "largeMeterStart": reading.large_meter_start,
            "largeMeterEnd": reading.large_meter_end,
            "totalVolume": reading.total_volume,
            "flowRate": reading.flow_rate,
        },
        "notes": result.notes,
        "date": result.date.isoformat(),
        "meterImageData": (
            base64.b64encode(result.meter_image).decode("ascii")
            if result.meter_image is not None
            else None
        ),
    }


_READING_KEYS = {
    "small_meter_start": "smallMeterStart",
    "small_meter_end": "smallMeterEnd",
    "large_meter_start": "largeMeterStart",
    "large_meter_end": "largeMeterEnd",
    "total_volume": "totalVolume",
    "flow_rate": "flowRate",
}


def _finite(value: Any, key: str) -> float:
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"{key} must be a finite number, got {value!r}")
    return number


def _reject_constant(name: str) -> float:
    raise ValueError(f"non-finite number {name} is not allowed")


def result_from_dict(payload: dict[str, Any]) -> TestResult:
    try:
        reading = payload["reading"]
        image = payload.get("meterImageData")
        return TestResult(
            id=uuid.UUID(payload["id"]),
            test_type=TestType.parse(payload["testType"]),
            reading=MeterReading(
                **{name: _finite(reading[key], key) for name, key in _READING_KEYS.items()}
            ),
            notes=str(payload.get("notes", "")),
            date=as_utc(dt.datetime.fromisoformat(payload["date"])),
            meter_image=base64.b64decode(image, validate=True) if image is not None else None,
        )
    except (KeyError, TypeError, ValueError, binascii.Error) as exc:
        raise ExportError(f"Invalid test result record: {exc}") from exc


def results_to_json(results: Sequence[TestResult]) -> bytes:
    payload = [result_to_dict(result) for result in results]
    try:
        text = json.dumps(payload, indent=2, ensure_ascii=False, allow_nan=False)
    except ValueError as exc:
        raise ExportError(f"Cannot encode non-finite reading as JSON: {exc}") from exc
    return text.encode("utf-8")


def results_from_json(data: bytes | str) -> list[TestResult]:
    try:
        payload = json.loads(data, parse_constant=_reject_constant)
    except (ValueError, UnicodeDecodeError) as exc:
        raise ExportError(f"Invalid JSON export: {exc}") from exc
    if not isinstance(payload, list):
        raise ExportError("JSON export must be an array of test results")
    return [result_from_dict(item) for item in payload]


@dataclass(frozen=True)
class ReportModel:
    """Plain-text report handed to a page renderer."""

    title: str
    lines: tuple[str, ...] = ()
    volume_unit: VolumeUnit = VolumeUnit.GALLONS
    creator: str = REPORT_CREATOR
    author: str = REPORT_AUTHOR
    metadata: dict[str, str] = field(default_factory=dict)

    def text_lines(self) -> list[str]:
        return [self.title, *self.lines]

    def pages(self, max_lines_per_page: int) -> list[list[str]]:
        if max_lines_per_page < 1:
            raise ExportError(f"max_lines_per_page must be positive, got {max_lines_per_page}")
        lines = self.text_lines()
        return [
            lines[start : start + max_lines_per_page]
            for start in range(0, len(lines), max_lines_per_page)
        ]

    def to_text(self) -> str:
        return "\n".join(self.text_lines()) + "\n"


def report_line(result: TestResult) -> str:
    return (
        f"{result.test_type.label} | {format_accuracy(result.reading.accuracy())}% | "
        f"{format_report_date(result.date)}"
    )


def build_report(
    results: Sequence[TestResult],
    configuration: Optional[Configuration] = None,
    *,
    title: str = HISTORY_TITLE,
) -> ReportModel:
    configuration = configuration or Configuration()
    return ReportModel(
        title=title,
        lines=tuple(report_line(result) for result in results),
        volume_unit=configuration.preferred_volume_unit,
        metadata={"Creator": REPORT_CREATOR, "Author": REPORT_AUTHOR, "Title": title},
    )


def export_results(
    results: Sequence[TestResult],
    export_format: ExportFormat | str,
    configuration: Optional[Configuration] = None,
    *,
    summary: bool = False,
    long_dates: bool = False,
) -> Optional[bytes]:
    """Serialize results in the requested format.

    Returns ``None`` when the export is unavailable; output is either complete
    or absent.
    """
    try:
        fmt = ExportFormat.parse(export_format)
        if fmt is ExportFormat.CSV:
            if summary:
                return results_to_summary_csv(results)
            return results_to_csv(results, long_dates=long_dates)
        if fmt is ExportFormat.JSON:
            return results_to_json(results)
        title = ANALYTICS_TITLE if summary else HISTORY_TITLE
        return build_report(results, configuration, title=title).to_text().encode("utf-8")
    except (ExportError, ValueError) as exc:
        LOGGER.error("Export unavailable (%s): %s", export_format, exc)
        return None


def write_export(path: str | pathlib.Path, payload: bytes) -> pathlib.Path:
    """Write an export file in one step via a temporary sibling."""
    path_obj = pathlib.Path(path)
    tmp = path_obj.with_suffix(path_obj.suffix + ".tmp")
    try:
        tmp.write_bytes(payload)
        os.replace(tmp, path_obj)
    except OSError as exc:
        tmp.unlink(missing_ok=True)
        raise ExportError(f"Could not write export to {path_obj}: {exc}") from exc
    LOGGER.info("Wrote %s bytes to %s", len(payload), path_obj)
    return path_obj
