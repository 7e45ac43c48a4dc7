"""Repository layer for storage access."""
from __future__ import annotations

import datetime as dt
import sqlite3
import uuid
from typing import Iterable, Mapping

from vf4_tester.domain.models import MeterReading, TestResult, TestType, as_utc


class TestResultRepository:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def insert_results(self, results: Iterable[TestResult]) -> int:
        rows = [
            (
                str(result.id),
                result.test_type.name,
                result.reading.small_meter_start,
                result.reading.small_meter_end,
                result.reading.large_meter_start,
                result.reading.large_meter_end,
                result.reading.total_volume,
                result.reading.flow_rate,
                result.notes,
                result.date.isoformat(),
                result.meter_image,
            )
            for result in results
        ]
        self._conn.executemany(
            """
            INSERT INTO test_results (
                id,
                test_type,
                small_meter_start,
                small_meter_end,
                large_meter_start,
                large_meter_end,
                total_volume,
                flow_rate,
                notes,
                recorded_at,
                meter_image
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
        )
        return len(rows)

    def list_results(self) -> list[TestResult]:
        rows = self._conn.execute("SELECT * FROM test_results ORDER BY seq").fetchall()
        return [_row_to_result(row) for row in rows]

    def count(self) -> int:
        return int(self._conn.execute("SELECT COUNT(*) FROM test_results").fetchone()[0])

    def exists(self, result_id: uuid.UUID) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM test_results WHERE id = ?",
            (str(result_id),),
        ).fetchone()
        return row is not None


class SettingsRepository:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get_all(self) -> dict[str, str]:
        rows = self._conn.execute("SELECT key, value FROM settings").fetchall()
        return {row["key"]: row["value"] for row in rows}

    def set_many(self, values: Mapping[str, str]) -> None:
        self._conn.executemany(
            """
            INSERT INTO settings (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            list(values.items()),
        )


def _row_to_result(row: sqlite3.Row) -> TestResult:
    image = row["meter_image"]
    return TestResult(
        id=uuid.UUID(row["id"]),
        test_type=TestType[row["test_type"]],
        reading=MeterReading(
            small_meter_start=row["small_meter_start"],
            small_meter_end=row["small_meter_end"],
            large_meter_start=row["large_meter_start"],
            large_meter_end=row["large_meter_end"],
            total_volume=row["total_volume"],
            flow_rate=row["flow_rate"],
        ),
        notes=row["notes"],
        date=as_utc(dt.datetime.fromisoformat(row["recorded_at"])),
        meter_image=bytes(image) if image is not None else None,
    )
