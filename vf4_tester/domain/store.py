"""In-memory result store and analytics queries."""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Sequence

from vf4_tester.domain.models import TestResult, TestType


@dataclass(frozen=True)
class TrendPoint:
    date: dt.datetime
    average: float


@dataclass(frozen=True)
class ChartPoint:
    date: dt.datetime
    accuracy: float
    is_passing: bool


class ResultStore:
    """Append-only record of test results in record order."""

    def __init__(self, results: Iterable[TestResult] = ()) -> None:
        self._results: list[TestResult] = list(results)

    def append(self, result: TestResult) -> None:
        self._results.append(result)

    def results(self) -> tuple[TestResult, ...]:
        return tuple(self._results)

    def __iter__(self) -> Iterator[TestResult]:
        return iter(self.results())

    def __len__(self) -> int:
        return len(self._results)

    def filter_by_type(self, test_type: Optional[TestType]) -> list[TestResult]:
        """Results of one test type; ``None`` selects all of them."""
        return filter_by_type(self._results, test_type)

    def filter_by_text(self, needle: str) -> list[TestResult]:
        return filter_by_text(self._results, needle)


def filter_by_type(
    results: Iterable[TestResult], test_type: Optional[TestType]
) -> list[TestResult]:
    if test_type is None:
        return list(results)
    return [result for result in results if result.test_type == test_type]


def filter_by_text(results: Iterable[TestResult], needle: str) -> list[TestResult]:
    """Case-insensitive match against the test type label or the notes."""
    if not needle:
        return list(results)
    folded = needle.casefold()
    return [
        result
        for result in results
        if folded in result.test_type.label.casefold() or folded in result.notes.casefold()
    ]


def average_accuracy(results: Sequence[TestResult]) -> Optional[float]:
    """Mean accuracy, or ``None`` when there is nothing to average."""
    if not results:
        return None
    total = sum(result.reading.accuracy() for result in results)
    return total / len(results)


def sorted_by_date(
    results: Iterable[TestResult], *, descending: bool = False
) -> list[TestResult]:
    return sorted(results, key=lambda result: result.date, reverse=descending)


def trend_series(results: Sequence[TestResult]) -> list[TrendPoint]:
    """Date-ordered trend points.

    Every point carries the mean of the whole subset, so the series is a flat
    line at the average rather than a moving average.
    """
    ordered = sorted_by_date(results)
    average = average_accuracy(ordered)
    if average is None:
        return []
    return [TrendPoint(date=result.date, average=average) for result in ordered]


def accuracy_series(results: Iterable[TestResult]) -> list[ChartPoint]:
    return [
        ChartPoint(
            date=result.date,
            accuracy=result.reading.accuracy(),
            is_passing=result.is_passing(),
        )
        for result in results
    ]
