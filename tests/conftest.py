from __future__ import annotations

import datetime as dt
import os
import pathlib

import pytest

from vf4_tester.domain import models
from vf4_tester.storage.db import init_db


@pytest.fixture()
def repo_root() -> pathlib.Path:
    return pathlib.Path(__file__).resolve().parents[1]


@pytest.fixture()
def migrations_dir(repo_root: pathlib.Path) -> pathlib.Path:
    return repo_root / "vf4_tester" / "storage" / "migrations"


@pytest.fixture()
def test_db_path(tmp_path: pathlib.Path) -> pathlib.Path:
    return tmp_path / "test.sqlite"


@pytest.fixture()
def initialized_db(test_db_path: pathlib.Path, migrations_dir: pathlib.Path) -> pathlib.Path:
    init_db(test_db_path, migrations_dir)
    return test_db_path


@pytest.fixture()
def sample_results() -> list[models.TestResult]:
    """Low flow pass, high flow fail, high flow pass, in record order."""
    return [
        models.TestResult(
            test_type=models.TestType.LOW_FLOW,
            reading=models.MeterReading(10, 20, 0, 0, 10, 5),
            notes="Hydrant 12 north",
            date=dt.datetime(2026, 3, 2, 9, 30, tzinfo=dt.timezone.utc),
        ),
        models.TestResult(
            test_type=models.TestType.HIGH_FLOW,
            reading=models.MeterReading(15, 25, 0, 0, 50, 30),
            notes="Compound meter, bypass open",
            date=dt.datetime(2026, 3, 1, 14, 5, tzinfo=dt.timezone.utc),
        ),
        models.TestResult(
            test_type=models.TestType.HIGH_FLOW,
            reading=models.MeterReading(100, 150, 200, 249.5, 100, 120),
            notes="",
            date=dt.datetime(2026, 3, 3, 16, 45, 12, tzinfo=dt.timezone.utc),
        ),
    ]


def pytest_configure(config: pytest.Config) -> None:
    repo = pathlib.Path(__file__).resolve().parents[1]
    results_dir = repo / "test-results"
    results_dir.mkdir(parents=True, exist_ok=True)

    tag = os.environ.get("PYTEST_REPORT_TAG")
    if tag:
        safe_tag = "".join(ch for ch in tag if ch.isalnum() or ch in ("-", "_"))
        timestamp = safe_tag or dt.datetime.now().strftime("%Y%m%d-%H%M%S")
    else:
        timestamp = dt.datetime.now().strftime("%Y%m%d-%H%M%S")

    config.option.xmlpath = str(results_dir / f"pytest-{timestamp}.xml")
    config.option.htmlpath = str(results_dir / f"pytest-{timestamp}.html")
    config.option.self_contained_html = True
