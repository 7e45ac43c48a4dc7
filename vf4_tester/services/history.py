"""Load, save and import recorded test history."""
from __future__ import annotations

import logging
import pathlib
from typing import Iterable, Optional

from vf4_tester.config import Configuration
from vf4_tester.domain.models import TestResult
from vf4_tester.domain.store import ResultStore
from vf4_tester.services.export import ExportError, results_from_json
from vf4_tester.storage.db import get_connection
from vf4_tester.storage.repositories import SettingsRepository, TestResultRepository

LOGGER = logging.getLogger(__name__)


class HistoryError(RuntimeError):
    """Raised when test history cannot be loaded or imported."""


def load_store(db_path: str | pathlib.Path) -> ResultStore:
    with get_connection(db_path) as conn:
        results = TestResultRepository(conn).list_results()
    LOGGER.debug("Loaded %s results from %s", len(results), db_path)
    return ResultStore(results)


def save_results(db_path: str | pathlib.Path, results: Iterable[TestResult]) -> int:
    with get_connection(db_path) as conn:
        count = TestResultRepository(conn).insert_results(results)
        conn.commit()
    return count


def import_results_json(db_path: str | pathlib.Path, json_path: str | pathlib.Path) -> int:
    """Import a JSON export, skipping results that are already stored."""
    path_obj = pathlib.Path(json_path)
    if not path_obj.exists():
        raise HistoryError(f"Import file does not exist: {path_obj}")

    try:
        results = results_from_json(path_obj.read_bytes())
    except ExportError as exc:
        raise HistoryError(f"Cannot import {path_obj}: {exc}") from exc
    if not results:
        raise HistoryError(f"No test results found in {path_obj}")

    with get_connection(db_path) as conn:
        repo = TestResultRepository(conn)
        fresh = [result for result in results if not repo.exists(result.id)]
        repo.insert_results(fresh)
        conn.commit()

    skipped = len(results) - len(fresh)
    if skipped:
        LOGGER.info("Skipped %s already stored results from %s", skipped, path_obj)
    LOGGER.info("Imported %s results from %s", len(fresh), path_obj)
    return len(fresh)


def load_configuration(
    db_path: str | pathlib.Path, base: Optional[Configuration] = None
) -> Configuration:
    """Stored settings layered over ``base`` (or the defaults)."""
    with get_connection(db_path) as conn:
        stored = SettingsRepository(conn).get_all()
    return Configuration.from_mapping(stored, base=base)


def save_configuration(db_path: str | pathlib.Path, configuration: Configuration) -> None:
    with get_connection(db_path) as conn:
        SettingsRepository(conn).set_many(configuration.to_mapping())
        conn.commit()
