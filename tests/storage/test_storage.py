from __future__ import annotations

import datetime as dt
import logging
import pathlib

import pytest

from vf4_tester.config import ConfigError, Configuration
from vf4_tester.domain import models
from vf4_tester.domain.store import trend_series
from vf4_tester.services import history
from vf4_tester.services.export import results_to_json
from vf4_tester.storage import repositories
from vf4_tester.storage.db import MigrationError, apply_migrations, get_connection, init_db

pytestmark = pytest.mark.storage


def test_init_db_is_idempotent(test_db_path: pathlib.Path, migrations_dir: pathlib.Path) -> None:
    init_db(test_db_path, migrations_dir)
    init_db(test_db_path, migrations_dir)

    with get_connection(test_db_path) as conn:
        versions = [row["version"] for row in conn.execute("SELECT version FROM schema_migrations")]
        assert versions == ["0001_initial"]
        assert apply_migrations(conn, migrations_dir) == []


def test_missing_migrations_dir(test_db_path: pathlib.Path, tmp_path: pathlib.Path) -> None:
    with pytest.raises(MigrationError, match="Missing migrations dir"):
        init_db(test_db_path, tmp_path / "nowhere")


def test_broken_migration_raises(test_db_path: pathlib.Path, tmp_path: pathlib.Path) -> None:
    bad_dir = tmp_path / "migrations"
    bad_dir.mkdir()
    (bad_dir / "0001_bad.sql").write_text("CREATE TABLE oops (;", encoding="utf-8")

    with pytest.raises(MigrationError, match="Failed migration 0001_bad.sql"):
        init_db(test_db_path, bad_dir)


def test_results_round_trip_in_record_order(
    initialized_db: pathlib.Path, sample_results: list[models.TestResult]
) -> None:
    sample_results[1].append_note("resealed")
    assert history.save_results(initialized_db, sample_results) == 3

    store = history.load_store(initialized_db)

    assert list(store) == sample_results
    restored = store.results()[1]
    assert restored.notes == "Compound meter, bypass open\nresealed"
    assert restored.reading == sample_results[1].reading
    assert restored.date == sample_results[1].date
    assert restored.test_type is models.TestType.HIGH_FLOW


def test_repository_count_and_exists(
    initialized_db: pathlib.Path, sample_results: list[models.TestResult]
) -> None:
    with get_connection(initialized_db) as conn:
        repo = repositories.TestResultRepository(conn)
        repo.insert_results(sample_results[:2])
        conn.commit()

        assert repo.count() == 2
        assert repo.exists(sample_results[0].id)
        assert not repo.exists(sample_results[2].id)


def test_meter_image_is_stored_as_blob(initialized_db: pathlib.Path) -> None:
    result = models.TestResult(
        test_type=models.TestType.LOW_FLOW,
        reading=models.MeterReading(0, 1, 0, 0, 1, 0),
        meter_image=b"\x00\xffraw",
        date=dt.datetime(2026, 5, 1, tzinfo=dt.timezone.utc),
    )
    history.save_results(initialized_db, [result])

    assert history.load_store(initialized_db).results()[0].meter_image == b"\x00\xffraw"


def test_import_results_json_skips_known_ids(
    initialized_db: pathlib.Path,
    sample_results: list[models.TestResult],
    tmp_path: pathlib.Path,
) -> None:
    export_path = tmp_path / "results.json"
    export_path.write_bytes(results_to_json(sample_results))
    history.save_results(initialized_db, sample_results[:1])

    assert history.import_results_json(initialized_db, export_path) == 2
    assert history.import_results_json(initialized_db, export_path) == 0
    assert len(history.load_store(initialized_db)) == 3


def test_import_results_json_errors(initialized_db: pathlib.Path, tmp_path: pathlib.Path) -> None:
    with pytest.raises(history.HistoryError, match="does not exist"):
        history.import_results_json(initialized_db, tmp_path / "missing.json")

    empty = tmp_path / "empty.json"
    empty.write_text("[]", encoding="utf-8")
    with pytest.raises(history.HistoryError, match="No test results"):
        history.import_results_json(initialized_db, empty)

    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")
    with pytest.raises(history.HistoryError, match="Cannot import"):
        history.import_results_json(initialized_db, broken)


def test_settings_persist(initialized_db: pathlib.Path) -> None:
    assert history.load_configuration(initialized_db) == Configuration()

    configuration = Configuration()
    configuration.set_preferred_volume_unit(models.VolumeUnit.CUBIC_FEET)
    configuration.set_appearance("dark")
    history.save_configuration(initialized_db, configuration)

    loaded = history.load_configuration(initialized_db)
    assert loaded.preferred_volume_unit is models.VolumeUnit.CUBIC_FEET
    assert loaded.appearance is models.AppearanceOption.DARK


def test_stored_settings_override_base(initialized_db: pathlib.Path) -> None:
    with get_connection(initialized_db) as conn:
        repositories.SettingsRepository(conn).set_many({"appearance": "Light"})
        conn.commit()

    base = Configuration(preferred_volume_unit=models.VolumeUnit.LITERS)
    loaded = history.load_configuration(initialized_db, base=base)

    assert loaded.preferred_volume_unit is models.VolumeUnit.LITERS
    assert loaded.appearance is models.AppearanceOption.LIGHT


def test_invalid_stored_setting_raises(initialized_db: pathlib.Path) -> None:
    with get_connection(initialized_db) as conn:
        repositories.SettingsRepository(conn).set_many({"preferredVolumeUnit": "Barrels"})
        conn.commit()

    with pytest.raises(ConfigError, match="Unknown VolumeUnit"):
        history.load_configuration(initialized_db)


def _export_document(date: str, total_volume: str) -> str:
    return (
        '[{"id": "7c1d2e3f-4a5b-4c6d-8e9f-a0b1c2d3e4f5", "testType": "High Flow", '
        '"reading": {"smallMeterStart": 0, "smallMeterEnd": 99, "largeMeterStart": 0, '
        f'"largeMeterEnd": 0, "totalVolume": {total_volume}, "flowRate": 60}}, '
        f'"notes": "", "date": "{date}", "meterImageData": null}}]'
    )


def test_import_naive_dated_export_keeps_queries_total(
    initialized_db: pathlib.Path,
    sample_results: list[models.TestResult],
    tmp_path: pathlib.Path,
) -> None:
    export_path = tmp_path / "legacy.json"
    export_path.write_text(_export_document("2026-03-05T10:00:00", "100"), encoding="utf-8")
    history.save_results(initialized_db, sample_results)

    assert history.import_results_json(initialized_db, export_path) == 1

    store = history.load_store(initialized_db)
    assert all(result.date.tzinfo is not None for result in store)
    points = trend_series(store.results())
    assert points[-1].date == dt.datetime(2026, 3, 5, 10, 0, tzinfo=dt.timezone.utc)


def test_import_non_finite_reading_is_history_error(
    initialized_db: pathlib.Path, tmp_path: pathlib.Path
) -> None:
    export_path = tmp_path / "nan.json"
    export_path.write_text(_export_document("2026-03-05T10:00:00+00:00", "NaN"), encoding="utf-8")

    with pytest.raises(history.HistoryError, match="Cannot import"):
        history.import_results_json(initialized_db, export_path)
    assert len(history.load_store(initialized_db)) == 0


def test_init_db_logs_upgrade(
    test_db_path: pathlib.Path,
    migrations_dir: pathlib.Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    with caplog.at_level(logging.INFO, logger="vf4_tester.storage.db"):
        init_db(test_db_path, migrations_dir)

    assert "Applying migration 0001_initial.sql" in caplog.text
    assert "upgraded to 0001_initial" in caplog.text
