"""CLI entrypoint for the VF4 field tester."""
from __future__ import annotations

import argparse
import logging
import pathlib
import uuid
from typing import Optional

from vf4_tester.config import ConfigError, Configuration, configuration_from_file
from vf4_tester.domain.models import (
    AppearanceOption,
    ChartType,
    ExportFormat,
    TestResult,
    TestType,
    VolumeUnit,
)
from vf4_tester.domain.store import (
    ResultStore,
    accuracy_series,
    average_accuracy,
    filter_by_text,
    trend_series,
)
from vf4_tester.logging_setup import configure_logging
from vf4_tester.services.export import (
    ExportError,
    export_results,
    format_accuracy,
    format_short_date,
    write_export,
)
from vf4_tester.services.history import (
    HistoryError,
    import_results_json,
    load_configuration,
    load_store,
    save_configuration,
    save_results,
)
from vf4_tester.services.recording import ReadingInput, record_test
from vf4_tester.storage.db import default_migrations_dir, init_db

LOGGER = logging.getLogger(__name__)

_TYPE_CHOICES = ["all", *(t.slug for t in TestType)]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vf4-tester")
    parser.add_argument("--config", help="Path to TOML/JSON config.")
    parser.add_argument("--log-level", default="INFO", help="Logging level.")
    parser.add_argument(
        "--json-logs", action="store_true", help="Emit logs in JSON format."
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    db_init = subparsers.add_parser("db-init", help="Initialize/upgrade SQLite DB")
    db_init.add_argument("--db", required=True, help="Path to SQLite file.")
    db_init.add_argument(
        "--migrations-dir",
        default=str(default_migrations_dir()),
        help="Path to migrations directory.",
    )

    record = subparsers.add_parser("record", help="Record a field test")
    record.add_argument("--db", required=True, help="Path to SQLite file.")
    record.add_argument(
        "--type", required=True, choices=[t.slug for t in TestType], help="Test type."
    )
    record.add_argument("--small-start", default="", help="Small meter start reading.")
    record.add_argument("--small-end", default="", help="Small meter end reading.")
    record.add_argument("--large-start", default="", help="Large meter start reading.")
    record.add_argument("--large-end", default="", help="Large meter end reading.")
    record.add_argument("--total-volume", default="", help="Reference volume.")
    record.add_argument("--flow-rate", default="", help="Flow rate (GPM).")
    record.add_argument("--notes", default="", help="Free-text notes.")

    history = subparsers.add_parser("history", help="List recorded tests")
    history.add_argument("--db", required=True, help="Path to SQLite file.")
    history.add_argument("--type", default="all", choices=_TYPE_CHOICES, help="Test type filter.")
    history.add_argument("--search", default="", help="Match notes or test type.")

    analytics = subparsers.add_parser("analytics", help="Accuracy analytics")
    analytics.add_argument("--db", required=True, help="Path to SQLite file.")
    analytics.add_argument("--type", default="all", choices=_TYPE_CHOICES, help="Test type filter.")
    analytics.add_argument(
        "--chart", default=ChartType.BAR.slug, choices=[c.slug for c in ChartType], help="Chart type."
    )
    analytics.add_argument("--trend", action="store_true", help="Include the trend line.")

    export = subparsers.add_parser("export", help="Export recorded tests")
    export.add_argument("--db", required=True, help="Path to SQLite file.")
    export.add_argument(
        "--format", required=True, choices=[f.slug for f in ExportFormat], help="Export format."
    )
    export.add_argument("--out", required=True, help="Output file path.")
    export.add_argument("--type", default="all", choices=_TYPE_CHOICES, help="Test type filter.")
    export.add_argument("--search", default="", help="Match notes or test type.")
    export.add_argument(
        "--summary", action="store_true", help="Analytics summary instead of full history."
    )
    export.add_argument("--detail", help="Export a single test by id with long dates.")

    import_cmd = subparsers.add_parser("import", help="Import a JSON export")
    import_cmd.add_argument("--db", required=True, help="Path to SQLite file.")
    import_cmd.add_argument("--file", required=True, help="Path to JSON export.")

    settings = subparsers.add_parser("settings", help="Display settings")
    settings_sub = settings.add_subparsers(dest="settings_command", required=True)
    settings_show = settings_sub.add_parser("show", help="Show current settings")
    settings_show.add_argument("--db", required=True, help="Path to SQLite file.")
    settings_set = settings_sub.add_parser("set", help="Change settings")
    settings_set.add_argument("--db", required=True, help="Path to SQLite file.")
    settings_set.add_argument("--unit", choices=[u.slug for u in VolumeUnit], help="Volume unit.")
    settings_set.add_argument(
        "--appearance", choices=[a.slug for a in AppearanceOption], help="Appearance."
    )

    return parser


def _type_filter(value: str) -> Optional[TestType]:
    return None if value == "all" else TestType.parse(value)


def _select(store: ResultStore, type_value: str, search: str) -> list[TestResult]:
    return filter_by_text(store.filter_by_type(_type_filter(type_value)), search)


def _print_history(results: list[TestResult], configuration: Configuration) -> None:
    if not results:
        print("No test results available.")
        return
    unit = configuration.preferred_volume_unit.label
    for result in results:
        reading = result.reading
        print(
            f"{result.id} | {result.test_type.label} | "
            f"Accuracy: {format_accuracy(reading.accuracy())}% {result.status_label()} | "
            f"Volume: {reading.total_volume:.1f} {unit} | "
            f"Flow Rate: {reading.flow_rate:.1f} GPM | "
            f"Date: {format_short_date(result.date)}"
        )
        if result.notes:
            print(f"    Notes: {result.notes}")


def _print_analytics(results: list[TestResult], chart: ChartType, show_trend: bool) -> None:
    print(f"Tests: {len(results)}")
    average = average_accuracy(results)
    if average is not None:
        print(f"Avg Accuracy: {average:.1f}%")
    if not results:
        print("No test results available for the selected filter.")
        return

    print(f"{chart.label} chart:")
    for point in accuracy_series(results):
        verdict = "PASS" if point.is_passing else "FAIL"
        print(f"  {format_short_date(point.date)}  {point.accuracy:.1f}%  {verdict}")
    if show_trend:
        print("Trend:")
        for trend in trend_series(results):
            print(f"  {format_short_date(trend.date)}  {trend.average:.1f}%")


def _export(args: argparse.Namespace, configuration: Configuration) -> int:
    store = load_store(args.db)
    long_dates = False
    if args.detail:
        try:
            wanted = uuid.UUID(args.detail)
        except ValueError:
            LOGGER.error("Invalid test id: %s", args.detail)
            return 1
        selected = [result for result in store if result.id == wanted]
        if not selected:
            LOGGER.error("No test with id %s", args.detail)
            return 1
        long_dates = True
    else:
        selected = _select(store, args.type, args.search)

    payload = export_results(
        selected,
        ExportFormat.parse(args.format),
        configuration,
        summary=args.summary,
        long_dates=long_dates,
    )
    if payload is None:
        print("Export data not available.")
        return 1
    try:
        write_export(args.out, payload)
    except ExportError as exc:
        LOGGER.error("%s", exc)
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(level=args.log_level, json_format=args.json_logs)

    base = Configuration()
    if args.config:
        try:
            base = configuration_from_file(args.config)
        except ConfigError as exc:
            parser.error(str(exc))

    if args.command == "db-init":
        init_db(args.db, args.migrations_dir)
        return 0

    db_path = pathlib.Path(args.db)
    init_db(db_path)
    try:
        configuration = load_configuration(db_path, base=base)
    except ConfigError as exc:
        parser.error(str(exc))

    if args.command == "record":
        store = ResultStore()
        outcome = record_test(
            store,
            ReadingInput(
                small_meter_start=args.small_start,
                small_meter_end=args.small_end,
                large_meter_start=args.large_start,
                large_meter_end=args.large_end,
                total_volume=args.total_volume,
                flow_rate=args.flow_rate,
            ),
            TestType.parse(args.type),
            args.notes,
        )
        save_results(db_path, store.results())
        result = outcome.result
        print(f"{result.id}")
        print(f"Accuracy: {result.reading.accuracy():.2f}% {result.status_label()}")
        return 0

    if args.command == "history":
        _print_history(_select(load_store(db_path), args.type, args.search), configuration)
        return 0

    if args.command == "analytics":
        selected = _select(load_store(db_path), args.type, "")
        _print_analytics(selected, ChartType.parse(args.chart), args.trend)
        return 0

    if args.command == "export":
        return _export(args, configuration)

    if args.command == "import":
        try:
            import_results_json(db_path, args.file)
        except HistoryError as exc:
            LOGGER.error("%s", exc)
            return 1
        return 0

    if args.command == "settings" and args.settings_command == "set":
        if args.unit:
            configuration.set_preferred_volume_unit(args.unit)
        if args.appearance:
            configuration.set_appearance(args.appearance)
        save_configuration(db_path, configuration)

    if args.command == "settings":
        print(f"Volume Unit: {configuration.preferred_volume_unit.label}")
        print(f"Appearance: {configuration.appearance.label}")
        return 0

    parser.error(f"Command not implemented yet: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
