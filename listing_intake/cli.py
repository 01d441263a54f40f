from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from listing_intake import __version__ as TOOL_VERSION
from listing_intake.column_mapper import ColumnMapping, map_columns, missing_required, remap, unmapped_headers
from listing_intake.config import Settings, load_settings
from listing_intake.contracts import build_contract, build_run_summary
from listing_intake.errors import ImportBlockedError, IntakeError, MappingError, PersistenceError, UnknownFieldError
from listing_intake.exporter import write_export
from listing_intake.history import FieldHistoryTracker, change_source_display_name, display_name
from listing_intake.importer import commit_import, preview_import
from listing_intake.loader import LoadedTable, load_table
from listing_intake.record_validator import completeness_score, prepare_for_validation, quality_warnings, validate_record
from listing_intake.rollback import rollback_entry
from listing_intake.schema import FORMAT_RULES, SCHEMA_FIELDS
from listing_intake.store import BusinessStore, open_sqlite_stores

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_ISSUES_FOUND = 3
EXIT_BLOCKED = 5
EXIT_PARTIAL = 6

UNMAP_TOKENS = {"", "none", "-"}

logger = logging.getLogger("listing_intake")


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class ListingIntakeArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json_dumps(payload) + "\n", encoding="utf-8")


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def configure_logging(settings: Settings, *, verbose: bool = False, quiet: bool = False) -> None:
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.getLevelName(settings.log_level)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr, force=True)


def classify_backend_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, ImportBlockedError):
        return EXIT_BLOCKED
    if isinstance(exc, (UnknownFieldError, PersistenceError, IntakeError)):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, (ImportError, UnicodeDecodeError)):
        return EXIT_PARSE_FAILED
    if isinstance(exc, FileNotFoundError):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, ValueError):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


# ── Shared helpers ────────────────────────────────────────────────────────────

def parse_overrides(values: list[str] | None) -> list[tuple[str, str | None]]:
    overrides: list[tuple[str, str | None]] = []
    for item in values or []:
        if "=" not in item:
            raise CliError(f"--map expects HEADER=field, got {item!r}", EXIT_COMMAND_ERROR)
        header, target = item.rsplit("=", 1)
        target = target.strip()
        overrides.append((header.strip(), None if target.lower() in UNMAP_TOKENS else target))
    return overrides


def resolve_mappings(table: LoadedTable, overrides: list[tuple[str, str | None]]) -> list[ColumnMapping]:
    mappings = map_columns(table.headers)
    for header, target in overrides:
        try:
            mappings = remap(mappings, header, target)
        except UnknownFieldError:
            raise
        except KeyError as exc:
            raise MappingError(str(exc.args[0])) from None
    return mappings


def load_input(args: argparse.Namespace) -> LoadedTable:
    input_path = Path(args.input)
    if not input_path.exists():
        raise CliError(f"File not found: {input_path}", EXIT_COMMAND_ERROR)
    return load_table(input_path, sheet_name=getattr(args, "sheet_name", None))


def db_path(args: argparse.Namespace, settings: Settings) -> Path:
    return Path(args.db) if getattr(args, "db", None) else settings.db_path


def open_stores(args: argparse.Namespace, settings: Settings):
    business_store, history_store = open_sqlite_stores(db_path(args, settings))
    return business_store, FieldHistoryTracker(history_store, field_limit=settings.history_limit)


def find_business(store: BusinessStore, key: str) -> dict[str, Any]:
    record = store.find(key)
    if record is not None:
        return record
    return store.get(key)


def report_payload(contract: str, command: str, body: dict[str, Any], **summary: Any) -> dict[str, Any]:
    return {
        "contract": build_contract(contract),
        "run": build_run_summary(command=command, **summary),
        "version": TOOL_VERSION,
        **body,
    }


def write_report_if_requested(args: argparse.Namespace, payload: dict[str, Any]) -> None:
    if getattr(args, "output", None):
        output_path = Path(args.output)
        write_json(output_path, payload)
        emit_human(f"Report written: {output_path}", quiet=args.quiet)


# ── Renderers ─────────────────────────────────────────────────────────────────

def render_mapping_text(mappings: list[ColumnMapping], missing: list[str]) -> str:
    width = max((len(mapping.source_header) for mapping in mappings), default=10)
    lines = ["listing-intake map"]
    for mapping in mappings:
        target = mapping.target_field or "(unmapped)"
        notes = []
        if mapping.strategy:
            notes.append(mapping.strategy)
        if mapping.displaced_by:
            notes.append(f"lost to {mapping.displaced_by!r}")
        if mapping.is_combined_hours:
            notes.append("combined opening hours, split into day columns")
        suffix = f"  [{', '.join(notes)}]" if notes else ""
        lines.append(f"  {mapping.source_header:<{width}}  ->  {target}{suffix}")
    if missing:
        lines.append("Missing required fields: " + ", ".join(missing))
    return "\n".join(lines) + "\n"


def render_preview_text(payload: dict[str, Any]) -> str:
    counts = payload["counts"]
    lines = [
        "listing-intake check",
        f"Rows: {counts['rows']}  valid: {counts['valid']}  invalid: {counts['invalid']}",
        f"Duplicates of existing store codes: {counts['duplicates']}",
        f"Rows without store code (placeholder on import): {counts['placeholder_store_codes']}",
    ]
    if payload["missing_required"]:
        lines.append("Missing required mappings: " + ", ".join(payload["missing_required"]))
    if payload["column_issues"]:
        lines.append("Column issues:")
        for header, issue in sorted(payload["column_issues"].items()):
            lines.append(f"- [{issue['severity']}] {header}: {issue['message']}")
            if issue["details"]:
                lines.append(f"    {issue['details']}")
    invalid_rows = [row for row in payload["rows"] if any(e["severity"] == "critical" for e in row["errors"])]
    for row in invalid_rows[:20]:
        messages = "; ".join(f"{e['field']}: {e['message']}" for e in row["errors"] if e["severity"] == "critical")
        lines.append(f"- row {row['row']}: {messages}")
    if len(invalid_rows) > 20:
        lines.append(f"... and {len(invalid_rows) - 20} more rows with critical errors")
    return "\n".join(lines) + "\n"


def render_commit_text(result: dict[str, Any]) -> str:
    text = (
        f"{result['active']} complete businesses imported, "
        f"{result['pending']} incomplete businesses need attention"
    )
    if result["overridden"]:
        text += f", {result['overridden']} existing businesses overridden"
    if result["updated"]:
        text += f", {result['updated']} existing businesses updated"
    if result["skipped_duplicates"]:
        text += f", {result['skipped_duplicates']} duplicates skipped"
    if result["history_failures"]:
        text += f", {result['history_failures']} history entries could not be written"
    return text + "\n"


def render_validation_text(payload: dict[str, Any]) -> str:
    lines = [
        "listing-intake validate",
        f"Records: {payload['record_count']}  with critical errors: {payload['critical_count']}  "
        f"with minor issues: {payload['minor_count']}",
    ]
    for item in payload["records"]:
        if not item["critical"] and not item["minor"]:
            continue
        lines.append(f"{item['storeCode']} ({item['completeness']}% complete)")
        for issue in item["critical"]:
            lines.append(f"  ! {issue['field']}: {issue['message']}")
        for issue in item["minor"]:
            lines.append(f"  - {issue['field']}: {issue['message']}")
    return "\n".join(lines) + "\n"


def render_history_text(payload: dict[str, Any]) -> str:
    lines = [f"History for {payload['storeCode']} ({payload['business_id']})"]
    for entry in payload["entries"]:
        lines.append(
            f"#{entry['id']} {entry['changed_at']} {entry['field_label']}: "
            f"{entry['old_value']!r} -> {entry['new_value']!r} "
            f"by {entry['changed_by']} ({entry['source_label']})"
        )
    if not payload["entries"]:
        lines.append("No history recorded.")
    return "\n".join(lines) + "\n"


# ── Parser ────────────────────────────────────────────────────────────────────

def add_common_flags(parser: argparse.ArgumentParser, *, db: bool = True) -> None:
    parser.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    parser.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    if db:
        parser.add_argument("--db", help="SQLite database path (default: LISTING_INTAKE_DB)")


def add_input_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("input", help="Input file path")
    parser.add_argument("--sheet", dest="sheet_name", help="Workbook sheet name")
    parser.add_argument(
        "--map",
        dest="overrides",
        action="append",
        metavar="HEADER=FIELD",
        help="Override a column mapping; FIELD 'none' leaves the column unmapped",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = ListingIntakeArgumentParser(
        prog="listing-intake",
        description="Map, validate and import business-location spreadsheets with a field-level audit trail.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    mapping = subparsers.add_parser("map", help="Show how the columns of a file map onto the schema.")
    add_input_flags(mapping)
    add_common_flags(mapping, db=False)
    mapping.add_argument("--output", help="Write the mapping report to this path")

    check = subparsers.add_parser("check", help="Preview an import without writing anything.")
    add_input_flags(check)
    add_common_flags(check)
    check.add_argument("--merge", action="store_true", help="Preview a merge import (update existing records only)")
    check.add_argument("--output", help="Write the preview report to this path")

    do_import = subparsers.add_parser("import", help="Import a file into the database.")
    add_input_flags(do_import)
    add_common_flags(do_import)
    do_import.add_argument("--merge", action="store_true", help="Only update existing records matched by store code")
    do_import.add_argument("--allow-override", action="store_true", help="Merge rows whose store code already exists")
    do_import.add_argument("--actor", help="Actor id recorded in history (default: LISTING_INTAKE_ACTOR)")
    do_import.add_argument("--output", help="Write the commit report to this path")

    validate = subparsers.add_parser("validate", help="Validate stored records.")
    add_common_flags(validate)
    validate.add_argument("--store-code", dest="store_codes", action="append", help="Only validate these store codes")
    validate.add_argument("--output", help="Write the validation report to this path")

    export = subparsers.add_parser("export", help="Export publishable records as JSON.")
    export.add_argument("output", help="Output JSON path")
    add_common_flags(export)

    history = subparsers.add_parser("history", help="Show the change history of one record.")
    history.add_argument("business", help="Store code or business id")
    history.add_argument("--field", help="Only show one field")
    history.add_argument("--limit", type=int, help="Maximum entries when --field is used")
    add_common_flags(history)

    rollback = subparsers.add_parser("rollback", help="Revert a field to the value before a history entry.")
    rollback.add_argument("business", help="Store code or business id")
    rollback.add_argument("field", help="Field name")
    rollback.add_argument("--entry", type=int, help="History entry id (default: latest entry for the field)")
    rollback.add_argument("--actor", help="Actor id recorded in history (default: LISTING_INTAKE_ACTOR)")
    add_common_flags(rollback)

    explain = subparsers.add_parser("explain", help="Explain a format rule id.")
    explain.add_argument("rule_id", help="Rule identifier, e.g. day_hours")
    explain.add_argument("--json", action="store_true", help="Write machine JSON to stdout")

    subparsers.add_parser("version", help="Print version")
    return parser


# ── Commands ──────────────────────────────────────────────────────────────────

def run_map(args: argparse.Namespace, settings: Settings) -> int:
    try:
        table = load_input(args)
        mappings = resolve_mappings(table, parse_overrides(args.overrides))
        missing = missing_required(mappings)
        payload = report_payload(
            "listing_intake.mapping",
            "map",
            {
                "mappings": [mapping.to_dict() for mapping in mappings],
                "unmapped": unmapped_headers(mappings),
                "missing_required": missing,
                "input": table.summary(),
            },
            input_path=Path(args.input),
            warnings=table.warnings,
        )
        write_report_if_requested(args, payload)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_mapping_text(mappings, missing).rstrip(), quiet=args.quiet)
        return EXIT_ISSUES_FOUND if missing else EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def _preview(args: argparse.Namespace, settings: Settings, *, need_store: bool):
    table = load_input(args)
    mappings = resolve_mappings(table, parse_overrides(args.overrides))
    store = tracker = None
    path = db_path(args, settings)
    if need_store or args.merge or path.exists():
        store, tracker = open_stores(args, settings)
    preview = preview_import(table, mappings, store=store, merge=args.merge)
    return table, preview, store, tracker


def run_check(args: argparse.Namespace, settings: Settings) -> int:
    try:
        table, preview, _, _ = _preview(args, settings, need_store=False)
        body = {**preview.to_dict(), "input": table.summary()}
        payload = report_payload(
            "listing_intake.import_preview",
            "check",
            body,
            input_path=Path(args.input),
            status="blocked" if preview.blocked else "ok",
            metrics=body["counts"],
            warnings=table.warnings,
        )
        write_report_if_requested(args, payload)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_preview_text(body).rstrip(), quiet=args.quiet)
        if preview.blocked:
            return EXIT_BLOCKED
        return EXIT_ISSUES_FOUND if preview.column_issues else EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_import(args: argparse.Namespace, settings: Settings) -> int:
    try:
        table, preview, store, tracker = _preview(args, settings, need_store=True)
        actor = args.actor or settings.actor_id
        try:
            result = commit_import(preview, store, tracker, actor, allow_override=args.allow_override)
        except ImportBlockedError as exc:
            payload = report_payload(
                "listing_intake.import_commit",
                "import",
                {
                    "error": str(exc),
                    "row_issues": {
                        str(row): [issue.to_dict() for issue in issues] for row, issues in exc.row_issues.items()
                    },
                    "preview": preview.to_dict(),
                },
                input_path=Path(args.input),
                status="blocked",
            )
            write_report_if_requested(args, payload)
            maybe_emit_json_stdout(payload, args.json)
            eprint(str(exc))
            if not args.json:
                emit_human(render_preview_text(preview.to_dict()).rstrip(), quiet=args.quiet)
            return EXIT_BLOCKED

        body = result.to_dict()
        payload = report_payload(
            "listing_intake.import_commit",
            "import",
            {"result": body},
            input_path=Path(args.input),
            status="partial" if result.partial else "ok",
            metrics=body,
            warnings=table.warnings,
        )
        write_report_if_requested(args, payload)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_commit_text(body).rstrip(), quiet=args.quiet)
        return EXIT_PARTIAL if result.partial else EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_validate(args: argparse.Namespace, settings: Settings) -> int:
    try:
        store, _ = open_stores(args, settings)
        records = store.all()
        if args.store_codes:
            wanted = set(args.store_codes)
            records = [record for record in records if record.get("storeCode") in wanted]
        items = []
        for record in records:
            result = validate_record(prepare_for_validation(record))
            items.append(
                {
                    "id": record["id"],
                    "storeCode": record.get("storeCode"),
                    "status": record.get("status"),
                    "completeness": completeness_score(record),
                    "critical": [issue.to_dict() for issue in result.critical],
                    "minor": [issue.to_dict() for issue in result.minor + quality_warnings(record)],
                }
            )
        body = {
            "record_count": len(items),
            "critical_count": sum(1 for item in items if item["critical"]),
            "minor_count": sum(1 for item in items if item["minor"]),
            "records": items,
        }
        payload = report_payload("listing_intake.validation", "validate", body, metrics={
            "record_count": body["record_count"],
            "critical_count": body["critical_count"],
            "minor_count": body["minor_count"],
        })
        write_report_if_requested(args, payload)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_validation_text(body).rstrip(), quiet=args.quiet)
        if body["critical_count"]:
            return EXIT_BLOCKED
        return EXIT_ISSUES_FOUND if body["minor_count"] else EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_export(args: argparse.Namespace, settings: Settings) -> int:
    try:
        store, _ = open_stores(args, settings)
        records = store.all()
        output_path = Path(args.output)
        exported = write_export(output_path, records)
        summary = {"exported": len(exported), "skipped": len(records) - len(exported), "output": str(output_path)}
        if args.json:
            maybe_emit_json_stdout(summary, True)
        else:
            emit_human(
                f"Exported {summary['exported']} records to {output_path} ({summary['skipped']} not publishable)",
                quiet=args.quiet,
            )
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_history(args: argparse.Namespace, settings: Settings) -> int:
    try:
        store, tracker = open_stores(args, settings)
        record = find_business(store, args.business)
        if args.field:
            entries = tracker.list_for_field(record["id"], args.field, args.limit)
        else:
            entries = tracker.list_for_business(record["id"])
        body = {
            "business_id": record["id"],
            "storeCode": record.get("storeCode"),
            "summary": tracker.change_summary(record["id"]),
            "entries": [
                {
                    **entry.to_dict(),
                    "field_label": display_name(entry.field_name),
                    "source_label": change_source_display_name(entry.change_source),
                }
                for entry in entries
            ],
        }
        payload = report_payload("listing_intake.history", "history", body)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            print(render_history_text(body), end="")
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_rollback(args: argparse.Namespace, settings: Settings) -> int:
    try:
        store, tracker = open_stores(args, settings)
        record = find_business(store, args.business)
        entries = tracker.history_store.list_for_field(record["id"], args.field)
        if args.entry is not None:
            entries = [entry for entry in entries if entry.id == args.entry]
        if not entries:
            raise CliError(f"No history entry found for {args.field} on {args.business}", EXIT_COMMAND_ERROR)
        entry = entries[0]
        result = rollback_entry(store, tracker, entry, args.actor or settings.actor_id)
        payload = {"success": result.success, "error": result.error, "entry": entry.to_dict()}
        if args.json:
            maybe_emit_json_stdout(payload, True)
        elif result.success:
            emit_human(f"Rolled back {display_name(args.field)} to {entry.old_value!r}", quiet=args.quiet)
        if not result.success:
            eprint(f"Rollback failed: {result.error}")
            return EXIT_COMMAND_ERROR
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_explain(args: argparse.Namespace) -> int:
    rule = FORMAT_RULES.get(args.rule_id)
    if rule is None:
        eprint(f"Unknown rule id: {args.rule_id}")
        return EXIT_COMMAND_ERROR
    payload = {
        "rule_id": rule.name,
        "description": rule.description,
        "message": rule.message,
        "example": rule.example,
        "fields": [item.name for item in SCHEMA_FIELDS if item.format_rule == rule.name],
    }
    if args.json:
        maybe_emit_json_stdout(payload, True)
    else:
        print(
            "\n".join(
                [
                    f"Rule: {rule.name}",
                    f"What it checks: {rule.description}",
                    f"Error message: {rule.message}",
                    f"Example: {rule.example}",
                    f"Fields: {', '.join(payload['fields']) or '(list item checks only)'}",
                ]
            )
        )
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


COMMANDS = {
    "map": run_map,
    "check": run_check,
    "import": run_import,
    "validate": run_validate,
    "export": run_export,
    "history": run_history,
    "rollback": run_rollback,
}


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        if args.command == "explain":
            return run_explain(args)
        if args.command == "version":
            return run_version()
        try:
            settings = load_settings()
        except ValueError as exc:
            raise CliError(str(exc), EXIT_COMMAND_ERROR) from None
        configure_logging(settings, verbose=args.verbose, quiet=args.quiet)
        logger.debug("Running %s with database %s", args.command, getattr(args, "db", None) or settings.db_path)
        handler = COMMANDS.get(args.command)
        if handler is None:
            raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
        return handler(args, settings)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
