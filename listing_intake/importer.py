"""
Spreadsheet import: preview first, then commit as one batch.

``preview_import`` maps the columns, runs the column checks, transforms every
row into a candidate record and validates it. Nothing is written. The operator
reviews the preview, optionally remaps columns, and ``commit_import`` writes the
whole batch or refuses it with one aggregate ImportBlockedError.

Standard imports create new records (duplicates of existing store codes are
skipped, or merged with ``allow_override``). Merge imports only update existing
records matched by store code, touching just the mapped, non-empty fields.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

import pandas as pd

from listing_intake.column_mapper import ColumnMapping, map_columns, missing_required
from listing_intake.column_validator import ColumnValidationResult, validate_columns
from listing_intake.errors import ImportBlockedError
from listing_intake.history import IMPORT, FieldHistoryTracker, audited_update, normalize_value
from listing_intake.loader import LoadedTable
from listing_intake.record_validator import (
    CRITICAL,
    ValidationIssue,
    prepare_for_validation,
    resolve_status,
    validate_record,
)
from listing_intake.schema import (
    HOURS_FIELDS,
    JSON_FIELDS,
    SOCIAL_PLATFORMS,
    generate_placeholder_store_code,
    get_field,
    get_rule,
)
from listing_intake.store import BusinessStore

logger = logging.getLogger(__name__)

TRUE_VALUES = {"true", "1", "yes"}
CLOSED_TEXT = "closed"
CLOSABLE_FIELDS = HOURS_FIELDS + ("specialHours",)
COMMA_LIST_FIELDS = ("additionalCategories", "additionalPhones", "labels")
URL_RULES = {"single_url", "multiple_urls"}

ACTION_INSERT = "insert"
ACTION_SKIP = "skip_duplicate"
ACTION_OVERRIDE = "override"
ACTION_UPDATE = "update"
ACTION_UNCHANGED = "unchanged"


@dataclass
class RowOutcome:
    row_number: int
    record: dict[str, Any]
    errors: list[ValidationIssue] = field(default_factory=list)
    placeholder_store_code: bool = False
    existing_id: str | None = None
    action: str = ACTION_INSERT
    patch: dict[str, Any] = field(default_factory=dict)

    @property
    def blocking_errors(self) -> list[ValidationIssue]:
        # A missing store code is replaced by a placeholder on commit; the record lands as pending.
        return [
            issue
            for issue in self.errors
            if issue.severity == CRITICAL and not (self.placeholder_store_code and issue.root_field == "storeCode")
        ]

    @property
    def is_valid(self) -> bool:
        return not self.blocking_errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row_number,
            "action": self.action,
            "status": self.record.get("status"),
            "store_code": self.record.get("storeCode"),
            "existing_id": self.existing_id,
            "placeholder_store_code": self.placeholder_store_code,
            "errors": [issue.to_dict() for issue in self.errors],
            "changed_fields": sorted(self.patch),
        }


@dataclass
class ImportPreview:
    mappings: list[ColumnMapping]
    column_issues: dict[str, ColumnValidationResult]
    rows: list[RowOutcome]
    missing_required: list[str]
    merge: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def valid_count(self) -> int:
        return sum(1 for row in self.rows if row.is_valid)

    @property
    def invalid_count(self) -> int:
        return len(self.rows) - self.valid_count

    @property
    def duplicates(self) -> list[str]:
        return [row.record["storeCode"] for row in self.rows if row.existing_id and not self.merge]

    @property
    def blocked(self) -> bool:
        return bool(self.missing_required) or self.invalid_count > 0

    @property
    def mapped_fields(self) -> list[str]:
        return [mapping.target_field for mapping in self.mappings if mapping.target_field]

    def to_dict(self) -> dict[str, Any]:
        return {
            "merge": self.merge,
            "blocked": self.blocked,
            "missing_required": list(self.missing_required),
            "mappings": [mapping.to_dict() for mapping in self.mappings],
            "column_issues": {header: issue.to_dict() for header, issue in self.column_issues.items()},
            "counts": {
                "rows": len(self.rows),
                "valid": self.valid_count,
                "invalid": self.invalid_count,
                "duplicates": len(self.duplicates),
                "placeholder_store_codes": sum(1 for row in self.rows if row.placeholder_store_code),
            },
            "duplicates": self.duplicates,
            "rows": [row.to_dict() for row in self.rows],
            "warnings": list(self.warnings),
        }


@dataclass
class ImportCommitResult:
    inserted_ids: list[str] = field(default_factory=list)
    active_count: int = 0
    pending_count: int = 0
    overridden_count: int = 0
    skipped_count: int = 0
    updated_count: int = 0
    unchanged_count: int = 0
    history_failures: int = 0

    @property
    def partial(self) -> bool:
        return self.skipped_count > 0 or self.history_failures > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "inserted": len(self.inserted_ids),
            "inserted_ids": list(self.inserted_ids),
            "active": self.active_count,
            "pending": self.pending_count,
            "overridden": self.overridden_count,
            "skipped_duplicates": self.skipped_count,
            "updated": self.updated_count,
            "unchanged": self.unchanged_count,
            "history_failures": self.history_failures,
        }


# ── Row transformation ────────────────────────────────────────────────────────

def _strip_angle_brackets(text: str) -> str:
    if text.startswith("<") and text.endswith(">"):
        return text[1:-1].strip()
    return text


def _to_coordinate(text: str) -> Any:
    try:
        number = float(text)
    except ValueError:
        return text
    return number if math.isfinite(number) else text


def _to_iso_date(text: str) -> str:
    if get_rule("iso_date").matches(text):
        return text
    try:
        parsed = pd.to_datetime(text)
    except (ValueError, TypeError, OverflowError):
        return text
    if pd.isna(parsed):
        return text
    return parsed.strftime("%Y-%m-%d")


def _to_json_list(text: str) -> Any:
    try:
        parsed = json.loads(text)
    except ValueError:
        return text
    return parsed if isinstance(parsed, list) else text


def _is_url_field(name: str) -> bool:
    rule = get_field(name).format_rule
    return rule in URL_RULES


def transform_row(row: Mapping[str, Any], mappings: Iterable[ColumnMapping]) -> dict[str, Any]:
    """Build a candidate record from one raw row; empty cells never overwrite anything."""
    record: dict[str, Any] = {}
    socials: list[dict[str, str]] = []

    for mapping in mappings:
        target = mapping.target_field
        if not target:
            continue
        raw = row.get(mapping.source_header)
        text = "" if raw is None else str(raw).strip()
        if not text:
            continue

        if target in SOCIAL_PLATFORMS:
            socials.append({"name": target, "url": _strip_angle_brackets(text)})
        elif target in ("latitude", "longitude"):
            record[target] = _to_coordinate(text)
        elif target == "openingDate":
            record[target] = _to_iso_date(text)
        elif target == "temporarilyClosed":
            record[target] = text.lower() in TRUE_VALUES
        elif target in CLOSABLE_FIELDS:
            if text.lower() != CLOSED_TEXT:
                record[target] = text
        elif target in COMMA_LIST_FIELDS:
            record[target] = ",".join(item.strip() for item in text.split(",") if item.strip())
        elif target in JSON_FIELDS:
            record[target] = _to_json_list(text)
        elif _is_url_field(target):
            record[target] = _strip_angle_brackets(text)
        else:
            record[target] = text

    if socials:
        existing = record.get("socialMediaUrls")
        record["socialMediaUrls"] = merge_social_urls(existing if isinstance(existing, list) else [], socials)
    return record


def merge_social_urls(existing: list[Any], incoming: list[dict[str, Any]]) -> list[Any]:
    """Replace entries for the same platform, keep the others, append new platforms."""
    merged = list(existing)
    for social in incoming:
        for index, current in enumerate(merged):
            if isinstance(current, Mapping) and current.get("name") == social["name"]:
                merged[index] = social
                break
        else:
            merged.append(social)
    return merged


# ── Preview ───────────────────────────────────────────────────────────────────

def _override_patch(existing: Mapping[str, Any], record: Mapping[str, Any]) -> dict[str, Any]:
    patch = {key: value for key, value in record.items() if key not in ("storeCode", "status")}
    if "socialMediaUrls" in patch and isinstance(patch["socialMediaUrls"], list):
        current = existing.get("socialMediaUrls")
        patch["socialMediaUrls"] = merge_social_urls(current if isinstance(current, list) else [], patch["socialMediaUrls"])
    return patch


def _changed_only(existing: Mapping[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    return {
        key: value
        for key, value in patch.items()
        if normalize_value(value) != normalize_value(existing.get(key))
    }


def _preview_standard_row(
    row_number: int,
    record: dict[str, Any],
    store: BusinessStore | None,
    seen_codes: dict[str, int],
) -> RowOutcome:
    store_code = record.get("storeCode")
    outcome = RowOutcome(row_number=row_number, record=record, placeholder_store_code=not store_code)
    outcome.errors = validate_record(prepare_for_validation(record)).errors
    record["status"] = resolve_status(prepare_for_validation(record))

    if not store_code:
        return outcome
    if store_code in seen_codes:
        outcome.errors.append(
            ValidationIssue(
                field="storeCode",
                message=f"Store code {store_code} already appears in row {seen_codes[store_code]}",
                suggestion="Each row needs its own store code",
                severity=CRITICAL,
            )
        )
        return outcome
    seen_codes[store_code] = row_number

    existing = store.find(store_code) if store is not None else None
    if existing is not None:
        outcome.existing_id = existing["id"]
        outcome.action = ACTION_SKIP
        outcome.patch = _changed_only(existing, _override_patch(existing, record))
    return outcome


def _preview_merge_row(row_number: int, record: dict[str, Any], store: BusinessStore) -> RowOutcome:
    outcome = RowOutcome(row_number=row_number, record=record, action=ACTION_UPDATE)
    store_code = record.get("storeCode")
    existing = store.find(store_code) if store_code else None
    if existing is None:
        outcome.errors.append(
            ValidationIssue(
                field="storeCode",
                message="No existing location found for this store code"
                if store_code
                else "Store code is required for merge import",
                suggestion="Check the store code or use a standard import to create new locations.",
                severity=CRITICAL,
            )
        )
        return outcome

    outcome.existing_id = existing["id"]
    outcome.patch = _changed_only(existing, _override_patch(existing, record))
    if not outcome.patch:
        outcome.action = ACTION_UNCHANGED
        return outcome

    merged = prepare_for_validation({**existing, **outcome.patch})
    changed = set(outcome.patch)
    outcome.errors = [issue for issue in validate_record(merged).errors if issue.root_field in changed]
    return outcome


def preview_import(
    table: LoadedTable,
    mappings: list[ColumnMapping] | None = None,
    store: BusinessStore | None = None,
    merge: bool = False,
) -> ImportPreview:
    if merge and store is None:
        raise ValueError("A merge import needs a store to match existing records against")
    if mappings is None:
        mappings = map_columns(table.headers)

    preview = ImportPreview(
        mappings=mappings,
        column_issues=validate_columns(mappings, table.rows),
        rows=[],
        missing_required=missing_required(mappings, merge=merge),
        merge=merge,
        warnings=list(table.warnings),
    )
    if preview.missing_required:
        logger.info("Import is missing required mappings: %s", ", ".join(preview.missing_required))

    seen_codes: dict[str, int] = {}
    for row_number, row in enumerate(table.rows, start=1):
        record = transform_row(row, mappings)
        if merge:
            preview.rows.append(_preview_merge_row(row_number, record, store))
        else:
            preview.rows.append(_preview_standard_row(row_number, record, store, seen_codes))

    logger.info(
        "Previewed %d rows: %d valid, %d invalid, %d column issues",
        len(preview.rows),
        preview.valid_count,
        preview.invalid_count,
        len(preview.column_issues),
    )
    return preview


# ── Commit ────────────────────────────────────────────────────────────────────

def _raise_if_blocked(preview: ImportPreview) -> None:
    if preview.missing_required:
        raise ImportBlockedError(
            f"Required columns are not mapped: {', '.join(preview.missing_required)}"
        )
    row_issues = {row.row_number: row.blocking_errors for row in preview.rows if row.blocking_errors}
    if row_issues:
        raise ImportBlockedError(
            f"{len(row_issues)} of {len(preview.rows)} rows have critical errors; nothing was imported",
            row_issues,
        )


def _commit_merge(
    preview: ImportPreview,
    store: BusinessStore,
    tracker: FieldHistoryTracker,
    actor_id: str,
    result: ImportCommitResult,
) -> None:
    for row in preview.rows:
        if not row.patch:
            result.unchanged_count += 1
            continue
        _, tracked = audited_update(store, tracker, row.existing_id, row.patch, actor_id, IMPORT)
        if not tracked.success:
            result.history_failures += 1
        result.updated_count += 1


def _commit_standard(
    preview: ImportPreview,
    store: BusinessStore,
    tracker: FieldHistoryTracker,
    actor_id: str,
    allow_override: bool,
    result: ImportCommitResult,
) -> None:
    taken_codes = [record.get("storeCode") for record in store.all()]
    new_records: list[dict[str, Any]] = []
    overrides: list[tuple[str, dict[str, Any]]] = []

    for row in preview.rows:
        record = dict(row.record)
        store_code = record.get("storeCode")
        existing = store.find(store_code) if store_code else None
        if existing is not None:
            if not allow_override:
                result.skipped_count += 1
                continue
            patch = _changed_only(existing, _override_patch(existing, record))
            patch["status"] = resolve_status(prepare_for_validation({**existing, **patch}))
            overrides.append((existing["id"], patch))
            continue
        if not store_code:
            record["storeCode"] = generate_placeholder_store_code(taken_codes)
            record["status"] = "pending"
        taken_codes.append(record["storeCode"])
        new_records.append(record)

    inserted = store.insert_many(new_records) if new_records else []
    for created in inserted:
        result.inserted_ids.append(created["id"])
        if created.get("status") == "active":
            result.active_count += 1
        else:
            result.pending_count += 1
        tracked = tracker.track_created(
            created["id"], created.get("storeCode"), created.get("businessName"), actor_id, IMPORT
        )
        if not tracked.success:
            result.history_failures += 1

    for business_id, patch in overrides:
        _, tracked = audited_update(store, tracker, business_id, patch, actor_id, IMPORT)
        if not tracked.success:
            result.history_failures += 1
        result.overridden_count += 1


def commit_import(
    preview: ImportPreview,
    store: BusinessStore,
    tracker: FieldHistoryTracker,
    actor_id: str,
    allow_override: bool = False,
) -> ImportCommitResult:
    _raise_if_blocked(preview)
    result = ImportCommitResult()
    if preview.merge:
        _commit_merge(preview, store, tracker, actor_id, result)
    else:
        _commit_standard(preview, store, tracker, actor_id, allow_override, result)
    logger.info(
        "Import committed: %d inserted, %d overridden, %d updated, %d skipped",
        len(result.inserted_ids),
        result.overridden_count,
        result.updated_count,
        result.skipped_count,
    )
    return result
