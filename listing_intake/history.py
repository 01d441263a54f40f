"""
Field-level audit trail for business records.

The tracker diffs two snapshots of a record and appends one history row per
changed field. Audit writes always follow the primary write and are
best-effort: a failing history store is logged and reported in the TrackResult,
never raised into the caller's mutation.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from listing_intake.contracts import history_timestamp
from listing_intake.errors import IntakeError, UnknownFieldError
from listing_intake.record_validator import prepare_for_validation, resolve_status
from listing_intake.schema import CRITICAL_FIELDS, TRACKABLE_FIELDS, find_field
from listing_intake.store import BusinessStore, HistoryEntry, HistoryStore

logger = logging.getLogger(__name__)

MANUAL_EDIT = "manual_edit"
IMPORT = "import"
MULTI_EDIT = "multi_edit"
BULK_UPDATE = "bulk_update"
ROLLBACK = "rollback"
EXTERNAL_SYNC = "external_sync"
CRUD = "crud"
CHANGE_SOURCES = (MANUAL_EDIT, IMPORT, MULTI_EDIT, BULK_UPDATE, ROLLBACK, EXTERNAL_SYNC, CRUD)

BUSINESS_CREATED = "business_created"
BUSINESS_DELETED = "business_deleted"
DEFAULT_FIELD_LIMIT = 6

SOURCE_DISPLAY_NAMES = {
    MANUAL_EDIT: "Manual Edit",
    IMPORT: "Import",
    MULTI_EDIT: "Multi-Edit",
    BULK_UPDATE: "Bulk Update",
    ROLLBACK: "Rollback",
    EXTERNAL_SYNC: "External Sync",
    CRUD: "CRUD",
}
SENTINEL_DISPLAY_NAMES = {
    BUSINESS_CREATED: "Business Created",
    BUSINESS_DELETED: "Business Deleted",
}


@dataclass(frozen=True)
class FieldChange:
    field_name: str
    old_value: str | None
    new_value: str | None


@dataclass(frozen=True)
class TrackResult:
    success: bool
    changes_count: int = 0
    error: str | None = None


def normalize_value(value: Any) -> str | None:
    """Canonical text form used both for diffing and for storage."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, sort_keys=True, ensure_ascii=False)
    return str(value)


def get_changed_fields(
    old: Mapping[str, Any],
    new: Mapping[str, Any],
    fields: Iterable[str] | None = None,
) -> list[FieldChange]:
    changes: list[FieldChange] = []
    for name in fields if fields is not None else TRACKABLE_FIELDS:
        old_value = normalize_value(old.get(name))
        new_value = normalize_value(new.get(name))
        if old_value != new_value:
            changes.append(FieldChange(name, old_value, new_value))
    return changes


def display_name(field_name: str) -> str:
    if field_name in SENTINEL_DISPLAY_NAMES:
        return SENTINEL_DISPLAY_NAMES[field_name]
    schema_field = find_field(field_name)
    return schema_field.label if schema_field else field_name


def change_source_display_name(source: str) -> str:
    return SOURCE_DISPLAY_NAMES.get(source, source)


def _check_source(source: str) -> None:
    if source not in CHANGE_SOURCES:
        raise ValueError(f"Unknown change source {source!r}; expected one of {', '.join(CHANGE_SOURCES)}")


def _snapshot(store_code: Any, business_name: Any) -> str:
    return json.dumps({"storeCode": store_code, "businessName": business_name}, ensure_ascii=False)


class FieldHistoryTracker:
    def __init__(
        self,
        history_store: HistoryStore,
        clock: Callable[[], str] = history_timestamp,
        field_limit: int = DEFAULT_FIELD_LIMIT,
    ) -> None:
        self.history_store = history_store
        self.clock = clock
        self.field_limit = field_limit

    def _entry(
        self,
        business_id: str,
        field_name: str,
        old_value: str | None,
        new_value: str | None,
        changed_by: str,
        change_source: str,
    ) -> HistoryEntry:
        return HistoryEntry(
            business_id=business_id,
            field_name=field_name,
            old_value=old_value,
            new_value=new_value,
            changed_by=changed_by,
            change_source=change_source,
            changed_at=self.clock(),
        )

    def _write(self, entries: list[HistoryEntry], what: str) -> TrackResult:
        try:
            self.history_store.append(entries)
        except Exception as exc:
            logger.exception("Could not record %s for business %s", what, entries[0].business_id)
            return TrackResult(success=False, changes_count=0, error=str(exc))
        return TrackResult(success=True, changes_count=len(entries))

    def track_changes(
        self,
        business_id: str,
        old: Mapping[str, Any],
        new: Mapping[str, Any],
        changed_by: str,
        change_source: str = MANUAL_EDIT,
        fields: Iterable[str] | None = None,
    ) -> TrackResult:
        _check_source(change_source)
        changes = get_changed_fields(old, new, fields)
        if not changes:
            return TrackResult(success=True, changes_count=0)
        entries = [
            self._entry(business_id, change.field_name, change.old_value, change.new_value, changed_by, change_source)
            for change in changes
        ]
        return self._write(entries, "field changes")

    def track_created(
        self,
        business_id: str,
        store_code: Any,
        business_name: Any,
        changed_by: str,
        change_source: str = CRUD,
    ) -> TrackResult:
        _check_source(change_source)
        entry = self._entry(
            business_id, BUSINESS_CREATED, None, _snapshot(store_code, business_name), changed_by, change_source
        )
        return self._write([entry], "creation")

    def track_deleted(
        self,
        business_id: str,
        store_code: Any,
        business_name: Any,
        changed_by: str,
        change_source: str = CRUD,
    ) -> TrackResult:
        _check_source(change_source)
        entry = self._entry(
            business_id, BUSINESS_DELETED, _snapshot(store_code, business_name), None, changed_by, change_source
        )
        return self._write([entry], "deletion")

    def append(
        self,
        business_id: str,
        field_name: str,
        old_value: str | None,
        new_value: str | None,
        changed_by: str,
        change_source: str,
    ) -> HistoryEntry:
        """Append one raw row; unlike the track_* methods this propagates store errors."""
        _check_source(change_source)
        entry = self._entry(business_id, field_name, old_value, new_value, changed_by, change_source)
        return self.history_store.append([entry])[0]

    def list_for_business(self, business_id: str) -> list[HistoryEntry]:
        return self.history_store.list_for_business(business_id)

    def list_for_field(self, business_id: str, field_name: str, limit: int | None = None) -> list[HistoryEntry]:
        return self.history_store.list_for_field(business_id, field_name, limit or self.field_limit)

    def change_summary(self, business_id: str) -> dict[str, int]:
        counts = Counter(entry.field_name for entry in self.list_for_business(business_id))
        return dict(sorted(counts.items()))


# ── Audited mutations ─────────────────────────────────────────────────────────

def _check_patch(patch: Mapping[str, Any]) -> None:
    for name in patch:
        if find_field(name) is None and name != "is_async":
            raise UnknownFieldError(name)


def with_resolved_status(current: Mapping[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    patch = dict(patch)
    if "status" not in patch and any(name in patch for name in CRITICAL_FIELDS):
        merged = {**current, **patch}
        patch["status"] = resolve_status(prepare_for_validation(merged))
    return patch


def audited_update(
    store: BusinessStore,
    tracker: FieldHistoryTracker,
    business_id: str,
    patch: Mapping[str, Any],
    changed_by: str,
    change_source: str = MANUAL_EDIT,
) -> tuple[dict[str, Any], TrackResult]:
    """Apply ``patch`` and track it; the TrackResult tells callers whether the audit rows landed."""
    _check_source(change_source)
    _check_patch(patch)
    old = store.get(business_id)
    new = store.update(business_id, with_resolved_status(old, patch))
    result = tracker.track_changes(business_id, old, new, changed_by, change_source)
    if not result.success:
        logger.warning("Business %s updated without a complete audit trail", business_id)
    return new, result


def update_business(
    store: BusinessStore,
    tracker: FieldHistoryTracker,
    business_id: str,
    patch: Mapping[str, Any],
    changed_by: str,
    change_source: str = MANUAL_EDIT,
) -> dict[str, Any]:
    return audited_update(store, tracker, business_id, patch, changed_by, change_source)[0]


def bulk_update(
    store: BusinessStore,
    tracker: FieldHistoryTracker,
    business_ids: Iterable[str],
    patch: Mapping[str, Any],
    changed_by: str,
    change_source: str = BULK_UPDATE,
) -> list[dict[str, Any]]:
    if change_source not in (MULTI_EDIT, BULK_UPDATE):
        raise ValueError(f"Bulk updates must use {MULTI_EDIT!r} or {BULK_UPDATE!r}, got {change_source!r}")
    return [
        update_business(store, tracker, business_id, patch, changed_by, change_source)
        for business_id in business_ids
    ]


def create_business(
    store: BusinessStore,
    tracker: FieldHistoryTracker,
    record: Mapping[str, Any],
    changed_by: str,
    change_source: str = CRUD,
) -> dict[str, Any]:
    _check_source(change_source)
    _check_patch({key: value for key, value in record.items() if key != "id"})
    candidate = dict(record)
    candidate.setdefault("status", resolve_status(prepare_for_validation(candidate)))
    created = store.insert_many([candidate])[0]
    tracker.track_created(
        created["id"], created.get("storeCode"), created.get("businessName"), changed_by, change_source
    )
    return created


def delete_business(
    store: BusinessStore,
    tracker: FieldHistoryTracker,
    business_id: str,
    changed_by: str,
    change_source: str = CRUD,
) -> None:
    """Delete a record, drop its field history, and leave a business_deleted tombstone."""
    _check_source(change_source)
    record = store.get(business_id)
    store.delete(business_id)
    try:
        removed = tracker.history_store.delete_for_business(business_id)
    except IntakeError as exc:
        logger.warning("Could not clear history for deleted business %s: %s", business_id, exc)
    else:
        logger.debug("Removed %d history rows for business %s", removed, business_id)
    tracker.track_deleted(business_id, record.get("storeCode"), record.get("businessName"), changed_by, change_source)
