"""
Revert a single field to a value taken from its history.

A rollback never edits or deletes history: it writes the field, then appends a
new ``rollback`` row recording the value it replaced. Rolling back a critical
field re-resolves ``status`` and records that change as a ``rollback`` row too.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from listing_intake.errors import IntakeError
from listing_intake.history import ROLLBACK, FieldHistoryTracker, normalize_value, with_resolved_status
from listing_intake.schema import JSON_FIELDS, find_field
from listing_intake.store import BusinessStore, HistoryEntry

logger = logging.getLogger(__name__)

TRUE_TEXT = {"true", "1", "yes"}
FALSE_TEXT = {"false", "0", "no"}


@dataclass(frozen=True)
class RollbackResult:
    success: bool
    error: str | None = None


def parse_history_value(field_name: str, text: str | None) -> Any:
    """Turn stored history text back into the field's native shape."""
    if text is None:
        return None
    schema_field = find_field(field_name)
    kind = schema_field.kind if schema_field else "string"

    if field_name in JSON_FIELDS:
        try:
            parsed = json.loads(text)
        except ValueError:
            return text
        return parsed if isinstance(parsed, (list, dict)) else text
    if kind == "number":
        try:
            return float(text)
        except ValueError:
            return text
    if kind == "boolean":
        lowered = text.strip().lower()
        if lowered in TRUE_TEXT:
            return True
        if lowered in FALSE_TEXT:
            return False
    return text


def rollback_field(
    store: BusinessStore,
    tracker: FieldHistoryTracker,
    business_id: str,
    field_name: str,
    target_value: str | None,
    current_value: str | None,
    actor_id: str,
) -> RollbackResult:
    if find_field(field_name) is None:
        return RollbackResult(success=False, error=f"Unknown schema field: {field_name}")

    patch = {field_name: parse_history_value(field_name, target_value)}
    try:
        before = store.get(business_id)
        after = store.update(business_id, with_resolved_status(before, patch))
    except IntakeError as exc:
        logger.warning("Rollback of %s on business %s failed: %s", field_name, business_id, exc)
        return RollbackResult(success=False, error=str(exc))

    try:
        tracker.append(business_id, field_name, current_value, target_value, actor_id, ROLLBACK)
    except Exception:
        logger.exception("Rollback of %s on business %s applied but not recorded", field_name, business_id)
    if field_name != "status":
        tracker.track_changes(business_id, before, after, actor_id, ROLLBACK, fields=("status",))
    return RollbackResult(success=True)


def rollback_entry(
    store: BusinessStore,
    tracker: FieldHistoryTracker,
    entry: HistoryEntry,
    actor_id: str,
) -> RollbackResult:
    """Restore ``entry.old_value``, using the stored record for the current value."""
    if find_field(entry.field_name) is None:
        return RollbackResult(success=False, error=f"Cannot roll back {entry.field_name}")
    try:
        current = store.get(entry.business_id).get(entry.field_name)
    except IntakeError as exc:
        return RollbackResult(success=False, error=str(exc))
    return rollback_field(
        store,
        tracker,
        entry.business_id,
        entry.field_name,
        entry.old_value,
        normalize_value(current),
        actor_id,
    )
