"""Export of publishable records as a JSON array keyed by schema field."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping

from listing_intake.record_validator import is_empty, is_exportable, prepare_for_validation
from listing_intake.schema import field_names

logger = logging.getLogger(__name__)


def export_record(record: Mapping[str, Any]) -> dict[str, Any]:
    """Every schema key in registry order, None for empty values."""
    prepared = prepare_for_validation(record)
    return {name: None if is_empty(prepared.get(name)) else prepared[name] for name in field_names()}


def build_export(records: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    exported: list[dict[str, Any]] = []
    skipped = 0
    for record in records:
        if is_exportable(record):
            exported.append(export_record(record))
        else:
            skipped += 1
    if skipped:
        logger.info("Skipped %d records that are pending, syncing, or have critical errors", skipped)
    return exported


def write_export(path: str | Path, records: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    payload = build_export(records)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    logger.info("Wrote %d records to %s", len(payload), path)
    return payload
