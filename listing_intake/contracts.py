"""Shared versioned contracts for listing-intake JSON reports."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

CONTRACT_VERSIONS = {
    "listing_intake.mapping": "1.0.0",
    "listing_intake.import_preview": "1.0.0",
    "listing_intake.import_commit": "1.0.0",
    "listing_intake.validation": "1.0.0",
    "listing_intake.history": "1.0.0",
}

OUTPUT_STAMP_ENV = "LISTING_INTAKE_OUTPUT_STAMP"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def history_timestamp() -> str:
    """Microsecond UTC timestamp for audit rows; LISTING_INTAKE_OUTPUT_STAMP pins it."""
    override = os.environ.get(OUTPUT_STAMP_ENV)
    if override:
        return override
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def report_timestamp() -> str:
    return os.environ.get(OUTPUT_STAMP_ENV) or utc_now_iso()


def build_contract(name: str) -> dict[str, str]:
    version = CONTRACT_VERSIONS[name]
    return {"name": name, "version": version}


def build_run_summary(
    *,
    command: str,
    input_path: Path | None = None,
    status: str = "ok",
    output_path: Path | None = None,
    metrics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "tool": "listing-intake",
        "command": command,
        "status": status,
        "generated_at": report_timestamp(),
        "input_file": str(input_path) if input_path else None,
        "output_file": str(output_path) if output_path else None,
        "warnings_count": len(warnings or []),
        "warnings": list(warnings or []),
        "metrics": metrics or {},
    }
