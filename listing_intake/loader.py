"""
Load an import file into headers plus rows of text cells.

Supports: .csv .tsv .txt .xlsx .xlsm .xls .ods .json .jsonl

Every cell comes back as a string (empty cells as ""), because the mapper and
the column checks work on the text the operator typed, and the import pipeline
does its own typed conversion afterwards.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import chardet
import pandas as pd

logger = logging.getLogger(__name__)

TEXT_FORMATS = {".csv", ".tsv", ".txt"}
EXCEL_FORMATS = {".xlsx", ".xlsm", ".xls"}
ODS_FORMATS = {".ods"}
JSON_FORMATS = {".json"}
JSONL_FORMATS = {".jsonl"}
ALL_FORMATS = TEXT_FORMATS | EXCEL_FORMATS | ODS_FORMATS | JSON_FORMATS | JSONL_FORMATS

CANDIDATE_DELIMITERS = ",;\t|"
JSON_RECORD_KEYS = ("businesses", "locations")


@dataclass
class LoadedTable:
    headers: list[str]
    rows: list[dict[str, str]]
    detected_format: str
    detected_encoding: str | None = None
    delimiter: str | None = None
    sheet_name: str | None = None
    sheet_names: list[str] | None = None
    warnings: list[str] = field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return {
            "detected_format": self.detected_format,
            "detected_encoding": self.detected_encoding,
            "delimiter": self.delimiter,
            "sheet_name": self.sheet_name,
            "rows": len(self.rows),
            "columns": len(self.headers),
            "warnings": list(self.warnings),
        }


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value).strip()


def _frame_to_table(df: pd.DataFrame, detected_format: str, **extra: Any) -> LoadedTable:
    headers = [str(column).strip() for column in df.columns]
    rows: list[dict[str, str]] = []
    for values in df.itertuples(index=False, name=None):
        row = {header: cell_text(value) for header, value in zip(headers, values)}
        if any(row.values()):
            rows.append(row)
    return LoadedTable(headers=headers, rows=rows, detected_format=detected_format, **extra)


# ── Text formats ──────────────────────────────────────────────────────────────

def decode_bytes(raw: bytes) -> tuple[str, str, list[str]]:
    """Decode as UTF-8 (BOM stripped); fall back to chardet's guess with a warning."""
    try:
        return raw.decode("utf-8-sig"), "utf-8", []
    except UnicodeDecodeError:
        pass

    guess = chardet.detect(raw)
    encoding = guess.get("encoding") or "cp1252"
    confidence = round(guess.get("confidence") or 0.0, 2)
    try:
        text = raw.decode(encoding)
    except (LookupError, UnicodeDecodeError):
        encoding = "cp1252"
        text = raw.decode(encoding, errors="replace")
    warning = f"File is not UTF-8; decoded as {encoding} (confidence {confidence}). Save as UTF-8 to be safe."
    logger.warning(warning)
    return text.lstrip("\ufeff"), encoding, [warning]


def detect_delimiter(text: str) -> str:
    sample = "\n".join([line for line in text.splitlines() if line.strip()][:25])
    if not sample:
        return ","
    try:
        return csv.Sniffer().sniff(sample, delimiters=CANDIDATE_DELIMITERS).delimiter
    except csv.Error:
        header = sample.splitlines()[0]
        counts = {delimiter: header.count(delimiter) for delimiter in CANDIDATE_DELIMITERS}
        best = max(counts, key=counts.get)
        return best if counts[best] else ","


def _load_text(path: Path, suffix: str) -> LoadedTable:
    text, encoding, warnings = decode_bytes(path.read_bytes())
    delimiter = "\t" if suffix == ".tsv" else detect_delimiter(text)
    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep=delimiter,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, csv.Error) as exc:
        raise ValueError(f"Could not parse {suffix} file: {exc}") from exc
    return _frame_to_table(
        df,
        suffix.lstrip("."),
        detected_encoding=encoding,
        delimiter=delimiter,
        warnings=warnings,
    )


# ── Spreadsheets ──────────────────────────────────────────────────────────────

def _load_workbook(path: Path, suffix: str, sheet_name: str | None) -> LoadedTable:
    engine = "odf" if suffix in ODS_FORMATS else None
    if suffix == ".xls":
        try:
            import xlrd  # noqa: F401
        except ImportError:
            raise ImportError(".xls files require xlrd, run: pip install 'listing-intake[excel-legacy]'") from None
    if suffix in ODS_FORMATS:
        try:
            import odf  # noqa: F401
        except ImportError:
            raise ImportError(".ods files require odfpy, run: pip install 'listing-intake[ods]'") from None

    try:
        with pd.ExcelFile(path, engine=engine) as workbook:
            sheet_names = [str(name) for name in workbook.sheet_names]
    except (OSError, ValueError) as exc:
        raise ValueError(f"Could not open workbook: {exc}") from exc

    warnings: list[str] = []
    if sheet_name is not None:
        if sheet_name not in sheet_names:
            raise ValueError(f"Sheet '{sheet_name}' not found. Available: {sheet_names}")
        chosen = sheet_name
    else:
        chosen = sheet_names[0]
        if len(sheet_names) > 1:
            warnings.append(
                f"Multiple sheets found ({len(sheet_names)} total); used '{chosen}'. "
                f"Ignored: {sheet_names[1:]}"
            )

    try:
        df = pd.read_excel(path, sheet_name=chosen, dtype=str, engine=engine)
    except (OSError, ValueError) as exc:
        raise ValueError(f"Could not load sheet '{chosen}': {exc}") from exc
    return _frame_to_table(
        df,
        suffix.lstrip("."),
        sheet_name=chosen,
        sheet_names=sheet_names,
        warnings=warnings,
    )


# ── JSON ──────────────────────────────────────────────────────────────────────

def _json_records(data: Any) -> tuple[list[Any], list[str]]:
    if isinstance(data, list):
        return data, []
    if isinstance(data, dict):
        for key in JSON_RECORD_KEYS:
            if isinstance(data.get(key), list):
                return data[key], []
        list_keys = [key for key, value in data.items() if isinstance(value, list)]
        if list_keys:
            return data[list_keys[0]], [f"Nested JSON: used array at top-level key '{list_keys[0]}'"]
        return [data], ["JSON is a single object; treated as a one-row table"]
    raise ValueError(f"JSON root must be an array or object, got {type(data).__name__}")


def _records_to_table(records: list[Any], detected_format: str, encoding: str, warnings: list[str]) -> LoadedTable:
    objects = [record for record in records if isinstance(record, dict)]
    if len(objects) != len(records):
        warnings.append(f"Skipped {len(records) - len(objects)} JSON entries that are not objects")
    # Object-valued cells must survive as JSON text, so build the frame column-wise without flattening.
    df = pd.DataFrame.from_records(objects) if objects else pd.DataFrame()
    return _frame_to_table(df, detected_format, detected_encoding=encoding, warnings=warnings)


def _load_json(path: Path) -> LoadedTable:
    text, encoding, warnings = decode_bytes(path.read_bytes())
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON: {exc}") from exc
    records, notes = _json_records(data)
    return _records_to_table(records, "json", encoding, warnings + notes)


def _load_jsonl(path: Path) -> LoadedTable:
    text, encoding, warnings = decode_bytes(path.read_bytes())
    records: list[Any] = []
    errors: list[str] = []
    for line_number, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            records.append(json.loads(line))
        except json.JSONDecodeError as exc:
            errors.append(f"line {line_number}: {exc}")
    if errors:
        warnings.append(f"{len(errors)} lines could not be parsed: {'; '.join(errors[:3])}")
    return _records_to_table(records, "jsonl", encoding, warnings)


def load_table(path: str | Path, sheet_name: str | None = None) -> LoadedTable:
    """
    Load any supported import file.

    Raises:
        FileNotFoundError  if the file does not exist.
        ValueError         if the format is unsupported or unreadable.
        ImportError        if an optional spreadsheet engine is missing.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    if suffix not in ALL_FORMATS:
        raise ValueError(f"Unsupported format '{suffix}'. Supported: {', '.join(sorted(ALL_FORMATS))}")

    if suffix in TEXT_FORMATS:
        table = _load_text(path, suffix)
    elif suffix in JSON_FORMATS:
        table = _load_json(path)
    elif suffix in JSONL_FORMATS:
        table = _load_jsonl(path)
    else:
        table = _load_workbook(path, suffix, sheet_name)

    if not table.headers:
        raise ValueError(f"No columns found in {path.name}")
    logger.info("Loaded %d rows and %d columns from %s", len(table.rows), len(table.headers), path)
    return table
