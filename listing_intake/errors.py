from __future__ import annotations

from typing import Any


class IntakeError(Exception):
    """Base class for listing-intake failures."""


class UnknownFieldError(IntakeError, KeyError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown schema field: {name}")
        self.name = name

    def __str__(self) -> str:
        return self.args[0]


class PersistenceError(IntakeError):
    pass


class RecordNotFoundError(PersistenceError):
    def __init__(self, business_id: str) -> None:
        super().__init__(f"Business not found: {business_id}")
        self.business_id = business_id


class MappingError(IntakeError):
    pass


class ImportBlockedError(IntakeError):
    """Raised when an import batch cannot be committed as a whole."""

    def __init__(self, message: str, row_issues: dict[int, list[Any]] | None = None) -> None:
        super().__init__(message)
        self.row_issues = row_issues or {}
