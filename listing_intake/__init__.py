"""Spreadsheet intake, validation and field history for business-location listings."""

__version__ = "0.1.0"
