# Lead Sources
# ============
# - base.py:          LeadSource contract and shared date/flag parsing
# - sheets_source.py: Google Sheets values API (API key)
# - excel_source.py:  local Excel/CSV file with column auto-detection

from .base import LeadSource, parse_capture_date, parse_start_date
from .sheets_source import GoogleSheetsLeadSource
from .excel_source import ExcelLeadSource

__all__ = [
    "LeadSource",
    "parse_capture_date",
    "parse_start_date",
    "GoogleSheetsLeadSource",
    "ExcelLeadSource",
]
