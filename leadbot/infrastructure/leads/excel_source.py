"""
Excel Lead Source - Local Excel/CSV Import
==========================================

Reads leads from a local spreadsheet and auto-detects the lead columns.
Supports .xlsx, .xls, and .csv formats. The file is re-read every cycle, so
rows appended while the bot runs are picked up.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from ...domain.errors import FetchError
from ...domain.models import LeadRecord
from .base import LeadSource, parse_capture_date, parse_flag

logger = logging.getLogger(__name__)

# Common column name variations for auto-detection
NAME_PATTERNS = ['name', 'customer', 'client', 'full_name', 'fullname', 'customer_name', 'lead_name']
PHONE_PATTERNS = ['phone', 'mobile', 'cell', 'telephone', 'contact', 'number', 'phone_number', 'whatsapp']
DATE_PATTERNS = ['capture', 'date', 'created', 'timestamp', 'time']
CATALOG_PATTERNS = ['send_catalog', 'catalog', 'catalogue', 'brochure', 'pdf']


class ExcelLeadSource(LeadSource):
    """
    Excel/CSV lead source with auto-detection of lead columns.

    Usage:
        source = ExcelLeadSource("leads.xlsx")
        leads = source.fetch_leads()
        source.detected_columns  # {"name": "customer name", "phone": "mobile", ...}
    """

    def __init__(self, file_path, sheet_name: Optional[str] = None, start_date: Optional[datetime] = None):
        super().__init__(start_date)
        self.file_path = Path(file_path)
        self.sheet_name = sheet_name
        self.detected_columns: Dict[str, Optional[str]] = {}

    def fetch_leads(self) -> List[LeadRecord]:
        df = self._read_frame()

        # Clean column names
        df.columns = [str(c).strip().lower() for c in df.columns]

        name_col = self._find_column(df.columns, NAME_PATTERNS)
        phone_col = self._find_column(df.columns, PHONE_PATTERNS, exclude={name_col})
        date_col = self._find_column(df.columns, DATE_PATTERNS, exclude={name_col, phone_col})
        catalog_col = self._find_column(df.columns, CATALOG_PATTERNS, exclude={name_col, phone_col, date_col})

        self.detected_columns = {
            'name': name_col,
            'phone': phone_col,
            'capture_date': date_col,
            'send_catalog': catalog_col,
        }
        logger.debug(f"Detected columns: {self.detected_columns}")

        if not name_col:
            raise FetchError(f"Could not detect a 'Name' column in {self.file_path.name}")
        if not phone_col:
            raise FetchError(f"Could not detect a 'Phone' column in {self.file_path.name}")

        leads = []
        for _, row in df.iterrows():
            name = _text(row.get(name_col))
            phone = _text(row.get(phone_col))

            # Skip empty rows
            if not name or not phone:
                continue

            raw_date = row.get(date_col) if date_col else None
            capture_date = parse_capture_date(raw_date)
            if not self.passes_date_filter(name, capture_date, _text(raw_date)):
                continue

            leads.append(LeadRecord(
                name=name,
                phone=phone,
                capture_date=capture_date,
                send_catalog=parse_flag(_text(row.get(catalog_col))) if catalog_col else False,
            ))

        logger.info(f"Parsed {len(leads)} leads from {self.file_path.name}")
        return leads

    def _read_frame(self) -> pd.DataFrame:
        if not self.file_path.exists():
            raise FetchError(f"Leads file not found: {self.file_path}")

        ext = self.file_path.suffix.lower()
        try:
            if ext == '.csv':
                # Phones as text so long numbers are not mangled
                return pd.read_csv(self.file_path, dtype=str)
            if ext in ('.xlsx', '.xls'):
                return pd.read_excel(self.file_path, sheet_name=self.sheet_name or 0)
        except Exception as e:
            logger.error(f"Failed to read file: {e}")
            raise FetchError(f"Failed to read {self.file_path.name}: {e}") from e

        raise FetchError(f"Unsupported file format: {ext}. Use .xlsx, .xls, or .csv")

    def _find_column(self, columns, patterns: List[str], exclude=frozenset()) -> Optional[str]:
        """Find the first column whose name contains any of the patterns."""
        for pattern in patterns:
            for col in columns:
                if col in exclude:
                    continue
                if pattern in col:
                    return col
        return None


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and pd.isna(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        # Excel stores phone numbers as floats
        return str(int(value))
    text = str(value).strip()
    return "" if text.lower() in ("nan", "nat", "none") else text
