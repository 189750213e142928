"""
Lead Source Contract
====================

A lead source returns the current list of prospective customers. Results are
untrusted: duplicates, blank rows and malformed phones are all possible and
are dealt with downstream.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

import pandas as pd

from ...domain.models import LeadRecord

logger = logging.getLogger(__name__)

TRUTHY_FLAGS = {"yes", "y", "true", "1", "send", "x", "✓"}


class LeadSource(ABC):
    """
    Abstract lead source.

    Implementations raise FetchError when the source cannot be read at all.
    """

    def __init__(self, start_date: Optional[datetime] = None):
        # When set, only leads captured on or after this date are returned
        self.start_date = start_date

    @abstractmethod
    def fetch_leads(self) -> List[LeadRecord]:
        """Blocking fetch. Called from a worker thread by the processing cycle."""
        ...

    def passes_date_filter(self, name: str, capture_date: Optional[datetime], raw_date: str) -> bool:
        if self.start_date is None:
            return True

        if capture_date is None:
            logger.info(f"[FILTER] Skipping lead {name} - missing or invalid capture date: {raw_date!r}")
            return False

        if capture_date >= self.start_date:
            logger.debug(f"[FILTER] Including lead {name} - date: {raw_date}")
            return True

        logger.debug(f"[FILTER] Excluding lead {name} - date: {raw_date} is before {self.start_date:%Y-%m-%d}")
        return False


def parse_capture_date(value) -> Optional[datetime]:
    """
    Parse a spreadsheet capture date, day first ("15/07/2025 00:39:00").
    Returns None for blanks and anything unparseable (e.g. a day of 85).
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        # pd.NaT is a datetime subclass
        return None if pd.isna(value) else pd.Timestamp(value).to_pydatetime()

    text = str(value).strip()
    if not text or text.lower() == "nan":
        return None

    if "/" in text:
        parts = text.split(" ")[0].split("/")
        if len(parts) != 3:
            return None
        if not parts[0].isdigit() or int(parts[0]) > 31:
            return None

    parsed = pd.to_datetime(text, dayfirst=True, errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.to_pydatetime()


def parse_start_date(value: str) -> Optional[datetime]:
    """Parse the configured filter start date (ISO, e.g. 2025-07-15)."""
    if not value or not str(value).strip():
        return None
    parsed = pd.to_datetime(str(value).strip(), errors="coerce")
    if pd.isna(parsed):
        logger.warning(f"Ignoring unparseable filter start date: {value!r}")
        return None
    return parsed.to_pydatetime()


def parse_flag(value) -> bool:
    """Spreadsheet checkbox/flag cell to bool."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUTHY_FLAGS
