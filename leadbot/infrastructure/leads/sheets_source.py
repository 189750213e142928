"""
Google Sheets Lead Source
=========================

Reads leads from a spreadsheet range through the Sheets v4 "values" REST
endpoint, authenticated with an API key (the sheet must be shared as
"anyone with the link can view").

The first row of the range is treated as a header. Column positions are
0-based indices inside the range and come from SheetsSettings.
"""

import logging
from datetime import datetime
from typing import List, Optional
from urllib.parse import quote

import requests

from ...domain.errors import FetchError
from ...domain.models import LeadRecord
from ..config.settings import SheetsSettings
from .base import LeadSource, parse_capture_date, parse_flag

logger = logging.getLogger(__name__)


class GoogleSheetsLeadSource(LeadSource):
    """
    Usage:
        source = GoogleSheetsLeadSource(settings.sheets, start_date=datetime(2025, 7, 15))
        leads = source.fetch_leads()
    """

    def __init__(
        self,
        settings: SheetsSettings,
        start_date: Optional[datetime] = None,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(start_date)
        self.settings = settings
        self.session = session or requests.Session()

    @property
    def values_url(self) -> str:
        return (
            f"{self.settings.api_url}/{self.settings.spreadsheet_id}"
            f"/values/{quote(self.settings.range, safe='')}"
        )

    def fetch_leads(self) -> List[LeadRecord]:
        try:
            response = self.session.get(
                self.values_url,
                params={"key": self.settings.api_key},
                timeout=self.settings.timeout_seconds,
            )
        except requests.RequestException as e:
            raise FetchError(f"Google Sheets request failed: {e}") from e

        if response.status_code != 200:
            raise FetchError(
                f"Google Sheets returned HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            rows = response.json().get("values", [])
        except (ValueError, AttributeError) as e:
            raise FetchError(f"Google Sheets returned invalid JSON: {e}") from e

        leads = self.parse_rows(rows)
        logger.info(f"Fetched {len(leads)} leads from Google Sheets ({max(len(rows) - 1, 0)} rows)")
        return leads

    def parse_rows(self, rows: List[List[str]]) -> List[LeadRecord]:
        """Turn raw range values (header first) into leads."""
        if len(rows) < 2:
            return []

        s = self.settings
        leads = []
        for row in rows[1:]:
            name = _cell(row, s.name_column)
            phone = _cell(row, s.phone_column)
            if not name or not phone:
                continue

            raw_date = _cell(row, s.capture_date_column)
            capture_date = parse_capture_date(raw_date)
            if not self.passes_date_filter(name, capture_date, raw_date):
                continue

            send_catalog = parse_flag(_cell(row, s.catalog_column)) if s.catalog_column is not None else False
            leads.append(LeadRecord(name=name, phone=phone, capture_date=capture_date, send_catalog=send_catalog))

        return leads


def _cell(row: List[str], index: int) -> str:
    if index < 0 or index >= len(row) or row[index] is None:
        return ""
    return str(row[index]).strip()
