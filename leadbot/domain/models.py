"""
Domain Models - Leads and Log Records
=====================================

Plain dataclasses shared by every layer. Log rows are serialized as
comma-delimited text, so free-text fields are sanitized before they reach a
row (commas and newlines become spaces).
"""

import re
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence

from .phone import normalize_phone

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

MAIN_LOG_COLUMNS = ["Phone", "Name", "Timestamp", "Status", "SeenTimestamp", "TimeToSee", "LastUpdated"]
CATALOG_LOG_COLUMNS = ["Phone", "Name", "Timestamp", "Status"]

_UNSAFE_CHARS_RE = re.compile(r"[,\r\n]+")


class LogStatus(str, Enum):
    """Outcome recorded for a recipient."""
    SENT = "Sent"
    SEEN = "Seen"
    FAILED = "Failed"
    INVALID = "Invalid"


# A phone with any of these rows never gets the welcome again.
# Failed rows stay retry-eligible.
DELIVERED_STATUSES = frozenset({LogStatus.SENT.value, LogStatus.SEEN.value, LogStatus.INVALID.value})


def sanitize_field(value: Optional[object]) -> str:
    """Strip commas and line breaks so a value fits in one log column."""
    if value is None:
        return ""
    return _UNSAFE_CHARS_RE.sub(" ", str(value)).strip()


def format_timestamp(moment: datetime) -> str:
    return moment.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(text: str) -> Optional[datetime]:
    """Parse a log timestamp, None when the column is empty or malformed."""
    text = (text or "").strip()
    if not text:
        return None
    try:
        return datetime.strptime(text, TIMESTAMP_FORMAT)
    except ValueError:
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            return None


@dataclass(frozen=True)
class LeadRecord:
    """A prospective customer fetched from the lead source for one cycle."""
    name: str
    phone: str
    capture_date: Optional[datetime] = None
    send_catalog: bool = False

    @property
    def normalized_phone(self) -> str:
        return normalize_phone(self.phone)


@dataclass(frozen=True)
class LogEntry:
    """One row of the main message log."""
    phone: str
    name: str
    timestamp: str
    status: str = LogStatus.SENT.value
    seen_timestamp: str = ""
    time_to_see: Optional[int] = None
    last_updated: str = ""

    @property
    def is_delivered(self) -> bool:
        return self.status in DELIVERED_STATUSES

    def sanitized(self) -> "LogEntry":
        return replace(
            self,
            phone=normalize_phone(self.phone),
            name=sanitize_field(self.name),
            status=sanitize_field(self.status),
        )

    def to_row(self) -> List[str]:
        return [
            self.phone,
            self.name,
            self.timestamp,
            self.status,
            self.seen_timestamp,
            "" if self.time_to_see is None else str(self.time_to_see),
            self.last_updated,
        ]

    @classmethod
    def from_row(cls, columns: Sequence[str]) -> Optional["LogEntry"]:
        """Build an entry from split columns. Older rows may lack trailing columns."""
        if len(columns) < 4 or not columns[0].strip():
            return None
        padded = list(columns) + [""] * (len(MAIN_LOG_COLUMNS) - len(columns))
        time_to_see = padded[5].strip()
        try:
            seconds = int(float(time_to_see)) if time_to_see else None
        except ValueError:
            seconds = None
        return cls(
            phone=padded[0].strip(),
            name=padded[1].strip(),
            timestamp=padded[2].strip(),
            status=padded[3].strip(),
            seen_timestamp=padded[4].strip(),
            time_to_see=seconds,
            last_updated=padded[6].strip(),
        )


@dataclass(frozen=True)
class CatalogLogEntry:
    """One row of the catalog log. Catalog rows are never updated."""
    phone: str
    name: str
    timestamp: str
    status: str = LogStatus.SENT.value

    def sanitized(self) -> "CatalogLogEntry":
        return replace(
            self,
            phone=normalize_phone(self.phone),
            name=sanitize_field(self.name),
            status=sanitize_field(self.status),
        )

    def to_row(self) -> List[str]:
        return [self.phone, self.name, self.timestamp, self.status]

    @classmethod
    def from_row(cls, columns: Sequence[str]) -> Optional["CatalogLogEntry"]:
        if len(columns) < 4 or not columns[0].strip():
            return None
        return cls(
            phone=columns[0].strip(),
            name=columns[1].strip(),
            timestamp=columns[2].strip(),
            status=columns[3].strip(),
        )
