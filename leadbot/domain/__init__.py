# Domain Layer
# ============
# Pure business rules with no external dependencies:
# - phone.py:  canonical phone keys shared by leads, logs and locks
# - models.py: lead and log records
# - errors.py: error taxonomy and send-failure classification

from .phone import normalize_phone, DEFAULT_COUNTRY_CODE
from .models import LeadRecord, LogEntry, CatalogLogEntry, LogStatus, DELIVERED_STATUSES
from .errors import (
    LeadBotError,
    FetchError,
    SendError,
    SendFailureReason,
    PersistenceError,
    ConfigError,
    classify_failure,
)

__all__ = [
    "normalize_phone",
    "DEFAULT_COUNTRY_CODE",
    "LeadRecord",
    "LogEntry",
    "CatalogLogEntry",
    "LogStatus",
    "DELIVERED_STATUSES",
    "LeadBotError",
    "FetchError",
    "SendError",
    "SendFailureReason",
    "PersistenceError",
    "ConfigError",
    "classify_failure",
]
