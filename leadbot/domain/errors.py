"""
Error Taxonomy
==============

FetchError        - lead source unreachable/unauthorized; ends the cycle early
SendError         - per-recipient send failure, carries a SendFailureReason
PersistenceError  - log write failure; the write is re-queued, never dropped
ConfigError       - missing required configuration; fatal at startup only
"""

from enum import Enum
from typing import Optional

from .models import LogStatus

INVALID_RECIPIENT_MARKERS = ("not registered", "invalid number", "incorrect number")


class LeadBotError(Exception):
    """Base exception for lead bot errors."""
    pass


class FetchError(LeadBotError):
    """Raised when leads cannot be fetched from the lead source."""
    pass


class SendFailureReason(str, Enum):
    """Why a message could not be delivered to the chat client."""
    RECIPIENT_INVALID = "recipient_invalid"
    NOT_READY = "not_ready"
    TRANSIENT = "transient"


class SendError(LeadBotError):
    """Raised when a message cannot be sent to one recipient."""

    def __init__(self, reason: SendFailureReason, message: str = "", phone: Optional[str] = None):
        self.reason = reason
        self.phone = phone
        super().__init__(message or reason.value)

    @property
    def is_terminal(self) -> bool:
        return self.reason == SendFailureReason.RECIPIENT_INVALID


class PersistenceError(LeadBotError):
    """Raised when a log row cannot be written."""
    pass


class ConfigError(LeadBotError):
    """Raised at startup when required configuration is missing."""
    pass


def classify_failure(error: BaseException) -> LogStatus:
    """
    Map a send failure onto the log status it should be recorded with.

    Invalid recipients are terminal and never retried. Everything else is
    logged as Failed and retried on a later cycle.
    """
    if isinstance(error, SendError) and error.is_terminal:
        return LogStatus.INVALID

    text = str(error).lower()
    if any(marker in text for marker in INVALID_RECIPIENT_MARKERS):
        return LogStatus.INVALID

    return LogStatus.FAILED
