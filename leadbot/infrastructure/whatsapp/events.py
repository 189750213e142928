"""
Chat Session Types
==================

Observable session states and the inbound events the session publishes on
its event channel.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class SessionState(str, Enum):
    """Lifecycle of the WhatsApp Web session."""
    DISCONNECTED = "disconnected"
    QR_PENDING = "qr_pending"
    AUTHENTICATED = "authenticated"
    READY = "ready"


class ChatEventKind(str, Enum):
    MESSAGE = "message"  # inbound message from a contact
    READ = "read"        # our last message to the contact was read


@dataclass(frozen=True)
class ChatEvent:
    kind: ChatEventKind
    phone: str
    body: str = ""
    received_at: datetime = field(default_factory=datetime.now)
