# WhatsApp Chat Session
# =====================
# - whatsapp_client.py:    blocking Selenium driver for WhatsApp Web
# - messaging_provider.py: async session wrapper (state, sends, event channel)
# - events.py:             session states and chat events

from .events import SessionState, ChatEvent, ChatEventKind
from .messaging_provider import MessagingProvider, SeleniumProvider

__all__ = [
    "SessionState",
    "ChatEvent",
    "ChatEventKind",
    "MessagingProvider",
    "SeleniumProvider",
]
