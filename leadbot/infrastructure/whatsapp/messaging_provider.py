"""
Messaging Provider - Async Chat Session over WhatsApp Web
==========================================================

Provides the chat session the rest of the bot talks to:

- observable lifecycle (disconnected -> qr_pending -> authenticated -> ready)
- send_text / send_file raising SendError with a classified reason
- an event channel (asyncio.Queue of ChatEvent) carrying inbound messages
  and read receipts, filled by a background poll task

USAGE:
    provider = SeleniumProvider(settings.whatsapp)
    await provider.connect()
    ...
    await provider.send_text("919876543210", "Hello!")
    event = await provider.events.get()
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from selenium.common.exceptions import WebDriverException

from ...domain.errors import SendError, SendFailureReason
from ...domain.phone import normalize_phone
from ..config.settings import WhatsAppSettings
from .events import ChatEvent, ChatEventKind, SessionState

logger = logging.getLogger(__name__)

# Read receipts are only polled for this long after the send
RECEIPT_WATCH_SECONDS = 24 * 60 * 60
RECEIPT_CHECKS_PER_ROUND = 5


class MessagingProvider(ABC):
    """
    Abstract chat session.
    The bot is bound to WhatsApp; the abstraction exists so tests can swap in a fake.
    """

    def __init__(self):
        self.events: "asyncio.Queue[ChatEvent]" = asyncio.Queue()
        self._state = SessionState.DISCONNECTED
        self._qr_code: Optional[str] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def qr_code(self) -> Optional[str]:
        return self._qr_code

    def is_ready(self) -> bool:
        return self._state == SessionState.READY

    def _set_state(self, state: SessionState, qr_code: Optional[str] = None) -> None:
        if state != self._state:
            logger.info(f"WhatsApp session: {self._state.value} -> {state.value}")
        self._state = state
        self._qr_code = qr_code

    @abstractmethod
    async def connect(self) -> None:
        """Start the session. State changes are observed through `state`."""
        ...

    @abstractmethod
    async def send_text(self, phone: str, text: str) -> None:
        """Send a text message. Raises SendError."""
        ...

    @abstractmethod
    async def send_file(self, phone: str, path: Path, caption: str = "") -> None:
        """Send a document with a caption. Raises SendError."""
        ...

    def watch_receipt(self, phone: str) -> None:
        """Ask the session to report when the last message to `phone` is read."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Clean up resources."""
        ...


class SeleniumProvider(MessagingProvider):
    """
    Selenium-based WhatsApp Web automation.
    Wraps the blocking WhatsAppClient; one driver call runs at a time.
    """

    def __init__(self, settings: WhatsAppSettings):
        super().__init__()
        self._settings = settings
        self._client = None
        self._driver_lock = asyncio.Lock()
        self._poll_task: Optional[asyncio.Task] = None
        self._receipt_watch: Dict[str, float] = {}
        self._last_event_poll = 0.0

    async def connect(self) -> None:
        """Launch browser and open WhatsApp Web."""
        from .whatsapp_client import WhatsAppClient

        try:
            self._client = await asyncio.to_thread(
                WhatsAppClient,
                self._settings.session_path,
                self._settings.headless,
                self._settings.chat_load_timeout,
            )
        except WebDriverException as e:
            logger.exception(f"Failed to launch Selenium WhatsApp: {e}")
            self._set_state(SessionState.DISCONNECTED)
            return

        self._poll_task = asyncio.create_task(self._poll_loop(), name="whatsapp-poll")

    async def _call(self, func, *args):
        async with self._driver_lock:
            return await asyncio.to_thread(func, *args)

    def _ensure_ready(self, phone: str) -> None:
        if not self._client or not self.is_ready():
            raise SendError(SendFailureReason.NOT_READY, "WhatsApp client not ready", phone=phone)

    async def send_text(self, phone: str, text: str) -> None:
        """Open chat and send message via Selenium."""
        self._ensure_ready(phone)
        await self._guarded_send(phone, self._open_and_send, phone, text)

    async def send_file(self, phone: str, path: Path, caption: str = "") -> None:
        """Open chat and send a document via Selenium."""
        self._ensure_ready(phone)
        await self._guarded_send(phone, self._open_and_attach, phone, path, caption)

    def _open_and_send(self, phone: str, text: str) -> None:
        self._client.open_chat(phone)
        self._client.send_message(text)

    def _open_and_attach(self, phone: str, path: Path, caption: str) -> None:
        self._client.open_chat(phone)
        self._client.send_file(path, caption)

    async def _guarded_send(self, phone: str, func, *args) -> None:
        from .whatsapp_client import WhatsAppClientError, WhatsAppInvalidNumberError

        try:
            await self._call(func, *args)
        except WhatsAppInvalidNumberError as e:
            raise SendError(SendFailureReason.RECIPIENT_INVALID, str(e), phone=phone) from e
        except (WhatsAppClientError, WebDriverException) as e:
            raise SendError(SendFailureReason.TRANSIENT, str(e), phone=phone) from e

    def watch_receipt(self, phone: str) -> None:
        self._receipt_watch[normalize_phone(phone)] = time.monotonic()

    # ── Background polling ────────────────────────────────────────

    async def _poll_loop(self) -> None:
        """Track session state; when ready, collect inbound messages and read receipts."""
        while self._client:
            try:
                state, qr = await self._call(self._client.detect_state)
                self._set_state(state, qr)

                due = time.monotonic() - self._last_event_poll >= self._settings.receipt_poll_interval
                if state == SessionState.READY and due:
                    self._last_event_poll = time.monotonic()
                    await self._poll_inbound()
                    await self._poll_receipts()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"WhatsApp poll failed: {e}")

            await asyncio.sleep(self._settings.state_poll_interval)

    async def _poll_inbound(self) -> None:
        from .whatsapp_client import WhatsAppClientError

        titles = await self._call(self._client.unread_chat_titles)
        for title in titles:
            phone = normalize_phone(title)
            # Saved contacts show a name instead of a number
            if len(phone) < 10:
                logger.debug(f"Skipping unread chat without a phone title: {title}")
                continue
            try:
                body = await self._call(self._read_chat, phone)
            except (WhatsAppClientError, WebDriverException) as e:
                logger.warning(f"[MESSAGE] Could not read chat {phone}: {e}")
                continue
            if body:
                await self.events.put(ChatEvent(ChatEventKind.MESSAGE, phone, body))

    def _read_chat(self, phone: str) -> Optional[str]:
        self._client.open_chat(phone)
        return self._client.read_latest_incoming_message()

    async def _poll_receipts(self) -> None:
        from .whatsapp_client import WhatsAppClientError

        now = time.monotonic()
        for phone, since in list(self._receipt_watch.items()):
            if now - since > RECEIPT_WATCH_SECONDS:
                self._receipt_watch.pop(phone, None)

        oldest_first = sorted(self._receipt_watch.items(), key=lambda item: item[1])
        for phone, _ in oldest_first[:RECEIPT_CHECKS_PER_ROUND]:
            try:
                was_read = await self._call(self._chat_was_read, phone)
            except (WhatsAppClientError, WebDriverException) as e:
                logger.debug(f"[ACK] Receipt check failed for {phone}: {e}")
                continue
            if was_read:
                self._receipt_watch.pop(phone, None)
                logger.info(f"[ACK] Message seen by {phone}")
                await self.events.put(ChatEvent(ChatEventKind.READ, phone))

    def _chat_was_read(self, phone: str) -> bool:
        self._client.open_chat(phone)
        return self._client.last_outgoing_read()

    @property
    def raw_client(self):
        """Access the underlying WhatsAppClient (for advanced Selenium usage)."""
        return self._client

    async def close(self) -> None:
        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        if self._client:
            client, self._client = self._client, None
            async with self._driver_lock:
                await asyncio.to_thread(client.close)

        self._receipt_watch.clear()
        self._set_state(SessionState.DISCONNECTED)
