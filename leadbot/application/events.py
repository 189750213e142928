"""
Chat Event Handler
==================

Consumes the chat session's event channel:

- READ:    the lead read our welcome -> Sent row becomes Seen, and the
           business notification phone hears about it (once per phone)
- MESSAGE: an inbound message asking for the catalog -> catalog goes out,
           unless the catalog policy is "none"
"""

import asyncio
import logging
from typing import Optional

from ..domain.models import LeadRecord
from ..domain.phone import normalize_phone
from ..infrastructure.config.settings import CatalogPolicy
from ..infrastructure.whatsapp.events import ChatEvent, ChatEventKind
from .context import BotContext
from .dispatcher import LeadDispatcher
from .templates import MessageTemplates

logger = logging.getLogger(__name__)

NOTIFICATION_RETRY_SECONDS = 5.0


class ChatEventHandler:

    def __init__(
        self,
        dispatcher: LeadDispatcher,
        templates: MessageTemplates,
        context: BotContext,
        notification_phone: str = "",
        retry_delay_seconds: float = NOTIFICATION_RETRY_SECONDS,
    ):
        self.dispatcher = dispatcher
        self.templates = templates
        self.context = context
        self.notification_phone = normalize_phone(notification_phone) if notification_phone else ""
        self.retry_delay_seconds = retry_delay_seconds

    @property
    def sender(self):
        return self.dispatcher.sender

    async def run(self) -> None:
        """Consume provider events until cancelled."""
        events = self.sender.provider.events
        while True:
            event = await events.get()
            try:
                await self.handle(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Failed to handle {event.kind.value} event from {event.phone}: {e}")

    async def handle(self, event: ChatEvent) -> None:
        if event.kind == ChatEventKind.READ:
            await self.on_read(event.phone)
        elif event.kind == ChatEventKind.MESSAGE:
            await self.on_message(event.phone, event.body)

    async def on_read(self, phone: str) -> Optional[str]:
        """Returns the customer name when a Sent row was transitioned to Seen."""
        key = normalize_phone(phone)
        if not key or key == self.notification_phone:
            return None

        name = await self.dispatcher.messages.transition_to_seen(key)
        if name is None:
            return None

        if key in self.context.notified_seen:
            logger.info(f"[INFO] Already sent seen notification for {key}. Skipping.")
            return name
        if key not in self.context.known_lead_phones:
            logger.debug(f"{key} is not among the current leads, no seen notification")
            return name

        self.context.notified_seen.add(key)
        await self._notify_seen(name, key)
        return name

    async def _notify_seen(self, name: str, phone: str) -> None:
        if not self.notification_phone:
            return
        message = self.templates.seen_notification(name, phone)
        if await self.sender.notify(self.notification_phone, message):
            logger.info(f"[NOTIFICATION] Sent seen alert for {name}")
            return

        await asyncio.sleep(self.retry_delay_seconds)
        if await self.sender.notify(self.notification_phone, message):
            logger.info(f"[NOTIFICATION] Retry succeeded for {name}")

    async def on_message(self, phone: str, body: str) -> bool:
        """True when the message triggered a catalog send."""
        key = normalize_phone(phone)
        logger.info(f"[MESSAGE] Received message from {key}: \"{body}\"")

        if self.dispatcher.catalog_policy == CatalogPolicy.NONE:
            return False
        if not key or key == self.notification_phone:
            return False
        if not self.templates.is_catalog_request(body):
            return False

        lead = LeadRecord(name=await self._lookup_name(key), phone=key)
        outcome = await self.dispatcher.dispatch_catalog(lead, "Catalog requested")
        return outcome.catalog_sent

    async def _lookup_name(self, phone: str) -> str:
        for entry in reversed(await self.dispatcher.messages.read_entries()):
            if normalize_phone(entry.phone) == phone and entry.name:
                return entry.name
        return "Customer"
