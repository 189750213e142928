"""
Message Sender
==============

The only component that talks to the chat session. Renders templates,
sends, and raises SendError on failure; it never writes to the logs
(the dispatcher decides what gets recorded).
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..domain.errors import SendError, SendFailureReason
from ..domain.models import LeadRecord
from ..domain.phone import normalize_phone
from ..infrastructure.whatsapp.messaging_provider import MessagingProvider
from .context import SystemHealth
from .templates import MessageTemplates

logger = logging.getLogger(__name__)


class MessageSender:
    """
    Usage:
        sender = MessageSender(provider, templates, health, catalog_path=Path("catalog.pdf"))
        await sender.send_welcome(lead)
        await sender.send_catalog(lead)
    """

    def __init__(
        self,
        provider: MessagingProvider,
        templates: MessageTemplates,
        health: SystemHealth,
        catalog_path: Optional[Path] = None,
        location_gap_seconds: float = 1.0,
    ):
        self.provider = provider
        self.templates = templates
        self.health = health
        self.catalog_path = catalog_path
        self.location_gap_seconds = location_gap_seconds

    async def send_templated_message(self, phone: str, text: str) -> None:
        """Send one text message. Raises SendError."""
        if not self.provider.is_ready():
            raise SendError(SendFailureReason.NOT_READY, "WhatsApp client not ready", phone=phone)
        await self.provider.send_text(phone, text)
        self.health.last_successful_send = datetime.now()

    async def send_attachment(self, phone: str, path: Optional[Path], caption: str) -> None:
        """
        Send a document with a caption as one logical message.
        A missing file degrades to sending the caption alone.
        """
        if path is None or not Path(path).is_file():
            logger.warning(f"Catalog file not found ({path}), sent text only to {phone}")
            await self.send_templated_message(phone, caption)
            return

        if not self.provider.is_ready():
            raise SendError(SendFailureReason.NOT_READY, "WhatsApp client not ready", phone=phone)
        await self.provider.send_file(phone, Path(path), caption)
        self.health.last_successful_send = datetime.now()

    async def send_welcome(self, lead: LeadRecord) -> None:
        logger.info(f"[WELCOME] Sending welcome message to {lead.name} ({lead.normalized_phone})")
        await self.send_templated_message(lead.normalized_phone, self.templates.welcome(lead.name))

    async def send_catalog(self, lead: LeadRecord) -> None:
        """Catalog PDF with caption, then the location message when one is configured."""
        phone = lead.normalized_phone
        logger.info(f"[CATALOG] Sending catalog to {lead.name} ({phone})")
        await self.send_attachment(phone, self.catalog_path, self.templates.catalog_caption())

        location = self.templates.location_message()
        if location:
            await asyncio.sleep(self.location_gap_seconds)
            try:
                await self.send_templated_message(phone, location)
            except SendError as e:
                # The catalog itself went out; do not report it as failed
                logger.warning(f"[LOCATION] Failed to send location message to {phone}: {e}")

    async def notify(self, phone: str, text: str) -> bool:
        """Operator message. Never raises; returns False when it could not be sent."""
        if not phone:
            logger.info(f"[NOTIFY] No recipient configured, message not sent:\n{text}")
            return False
        try:
            await self.send_templated_message(normalize_phone(phone), text)
            return True
        except SendError as e:
            logger.error(f"[NOTIFY] Failed to send notification to {phone}: {e}")
            return False
