"""
Bot Runtime - Wiring
====================

Builds every component from Settings + BusinessConfig and owns the
background tasks (chat event handler, health monitor, processing loop).
The web app and the headless runner both go through this class.

USAGE:
    runtime = BotRuntime(get_settings(), load_business_config(path))
    await runtime.start()
    await runtime.processor.start()
    ...
    await runtime.stop()
"""

import asyncio
import logging
import shutil
from typing import List, Optional

from ..infrastructure.config.settings import BusinessConfig, LeadSourceKind, Settings
from ..infrastructure.leads import ExcelLeadSource, GoogleSheetsLeadSource, LeadSource, parse_start_date
from ..infrastructure.persistence.log_store import CatalogLogStore, MessageLogStore
from ..infrastructure.whatsapp.messaging_provider import MessagingProvider, SeleniumProvider
from .context import BotContext
from .dispatcher import LeadDispatcher
from .events import ChatEventHandler
from .health import HealthMonitor
from .processing import LeadProcessor
from .sender import MessageSender
from .templates import MessageTemplates

logger = logging.getLogger(__name__)

# Give the browser time to release the profile directory
SESSION_RELEASE_SECONDS = 2.0


def build_lead_source(settings: Settings, business: BusinessConfig) -> LeadSource:
    start_date = parse_start_date(business.filter_start_date)
    if settings.processing.lead_source == LeadSourceKind.FILE:
        return ExcelLeadSource(settings.processing.leads_file, start_date=start_date)
    return GoogleSheetsLeadSource(settings.sheets, start_date=start_date)


class BotRuntime:

    def __init__(
        self,
        settings: Settings,
        business: BusinessConfig,
        provider: Optional[MessagingProvider] = None,
        source: Optional[LeadSource] = None,
    ):
        self.settings = settings
        self.business = business
        self.context = BotContext()

        self.provider = provider or SeleniumProvider(settings.whatsapp)
        self.templates = MessageTemplates(business)
        self.messages = MessageLogStore(settings.logs.log_file)
        self.catalogs = CatalogLogStore(settings.logs.catalog_log_file)

        self.sender = MessageSender(
            self.provider,
            self.templates,
            self.context.health,
            catalog_path=settings.catalog_path(business),
            location_gap_seconds=settings.whatsapp.catalog_location_gap_seconds,
        )
        self.dispatcher = LeadDispatcher(
            self.sender,
            self.messages,
            self.catalogs,
            self.context.locks,
            catalog_policy=settings.processing.catalog_policy,
            welcome_catalog_gap_seconds=settings.whatsapp.welcome_catalog_gap_seconds,
            track_read_receipts=settings.processing.track_read_receipts,
        )
        self.monitor = HealthMonitor(
            self.context.health,
            self.sender,
            self.templates,
            admin_phone=settings.admin_phone or business.notification_phone,
            failure_threshold=settings.processing.failure_alert_threshold,
            stale_fetch_minutes=settings.processing.stale_fetch_minutes,
        )
        self.events = ChatEventHandler(
            self.dispatcher,
            self.templates,
            self.context,
            notification_phone=business.notification_phone,
        )
        self.processor = LeadProcessor(
            source or build_lead_source(settings, business),
            self.dispatcher,
            self.monitor,
            self.context,
            self.provider,
            interval_seconds=settings.processing.interval_seconds,
            send_delay_seconds=settings.whatsapp.send_delay_seconds,
        )

        self._tasks: List[asyncio.Task] = []

    async def start(self) -> None:
        """Self-heal the logs, launch the chat session and the background tasks."""
        await self.messages.ensure_initialized()
        await self.catalogs.ensure_initialized()

        self.settings.whatsapp.session_path.mkdir(parents=True, exist_ok=True)
        await self.provider.connect()

        self._tasks = [
            asyncio.create_task(self.events.run(), name="chat-events"),
            asyncio.create_task(
                self.monitor.run(self.settings.processing.health_check_interval),
                name="health-monitor",
            ),
        ]

    async def stop(self) -> None:
        await self.processor.shutdown()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self.provider.close()

    async def reset_session(self) -> None:
        """
        Log out: stop processing, close the browser, wipe the session
        directory and relaunch (a new QR code will be shown).
        Raises OSError when the session directory cannot be removed.
        """
        logger.info("--- RESET REQUEST RECEIVED ---")
        await self.processor.shutdown()
        await self.provider.close()

        await asyncio.sleep(SESSION_RELEASE_SECONDS)

        session_path = self.settings.whatsapp.session_path
        logger.info(f"Deleting session folder: {session_path}")
        if session_path.exists():
            await asyncio.to_thread(shutil.rmtree, session_path)
        session_path.mkdir(parents=True, exist_ok=True)

        self.context.reset_notifications()
        self.messages.reset_seen_tracking()

        logger.info("Re-initializing WhatsApp client...")
        await self.provider.connect()

    def status(self) -> dict:
        return {
            "status": self.provider.state.value,
            "qrCode": self.provider.qr_code,
            "processing": self.processor.processing,
            "cycleState": self.processor.state.value,
            "health": self.context.health.to_dict(),
        }
