import asyncio
from pathlib import Path
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest

from leadbot.application.context import BotContext
from leadbot.application.dispatcher import LeadDispatcher
from leadbot.application.events import ChatEventHandler
from leadbot.application.health import HealthMonitor
from leadbot.application.processing import LeadProcessor
from leadbot.application.sender import MessageSender
from leadbot.application.templates import MessageTemplates
from leadbot.domain.errors import FetchError, SendError
from leadbot.domain.models import LeadRecord
from leadbot.infrastructure.config.settings import BusinessConfig, CatalogPolicy
from leadbot.infrastructure.leads.base import LeadSource
from leadbot.infrastructure.persistence.log_store import CatalogLogStore, MessageLogStore
from leadbot.infrastructure.whatsapp.events import SessionState
from leadbot.infrastructure.whatsapp.messaging_provider import MessagingProvider

NOTIFICATION_PHONE = "9999999999"
ADMIN_PHONE = "8888888888"


class FakeProvider(MessagingProvider):
    """In-memory chat session. Records every send as (phone, kind, text)."""

    def __init__(self, ready: bool = True, send_delay: float = 0.0) -> None:
        super().__init__()
        self.sent: List[tuple] = []
        self.failures: Dict[str, SendError] = {}
        self.file_failures: Dict[str, SendError] = {}
        self.watched: List[str] = []
        self.send_delay = send_delay
        if ready:
            self._set_state(SessionState.READY)

    async def connect(self) -> None:
        self._set_state(SessionState.READY)

    async def send_text(self, phone: str, text: str) -> None:
        await asyncio.sleep(self.send_delay)
        if phone in self.failures:
            raise self.failures[phone]
        self.sent.append((phone, "text", text))

    async def send_file(self, phone: str, path: Path, caption: str = "") -> None:
        await asyncio.sleep(self.send_delay)
        if phone in self.file_failures:
            raise self.file_failures[phone]
        self.sent.append((phone, "file", caption))

    def watch_receipt(self, phone: str) -> None:
        self.watched.append(phone)

    async def close(self) -> None:
        self._set_state(SessionState.DISCONNECTED)

    def sent_to(self, phone: str, kind: Optional[str] = None) -> List[tuple]:
        return [s for s in self.sent if s[0] == phone and (kind is None or s[1] == kind)]


class FakeLeadSource(LeadSource):

    def __init__(self, leads: Optional[List[LeadRecord]] = None) -> None:
        super().__init__()
        self.leads = list(leads or [])
        self.error: Optional[FetchError] = None
        self.calls = 0

    def fetch_leads(self) -> List[LeadRecord]:
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.leads)


def business_config(**messages) -> BusinessConfig:
    return BusinessConfig.from_dict({
        "business": {
            "name": "Acme Baths",
            "shortName": "Acme",
            "productType": "basin collections",
            "catalogName": "catalog.pdf",
        },
        "messages": messages,
        "location": {"address": "Mansarovar Garden", "url": "https://maps.example/acme"},
        "notifications": {"phoneNumber": NOTIFICATION_PHONE},
    })


def make_bot(
    tmp_path: Path,
    leads: Optional[List[LeadRecord]] = None,
    policy: CatalogPolicy = CatalogPolicy.ALWAYS,
    provider: Optional[FakeProvider] = None,
    catalog_file: bool = True,
    track_read_receipts: bool = False,
    **messages,
) -> SimpleNamespace:
    """Fully wired bot over fakes, with zero delays."""
    provider = provider or FakeProvider()
    context = BotContext()
    templates = MessageTemplates(business_config(**messages))

    catalog_path = tmp_path / "catalog.pdf"
    if catalog_file:
        catalog_path.write_bytes(b"%PDF-1.4 test")

    messages_log = MessageLogStore(tmp_path / "whatsapp_log.csv", retry_base_delay=0.0)
    catalogs_log = CatalogLogStore(tmp_path / "catalog_log.csv", retry_base_delay=0.0)

    sender = MessageSender(provider, templates, context.health, catalog_path=catalog_path, location_gap_seconds=0)
    dispatcher = LeadDispatcher(
        sender,
        messages_log,
        catalogs_log,
        context.locks,
        catalog_policy=policy,
        welcome_catalog_gap_seconds=0,
        track_read_receipts=track_read_receipts,
    )
    monitor = HealthMonitor(context.health, sender, templates, admin_phone=ADMIN_PHONE)
    source = FakeLeadSource(leads)
    processor = LeadProcessor(source, dispatcher, monitor, context, provider, interval_seconds=60, send_delay_seconds=0)
    events = ChatEventHandler(dispatcher, templates, context, notification_phone=NOTIFICATION_PHONE, retry_delay_seconds=0)

    return SimpleNamespace(
        provider=provider,
        context=context,
        templates=templates,
        messages=messages_log,
        catalogs=catalogs_log,
        sender=sender,
        dispatcher=dispatcher,
        monitor=monitor,
        source=source,
        processor=processor,
        events=events,
        catalog_path=catalog_path,
    )


def write_log(path: Path, header: str, rows: List[str]) -> None:
    path.write_text("\n".join([header] + rows) + "\n", encoding="utf-8")


@pytest.fixture()
def lead() -> LeadRecord:
    return LeadRecord(name="Asha Verma", phone="98765 43210")
