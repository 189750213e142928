"""
Lead Dispatcher - Duplicate-Safe Per-Lead Send
==============================================

For one lead: take the phone's dispatch lock, re-read what the logs say was
already delivered, send only what is missing, and record every outcome.

GUARANTEES:
- At most one send sequence per phone at a time (dispatch lock)
- The welcome goes out only when no Sent/Seen/Invalid row exists for the phone
- The catalog goes out only when no catalog row exists for the phone, and
  a regular dispatch bundles it only with a welcome sent in that dispatch
  (or retries one that failed after such a welcome)
- The lock is released on every exit path
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Set, Tuple

from ..domain.errors import SendError, classify_failure
from ..domain.models import DELIVERED_STATUSES, LeadRecord, LogStatus
from ..infrastructure.config.settings import CatalogPolicy
from ..infrastructure.persistence.log_store import CatalogLogStore, MessageLogStore
from .dispatch_lock import DispatchLockManager
from .sender import MessageSender

logger = logging.getLogger(__name__)

REACHED_STATUSES = frozenset({LogStatus.SENT.value, LogStatus.SEEN.value})


@dataclass(frozen=True)
class DispatchOutcome:
    """What one dispatch did. welcome_status is None when no welcome was attempted."""
    phone: str
    welcome_status: Optional[LogStatus] = None
    catalog_sent: bool = False
    skipped: bool = False

    @property
    def sent_anything(self) -> bool:
        return self.welcome_status == LogStatus.SENT or self.catalog_sent


def welcome_pending(statuses: Set[str]) -> bool:
    return not (statuses & DELIVERED_STATUSES)


def pending_work(
    lead: LeadRecord,
    statuses: Set[str],
    catalog_sent: bool,
    policy: CatalogPolicy,
    retry_catalog: bool = False,
) -> Tuple[bool, bool]:
    """
    (welcome pending, catalog pending) for a lead as part of a regular dispatch.

    Only the "always" policy bundles the catalog, and only with a welcome
    that is still pending. A phone already in the log gets no catalog from
    a regular dispatch unless its bundled catalog failed earlier
    (`retry_catalog`).
    """
    needs_welcome = welcome_pending(statuses)
    needs_catalog = (
        policy == CatalogPolicy.ALWAYS
        and not catalog_sent
        and (needs_welcome or (retry_catalog and bool(statuses & REACHED_STATUSES)))
    )
    return needs_welcome, needs_catalog


class LeadDispatcher:

    def __init__(
        self,
        sender: MessageSender,
        messages: MessageLogStore,
        catalogs: CatalogLogStore,
        locks: DispatchLockManager,
        catalog_policy: CatalogPolicy = CatalogPolicy.ALWAYS,
        welcome_catalog_gap_seconds: float = 3.0,
        track_read_receipts: bool = False,
    ):
        self.sender = sender
        self.messages = messages
        self.catalogs = catalogs
        self.locks = locks
        self.catalog_policy = catalog_policy
        self.welcome_catalog_gap_seconds = welcome_catalog_gap_seconds
        self.track_read_receipts = track_read_receipts

        # Phones whose bundled catalog failed after their welcome went out
        self.catalog_retries: Set[str] = set()

    async def _delivery_state(self, phone: str) -> Tuple[Set[str], bool]:
        """Fresh read of the logs: (statuses recorded for phone, catalog already sent)."""
        statuses = (await self.messages.load_statuses()).get(phone, set())
        catalog_sent = phone in await self.catalogs.load_sent_phones({LogStatus.SENT.value})
        return statuses, catalog_sent

    async def dispatch(self, lead: LeadRecord) -> DispatchOutcome:
        """Welcome (and, with the "always" policy, the catalog) for one lead."""
        phone = lead.normalized_phone
        if not phone:
            logger.warning(f"Skipping {lead.name} - no usable phone number ({lead.phone!r})")
            return DispatchOutcome(phone, skipped=True)

        if not self.locks.try_acquire(phone):
            return DispatchOutcome(phone, skipped=True)

        try:
            statuses, catalog_sent = await self._delivery_state(phone)
            needs_welcome, needs_catalog = pending_work(
                lead, statuses, catalog_sent, self.catalog_policy, phone in self.catalog_retries
            )

            logger.info(
                f"[SMART SEND] {lead.name} ({phone}) - "
                f"Welcome: {'PENDING' if needs_welcome else 'SENT'}, "
                f"Catalog: {'PENDING' if needs_catalog else 'SENT' if catalog_sent else 'NOT NEEDED'}"
            )

            if not needs_welcome and not needs_catalog:
                return DispatchOutcome(phone, skipped=True)

            welcome_status = None
            if needs_welcome:
                welcome_status = await self._send_welcome(lead, phone)
                if welcome_status != LogStatus.SENT:
                    # Catalog waits until the welcome has gone through
                    return DispatchOutcome(phone, welcome_status=welcome_status)
                if needs_catalog:
                    await asyncio.sleep(self.welcome_catalog_gap_seconds)

            sent_catalog = await self._send_catalog(lead, phone) if needs_catalog else False

            outcome = DispatchOutcome(phone, welcome_status=welcome_status, catalog_sent=sent_catalog)
            if outcome.sent_anything:
                actions = []
                if welcome_status == LogStatus.SENT:
                    actions.append("welcome")
                if sent_catalog:
                    actions.append("catalog")
                logger.info(f"[SUCCESS] Sent {' + '.join(actions)} to {lead.name} ({phone})")
            return outcome
        finally:
            self.locks.release(phone)

    async def dispatch_catalog(self, lead: LeadRecord, reason: str = "") -> DispatchOutcome:
        """
        Catalog only, for a lead that already got the welcome
        (conditional catalog pass or an inbound catalog request).
        """
        phone = lead.normalized_phone
        if not phone or not self.locks.try_acquire(phone):
            return DispatchOutcome(phone, skipped=True)

        try:
            statuses, catalog_sent = await self._delivery_state(phone)
            if catalog_sent:
                logger.info(f"[CATALOG] Skipping catalog for {lead.name} ({phone}) - already sent")
                return DispatchOutcome(phone, skipped=True)
            if not statuses & REACHED_STATUSES:
                logger.info(f"[CATALOG] Skipping catalog for {lead.name} ({phone}) - welcome not delivered")
                return DispatchOutcome(phone, skipped=True)

            if reason:
                logger.info(f"[CATALOG] {reason}: {lead.name} ({phone})")
            sent = await self._send_catalog(lead, phone)
            return DispatchOutcome(phone, catalog_sent=sent)
        finally:
            self.locks.release(phone)

    async def _send_welcome(self, lead: LeadRecord, phone: str) -> LogStatus:
        try:
            await self.sender.send_welcome(lead)
            status = LogStatus.SENT
        except SendError as e:
            status = classify_failure(e)
            logger.error(f"❌ Failed to send welcome message to {phone}: {e} (logged as {status.value})")

        await self.messages.log_status(phone, lead.name, status)

        if status == LogStatus.SENT and self.track_read_receipts:
            self.sender.provider.watch_receipt(phone)
        return status

    async def _send_catalog(self, lead: LeadRecord, phone: str) -> bool:
        try:
            await self.sender.send_catalog(lead)
        except SendError as e:
            # Not logged as a row: the catalog stays pending and is retried next cycle
            self.catalog_retries.add(phone)
            logger.warning(f"[CATALOG ERROR] Failed to send catalog to {phone}: {e} - will retry next cycle")
            return False

        self.catalog_retries.discard(phone)
        await self.catalogs.log_sent(phone, lead.name)
        return True
