"""
Lead Processing Cycle
=====================

One cycle: fetch leads -> diff against the logs -> dispatch what is pending.

    Idle -> Fetching -> Diffing -> Dispatching -> Idle

Only one cycle runs at a time; an overlapping trigger returns immediately
with a skipped result. A periodic loop (start/stop) runs a cycle right away
and then every `interval_seconds`. Stopping lets the in-flight cycle finish
its current lead; every wait in the loop wakes up on stop.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Set

from ..domain.errors import FetchError
from ..domain.models import LeadRecord, LogStatus
from ..infrastructure.config.settings import CatalogPolicy
from ..infrastructure.leads.base import LeadSource
from ..infrastructure.whatsapp.messaging_provider import MessagingProvider
from .context import BotContext
from .dispatcher import REACHED_STATUSES, DispatchOutcome, LeadDispatcher, pending_work
from .health import HealthMonitor

logger = logging.getLogger(__name__)


class CycleState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DIFFING = "diffing"
    DISPATCHING = "dispatching"


@dataclass
class CycleResult:
    skipped: bool = False
    reason: str = ""
    leads_fetched: int = 0
    dispatched: int = 0
    welcomes_sent: int = 0
    catalogs_sent: int = 0
    failed: int = 0

    def tally(self, outcome: Optional[DispatchOutcome]) -> None:
        if outcome is None:
            self.failed += 1
            return
        if outcome.skipped:
            return
        self.dispatched += 1
        if outcome.welcome_status == LogStatus.SENT:
            self.welcomes_sent += 1
        elif outcome.welcome_status is not None:
            self.failed += 1
        if outcome.catalog_sent:
            self.catalogs_sent += 1


class LeadProcessor:
    """
    Usage:
        processor = LeadProcessor(source, dispatcher, monitor, context, provider)
        await processor.start()     # immediate cycle, then every interval
        await processor.stop()
        result = await processor.run_once()
    """

    def __init__(
        self,
        source: LeadSource,
        dispatcher: LeadDispatcher,
        monitor: HealthMonitor,
        context: BotContext,
        provider: MessagingProvider,
        interval_seconds: float = 300.0,
        send_delay_seconds: float = 5.0,
    ):
        self.source = source
        self.dispatcher = dispatcher
        self.monitor = monitor
        self.context = context
        self.provider = provider
        self.interval_seconds = interval_seconds
        self.send_delay_seconds = send_delay_seconds

        self.state = CycleState.IDLE
        self.last_result: Optional[CycleResult] = None

        self._cycle_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None

    @property
    def catalog_policy(self) -> CatalogPolicy:
        return self.dispatcher.catalog_policy

    @property
    def processing(self) -> bool:
        """True while the periodic loop is on."""
        return (
            self._loop_task is not None
            and not self._loop_task.done()
            and not self._stop_event.is_set()
        )

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    # ── Periodic loop ──────────────────────────────────────────────

    async def start(self) -> bool:
        """Turn processing on. False when it is already on."""
        if self.processing:
            return False

        # A stopped loop may still be finishing its last lead
        if self._loop_task and not self._loop_task.done():
            await self._loop_task

        self._stop_event.clear()
        self._loop_task = asyncio.create_task(self._periodic_loop(), name="lead-processing")
        logger.info("Processing started")
        return True

    async def stop(self) -> bool:
        """Turn processing off. False when it was not on."""
        if not self.processing:
            return False
        self._stop_event.set()
        logger.info("Processing stopped")
        return True

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Stop and wait for the loop to exit; cancel it if it does not."""
        self._stop_event.set()
        task, self._loop_task = self._loop_task, None
        if task and not task.done():
            try:
                await asyncio.wait_for(task, timeout)
            except asyncio.TimeoutError:
                logger.warning("Processing loop did not finish in time, cancelled")

    async def _periodic_loop(self) -> None:
        while not self.stop_requested:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Processing error: {e}")

            if await self._pause(self.interval_seconds):
                break
            logger.info("\n🔍 Checking leads (periodic)...")

    async def _pause(self, seconds: float) -> bool:
        """Sleep, waking early on stop. True when stop was requested."""
        if self.stop_requested:
            return True
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    # ── One cycle ──────────────────────────────────────────────────

    async def run_once(self) -> CycleResult:
        if self._cycle_lock.locked():
            logger.warning("⚠️ Lead processing already running. Skipping this cycle.")
            return CycleResult(skipped=True, reason="already running")

        async with self._cycle_lock:
            if not self.provider.is_ready():
                logger.warning("⚠️ WhatsApp client not ready. Skipping processing cycle.")
                return CycleResult(skipped=True, reason="not ready")

            logger.info("Starting lead processing cycle...")
            try:
                result = await self._run_cycle()
            finally:
                self.state = CycleState.IDLE

            self.last_result = result
            logger.info(
                f"Finished lead processing cycle: {result.welcomes_sent} welcomes, "
                f"{result.catalogs_sent} catalogs, {result.failed} failed"
            )
            return result

    async def _run_cycle(self) -> CycleResult:
        result = CycleResult()

        self.state = CycleState.FETCHING
        try:
            leads = await asyncio.to_thread(self.source.fetch_leads)
        except FetchError as e:
            await self.monitor.record_fetch_failure(e)
            result.reason = "fetch failed"
            return result

        self.monitor.record_fetch_success()
        result.leads_fetched = len(leads)
        self.context.known_lead_phones = {lead.normalized_phone for lead in leads if lead.normalized_phone}

        self.state = CycleState.DIFFING
        statuses = await self.dispatcher.messages.load_statuses()
        catalog_sent = await self.dispatcher.catalogs.load_sent_phones({LogStatus.SENT.value})
        logger.info(
            f"📊 Found {len(leads)} leads, {len(statuses)} phones in log, "
            f"{len(catalog_sent)} catalogs sent"
        )

        self.state = CycleState.DISPATCHING
        handled: Set[str] = set()
        for lead in leads:
            if self.stop_requested:
                logger.info("Processing stopped by user.")
                return result

            phone = lead.normalized_phone
            if not phone or phone in handled:
                continue

            if self.context.locks.is_held(phone):
                logger.info(f"⏭️ Skipping {lead.name} ({lead.phone}) - already being processed")
                continue

            # Phones already in the log are skipped unless their bundled catalog failed
            needs_welcome, needs_catalog = pending_work(
                lead,
                statuses.get(phone, set()),
                phone in catalog_sent,
                self.catalog_policy,
                phone in self.dispatcher.catalog_retries,
            )
            if not needs_welcome and not needs_catalog:
                logger.debug(f"⏭️ Skipping {lead.name} ({lead.phone}) - nothing pending")
                continue

            logger.info(f"Processing lead: {lead.name} ({lead.phone})")
            result.tally(await self._dispatch_safely(self.dispatcher.dispatch, lead))

            # Duplicates later in this list are not retried this cycle, even after a failure
            handled.add(phone)

            if await self._pause(self.send_delay_seconds):
                logger.info("Processing stopped by user.")
                return result

        if self.catalog_policy == CatalogPolicy.CONDITIONAL:
            await self._conditional_catalog_pass(leads, result)

        return result

    async def _conditional_catalog_pass(self, leads: List[LeadRecord], result: CycleResult) -> None:
        """Catalogs for leads flagged in the sheet whose welcome has been delivered."""
        statuses = await self.dispatcher.messages.load_statuses()
        catalog_sent = await self.dispatcher.catalogs.load_sent_phones({LogStatus.SENT.value})

        handled: Set[str] = set()
        for lead in leads:
            if self.stop_requested:
                return

            phone = lead.normalized_phone
            if not lead.send_catalog or not phone or phone in handled or phone in catalog_sent:
                continue
            if not statuses.get(phone, set()) & REACHED_STATUSES:
                continue

            result.tally(await self._dispatch_safely(self.dispatcher.dispatch_catalog, lead, "Conditional catalog"))
            handled.add(phone)

            if await self._pause(self.send_delay_seconds):
                return

    async def _dispatch_safely(self, dispatch, lead: LeadRecord, *args) -> Optional[DispatchOutcome]:
        """Per-lead failures never abort the cycle."""
        try:
            return await dispatch(lead, *args)
        except Exception as e:
            logger.exception(f"❌ Failed to process {lead.name} ({lead.phone}): {e}")
            return None
