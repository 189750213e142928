"""
Health Monitor - Operator Alerts
================================

Watches SystemHealth and the chat session and messages the admin phone when
something needs attention:

- lead source failed N times in a row (once per failure episode)
- no successful lead fetch for a while (once per stale episode)
- WhatsApp session lost
- WhatsApp session back after an outage (with downtime in minutes)

Alerts are only sent while the session is ready, and never raise.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from ..infrastructure.whatsapp.events import SessionState
from .context import SystemHealth
from .sender import MessageSender
from .templates import MessageTemplates

logger = logging.getLogger(__name__)


class HealthMonitor:

    def __init__(
        self,
        health: SystemHealth,
        sender: MessageSender,
        templates: MessageTemplates,
        admin_phone: str = "",
        failure_threshold: int = 3,
        stale_fetch_minutes: float = 30.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.health = health
        self.sender = sender
        self.templates = templates
        self.admin_phone = admin_phone
        self.failure_threshold = failure_threshold
        self.stale_fetch_minutes = stale_fetch_minutes
        self._clock = clock
        self._stale_alerted = False

    @property
    def session_state(self) -> SessionState:
        return self.sender.provider.state

    # ── Fetch outcomes (called by the processing cycle) ─────────────

    def record_fetch_success(self) -> None:
        self.health.last_successful_fetch = self._clock()
        self.health.consecutive_failures = 0
        self._stale_alerted = False

    async def record_fetch_failure(self, error: BaseException) -> None:
        self.health.consecutive_failures += 1
        self.health.record_error("Lead Source", str(error), self._clock())
        logger.error(
            f"Lead source error ({self.health.consecutive_failures} in a row): {error}"
        )

        if self.health.consecutive_failures == self.failure_threshold:
            await self.alert("Lead source connection failed multiple times", str(error))

    # ── Periodic check ─────────────────────────────────────────────

    async def check(self, session_state: Optional[SessionState] = None) -> None:
        state = session_state or self.session_state
        ready = state == SessionState.READY
        now = self._clock()

        if not self.health.is_online and ready:
            self.health.is_online = True
            if self.health.last_online_change:
                downtime = round((now - self.health.last_online_change).total_seconds() / 60)
                await self.recovery(downtime)
            self.health.last_online_change = now

        elif self.health.is_online and not ready:
            self.health.is_online = False
            self.health.last_online_change = now
            await self.alert("WhatsApp Connection Lost", f"Bot status changed to: {state.value}")

        last_fetch = self.health.last_successful_fetch
        if last_fetch and not self._stale_alerted:
            minutes = (now - last_fetch).total_seconds() / 60
            if minutes > self.stale_fetch_minutes:
                self._stale_alerted = True
                await self.alert(
                    "Lead Source Connection Issue",
                    f"No successful calls for {round(minutes)} minutes",
                )

    async def run(self, interval: float) -> None:
        """Check loop; runs until cancelled."""
        while True:
            try:
                await self.check()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Health check failed: {e}")
            await asyncio.sleep(interval)

    # ── Messages ───────────────────────────────────────────────────

    async def alert(self, alert: str, details: str) -> bool:
        if self.session_state != SessionState.READY:
            logger.warning(f"[SYSTEM ALERT] Cannot send alert - WhatsApp not ready: {alert}")
            return False

        message = self.templates.system_alert(
            alert,
            details,
            status=self.session_state.value,
            consecutive_failures=self.health.consecutive_failures,
            last_fetch=self.health.last_successful_fetch,
            last_send=self.health.last_successful_send,
        )
        sent = await self._deliver(message)
        if sent:
            logger.info(f"[SYSTEM ALERT] Sent alert to admin: {alert}")
        return sent

    async def recovery(self, downtime_minutes: Optional[int]) -> bool:
        if self.session_state != SessionState.READY:
            return False

        message = self.templates.recovery_notice(
            downtime_minutes,
            fetch_working=self.health.last_successful_fetch is not None,
        )
        sent = await self._deliver(message)
        if sent:
            logger.info(f"[RECOVERY] Sent recovery notification to admin ({downtime_minutes} min downtime)")
        return sent

    async def _deliver(self, message: str) -> bool:
        try:
            return await self.sender.notify(self.admin_phone, message)
        except Exception as e:
            logger.error(f"[SYSTEM ALERT ERROR] Failed to send alert: {e}")
            return False
