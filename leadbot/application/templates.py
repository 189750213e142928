"""
Message Templates
=================

Renders the customer-facing and operator-facing texts from config.json.
Placeholders use the {camelCase} names of config.json so templates written
by setup_business.py render unchanged.
"""

from datetime import datetime
from typing import Optional

from ..infrastructure.config.settings import BusinessConfig


def _fill(template: str, **values: str) -> str:
    # Plain replacement: templates may contain other braces
    for key, value in values.items():
        template = template.replace("{" + key + "}", value or "")
    return template


def _clock(moment: Optional[datetime]) -> str:
    return moment.strftime("%d/%m/%Y, %H:%M:%S") if moment else "Never"


class MessageTemplates:

    def __init__(self, config: BusinessConfig):
        self.config = config

    @property
    def business_name(self) -> str:
        return self.config.business.name

    def welcome(self, name: str) -> str:
        return _fill(
            self.config.messages.welcome_template,
            name=name.strip() or "Customer",
            businessName=self.business_name,
        )

    def catalog_caption(self) -> str:
        return _fill(
            self.config.messages.catalog_caption,
            businessName=self.business_name,
            productType=self.config.business.product_type,
        )

    def location_message(self) -> Optional[str]:
        """None when no location message is configured."""
        template = self.config.messages.location_message
        if not template.strip():
            return None
        return _fill(
            template,
            location=self.config.location.address,
            locationUrl=self.config.location.url,
        )

    def is_catalog_request(self, text: str) -> bool:
        words = (text or "").lower()
        return any(keyword in words for keyword in self.config.messages.catalog_keywords)

    # ── Operator messages ──────────────────────────────────────────

    def seen_notification(self, name: str, phone: str, when: Optional[datetime] = None) -> str:
        return (
            f"📲 Customer Viewed Message!\n\n"
            f"Name: {name}\n"
            f"Phone: {phone}\n\n"
            f"Time: {_clock(when or datetime.now())}"
        )

    def system_alert(
        self,
        alert: str,
        details: str,
        status: str,
        consecutive_failures: int,
        last_fetch: Optional[datetime],
        last_send: Optional[datetime],
    ) -> str:
        return (
            f"🚨 SYSTEM ALERT - {self.business_name} Bot\n\n"
            f"Alert: {alert}\n"
            f"Time: {_clock(datetime.now())}\n"
            f"Details: {details}\n\n"
            f"Bot Status: {status}\n"
            f"Consecutive Failures: {consecutive_failures}\n"
            f"Last Successful Lead Fetch: {_clock(last_fetch)}\n"
            f"Last Successful WhatsApp Send: {_clock(last_send)}"
        )

    def recovery_notice(self, downtime_minutes: Optional[int], fetch_working: bool) -> str:
        downtime = "Unknown" if downtime_minutes is None else str(downtime_minutes)
        return (
            f"✅ SYSTEM RECOVERY - {self.business_name} Bot\n\n"
            f"Bot is back online and operational!\n"
            f"Recovery Time: {_clock(datetime.now())}\n"
            f"Downtime: {downtime} minutes\n\n"
            f"System Status:\n"
            f"✅ WhatsApp: Connected\n"
            f"✅ Lead Source: {'Working' if fetch_working else 'Testing...'}\n"
            f"✅ Processing: Ready\n\n"
            f"Bot will resume normal operations."
        )
