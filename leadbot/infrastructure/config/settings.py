"""
Settings Module - Centralized Configuration Management
=======================================================

ARCHITECTURAL DECISION:
- Runtime configuration is loaded from environment variables (no hardcoded secrets)
- Business wording (templates, branding, notification phone) lives in config.json,
  written by setup_business.py
- Settings are immutable dataclasses for safety and clarity

EXTENSIBILITY:
- To add a lead source: add its settings group and a LeadSourceKind value
"""

import json
import os
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Tuple, Type

from dotenv import load_dotenv

from ...domain.errors import ConfigError

# Load .env file if present (development convenience)
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        return default


def _env_optional_int(name: str) -> Optional[int]:
    value = os.getenv(name, "").strip()
    return int(value) if value.isdigit() else None


def _env_choice(name: str, choices: Type[Enum], default: str):
    value = os.getenv(name, default).strip().lower()
    try:
        return choices(value)
    except ValueError:
        allowed = ", ".join(choice.value for choice in choices)
        raise ConfigError(f"{name} must be one of: {allowed} (got {value!r})") from None


class CatalogPolicy(str, Enum):
    """When the catalog PDF goes out."""
    ALWAYS = "always"            # bundled with every welcome
    CONDITIONAL = "conditional"  # sheet flag or keyword request only
    NONE = "none"


class LeadSourceKind(str, Enum):
    SHEETS = "sheets"
    FILE = "file"


@dataclass(frozen=True)
class WhatsAppSettings:
    """WhatsApp Web session and pacing settings."""

    # Chrome profile directory - holds the logged-in session
    session_path: Path = field(
        default_factory=lambda: Path(os.getenv("SESSION_PATH", "session"))
    )
    headless: bool = field(default_factory=lambda: _env_bool("WHATSAPP_HEADLESS", False))

    # SAFETY: pause between leads to avoid WhatsApp throttling/bans
    send_delay_seconds: float = field(default_factory=lambda: _env_float("SEND_DELAY_SECONDS", 5.0))
    welcome_catalog_gap_seconds: float = 3.0
    catalog_location_gap_seconds: float = 1.0

    # Browser polling
    state_poll_interval: float = 2.0
    receipt_poll_interval: float = field(
        default_factory=lambda: _env_float("RECEIPT_POLL_INTERVAL", 30.0)
    )
    chat_load_timeout: int = 20


@dataclass(frozen=True)
class SheetsSettings:
    """Google Sheets lead source settings."""

    api_key: str = field(default_factory=lambda: os.getenv("GOOGLE_API_KEY", ""))
    spreadsheet_id: str = field(default_factory=lambda: os.getenv("SPREADSHEET_ID", ""))
    range: str = field(default_factory=lambda: os.getenv("RANGE", "'Sales FMS'!C8:Z1000"))
    api_url: str = "https://sheets.googleapis.com/v4/spreadsheets"
    timeout_seconds: int = 15

    # 0-based indices inside the fetched range
    capture_date_column: int = field(default_factory=lambda: _env_int("CAPTURE_DATE_COLUMN", 2))
    name_column: int = field(default_factory=lambda: _env_int("NAME_COLUMN", 3))
    phone_column: int = field(default_factory=lambda: _env_int("PHONE_COLUMN", 4))
    catalog_column: Optional[int] = field(default_factory=lambda: _env_optional_int("CATALOG_COLUMN"))


@dataclass(frozen=True)
class LogSettings:
    """Append-only message logs."""

    log_file: Path = field(
        default_factory=lambda: Path(os.getenv("LOG_FILE", "whatsapp_log.csv"))
    )
    catalog_log_file: Path = field(
        default_factory=lambda: Path(os.getenv("CATALOG_LOG_FILE", "catalog_log.csv"))
    )


@dataclass(frozen=True)
class ProcessingSettings:
    """Lead processing cycle and monitoring."""

    interval_seconds: float = field(default_factory=lambda: _env_float("PROCESS_INTERVAL", 300.0))
    catalog_policy: CatalogPolicy = field(
        default_factory=lambda: _env_choice("CATALOG_POLICY", CatalogPolicy, "always")
    )
    track_read_receipts: bool = field(
        default_factory=lambda: _env_bool("TRACK_READ_RECEIPTS", False)
    )

    failure_alert_threshold: int = 3
    stale_fetch_minutes: float = 30.0
    health_check_interval: float = 60.0

    lead_source: LeadSourceKind = field(
        default_factory=lambda: _env_choice("LEAD_SOURCE", LeadSourceKind, "sheets")
    )
    leads_file: Path = field(
        default_factory=lambda: Path(os.getenv("LEADS_FILE", "leads.xlsx"))
    )


@dataclass(frozen=True)
class Settings:
    """
    Root settings container - Single source of truth for all configuration.

    Usage:
        from leadbot.infrastructure.config import get_settings
        settings = get_settings()
        print(settings.sheets.spreadsheet_id)
    """

    # Sub-settings groups
    whatsapp: WhatsAppSettings = field(default_factory=WhatsAppSettings)
    sheets: SheetsSettings = field(default_factory=SheetsSettings)
    logs: LogSettings = field(default_factory=LogSettings)
    processing: ProcessingSettings = field(default_factory=ProcessingSettings)

    # Operator that receives system alerts
    admin_phone: str = field(default_factory=lambda: os.getenv("ADMIN_PHONE", ""))

    # File paths
    config_file: Path = field(
        default_factory=lambda: Path(os.getenv("CONFIG_FILE", "config.json"))
    )
    pdf_path: Optional[Path] = field(
        default_factory=lambda: Path(os.environ["PDF_PATH"]) if os.getenv("PDF_PATH") else None
    )

    host: str = field(default_factory=lambda: os.getenv("HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: _env_int("PORT", 3000))

    def catalog_path(self, business: "BusinessConfig") -> Path:
        """PDF_PATH if set, otherwise the catalog file name next to config.json."""
        if self.pdf_path:
            return self.pdf_path
        return self.config_file.parent / business.business.catalog_name

    def require(self) -> None:
        """
        Raise ConfigError when configuration needed to run at all is missing.
        Called once at startup.
        """
        missing = []
        if self.processing.lead_source == LeadSourceKind.SHEETS:
            if not self.sheets.spreadsheet_id:
                missing.append("SPREADSHEET_ID")
            if not self.sheets.api_key:
                missing.append("GOOGLE_API_KEY")
        elif not self.processing.leads_file.exists():
            missing.append(f"LEADS_FILE ({self.processing.leads_file} not found)")

        if missing:
            raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

    def validate(self) -> List[str]:
        """
        Validate settings and return list of warnings.
        Returns empty list if all settings look sane.
        """
        issues = []

        if not self.admin_phone:
            issues.append(
                "WARNING: ADMIN_PHONE not set. "
                "System alerts will only be written to the log."
            )

        if self.whatsapp.send_delay_seconds < 3:
            issues.append(
                "WARNING: SEND_DELAY_SECONDS below 3s increases the risk of a WhatsApp ban."
            )

        if not self.config_file.exists():
            issues.append(
                f"WARNING: Business config not found: {self.config_file}. "
                "Run setup_business.py first."
            )

        return issues


# ── Business configuration (config.json) ─────────────────────────

DEFAULT_WELCOME_TEMPLATE = (
    "Dear {name},\n\nThank you for reaching us through Meta Ads.\n\n"
    "Welcome to {businessName}.\n\nType *'Pdf'* to receive our catalog."
)
DEFAULT_CATALOG_CAPTION = (
    "Thank you for reaching out to us at {businessName}. Please have a look at our {productType}."
)
DEFAULT_LOCATION_MESSAGE = (
    "Please visit our office at {location}. We would be happy to have your presence.\n\n{locationUrl}"
)
DEFAULT_CATALOG_KEYWORDS = (
    "pdf", "catalog", "catalogue", "brochure", "product", "products", "price", "pricing", "cost",
)


@dataclass(frozen=True)
class BusinessInfo:
    name: str
    short_name: str = ""
    industry: str = ""
    product_type: str = ""
    catalog_name: str = "catalog.pdf"


@dataclass(frozen=True)
class MessageSettings:
    welcome_template: str = DEFAULT_WELCOME_TEMPLATE
    catalog_caption: str = DEFAULT_CATALOG_CAPTION
    location_message: str = ""
    catalog_keywords: Tuple[str, ...] = DEFAULT_CATALOG_KEYWORDS


@dataclass(frozen=True)
class LocationInfo:
    address: str = ""
    url: str = ""


@dataclass(frozen=True)
class BrandingSettings:
    primary_color: str = "#075E54"
    secondary_color: str = "#128C7E"
    accent_color: str = "#25D366"
    dashboard_title: str = "WhatsApp Bot - Dashboard"
    logo_text: str = "Lead Bot"


@dataclass(frozen=True)
class BusinessConfig:
    """Contents of config.json."""

    business: BusinessInfo
    messages: MessageSettings = field(default_factory=MessageSettings)
    location: LocationInfo = field(default_factory=LocationInfo)
    notification_phone: str = ""
    filter_start_date: str = ""
    branding: BrandingSettings = field(default_factory=BrandingSettings)
    raw: dict = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: dict) -> "BusinessConfig":
        business = data.get("business") or {}
        if not business.get("name"):
            raise ConfigError("config.json: business.name is required")

        messages = data.get("messages") or {}
        location = data.get("location") or {}
        branding = data.get("branding") or {}

        return cls(
            business=BusinessInfo(
                name=business["name"],
                short_name=business.get("shortName", ""),
                industry=business.get("industry", ""),
                product_type=business.get("productType", ""),
                catalog_name=business.get("catalogName") or "catalog.pdf",
            ),
            messages=MessageSettings(
                welcome_template=messages.get("welcomeTemplate") or DEFAULT_WELCOME_TEMPLATE,
                catalog_caption=messages.get("catalogCaption") or DEFAULT_CATALOG_CAPTION,
                location_message=messages.get("locationMessage", ""),
                catalog_keywords=tuple(
                    k.strip().lower() for k in messages.get("catalogKeywords", DEFAULT_CATALOG_KEYWORDS) if k.strip()
                ),
            ),
            location=LocationInfo(
                address=location.get("address", ""),
                url=location.get("url", ""),
            ),
            notification_phone=str((data.get("notifications") or {}).get("phoneNumber", "")),
            filter_start_date=str((data.get("filtering") or {}).get("startDate", "")),
            branding=BrandingSettings(
                primary_color=branding.get("primaryColor", "#075E54"),
                secondary_color=branding.get("secondaryColor", "#128C7E"),
                accent_color=branding.get("accentColor", "#25D366"),
                dashboard_title=branding.get("dashboardTitle", f"{business['name']} WhatsApp Bot - Dashboard"),
                logo_text=branding.get("logoText", f"{business.get('shortName') or business['name']} Bot"),
            ),
            raw=data,
        )


def load_business_config(path: Path) -> BusinessConfig:
    """Load config.json. Missing or malformed config is fatal at startup."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigError(
            f"Business config not found: {path}. Run setup_business.py or copy config-template.json"
        )
    except json.JSONDecodeError as e:
        raise ConfigError(f"Business config {path} is not valid JSON: {e}")

    return BusinessConfig.from_dict(data)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get singleton Settings instance.
    Cached to ensure consistent settings throughout application lifecycle.
    """
    return Settings()
