from .settings import (
    Settings,
    WhatsAppSettings,
    SheetsSettings,
    LogSettings,
    ProcessingSettings,
    CatalogPolicy,
    LeadSourceKind,
    BusinessConfig,
    BusinessInfo,
    MessageSettings,
    LocationInfo,
    BrandingSettings,
    load_business_config,
    get_settings,
)

__all__ = [
    "Settings",
    "WhatsAppSettings",
    "SheetsSettings",
    "LogSettings",
    "ProcessingSettings",
    "CatalogPolicy",
    "LeadSourceKind",
    "BusinessConfig",
    "BusinessInfo",
    "MessageSettings",
    "LocationInfo",
    "BrandingSettings",
    "load_business_config",
    "get_settings",
]
