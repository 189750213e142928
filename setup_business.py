"""
Business Setup Wizard
=====================

Interactive first-time setup: asks for the business details, message
templates, catalog keywords and branding, writes config.json and points
PDF_PATH in .env at the catalog file.

    python setup_business.py
"""

import json
import logging
import re
from pathlib import Path
from typing import Callable, Dict, List

from leadbot.infrastructure.config.settings import (
    DEFAULT_CATALOG_CAPTION,
    DEFAULT_CATALOG_KEYWORDS,
    DEFAULT_LOCATION_MESSAGE,
    DEFAULT_WELCOME_TEMPLATE,
)

logger = logging.getLogger(__name__)

ROOT = Path(__file__).parent
DEFAULT_COLORS = ("#075E54", "#128C7E", "#25D366")

Ask = Callable[[str], str]


def _yes(answer: str) -> bool:
    return answer.strip().lower() in ("y", "yes")


def ask_answers(ask: Ask = input) -> Dict[str, object]:
    """Collect every answer the config needs."""
    print("\n🚀 WhatsApp Bot Business Setup")
    print("=====================================\n")
    print("This script will help you configure the bot for your business.\n")

    answers: Dict[str, object] = {
        "business_name": ask("Enter your business name: ").strip(),
        "short_name": ask("Enter short name/brand (for branding): ").strip(),
        "industry": ask('Enter your industry (e.g., "Bathroom Solutions", "Real Estate"): ').strip(),
        "product_type": ask('Enter your product/service type (e.g., "basin collections", "property listings"): ').strip(),
        "catalog_name": ask('Enter your catalog PDF filename (e.g., "My-Catalog.pdf"): ').strip(),
        "address": ask("Enter your business address: ").strip(),
        "location_url": ask("Enter your Google Maps URL: ").strip(),
        "notification_phone": ask("Enter notification phone number (without country code): ").strip(),
        "start_date": ask("Only message leads captured on/after (YYYY-MM-DD, blank for all): ").strip(),
    }

    print("\n📝 Message Templates")
    print("You can customize these later in config.json\n")
    if _yes(ask("Use default message templates? (y/n): ")):
        answers["welcome_template"] = DEFAULT_WELCOME_TEMPLATE
        answers["catalog_caption"] = DEFAULT_CATALOG_CAPTION
        answers["location_message"] = DEFAULT_LOCATION_MESSAGE
    else:
        answers["welcome_template"] = ask("Enter welcome message template (use {name} and {businessName} as placeholders): ")
        answers["catalog_caption"] = ask("Enter catalog caption (use {businessName} and {productType} as placeholders): ")
        answers["location_message"] = ask("Enter location message (use {location} and {locationUrl} as placeholders): ")

    print("\n🔍 Catalog Request Keywords")
    if _yes(ask("Use default keywords for catalog requests? (y/n): ")):
        answers["catalog_keywords"] = list(DEFAULT_CATALOG_KEYWORDS)
    else:
        raw = ask("Enter keywords separated by commas (e.g., pdf,catalog,price): ")
        answers["catalog_keywords"] = [k.strip().lower() for k in raw.split(",") if k.strip()]

    print("\n🎨 Branding Colors")
    if _yes(ask("Use default WhatsApp colors? (y/n): ")):
        answers["colors"] = DEFAULT_COLORS
    else:
        answers["colors"] = (
            ask("Enter primary color (hex code, e.g., #075E54): ").strip() or DEFAULT_COLORS[0],
            ask("Enter secondary color (hex code, e.g., #128C7E): ").strip() or DEFAULT_COLORS[1],
            ask("Enter accent color (hex code, e.g., #25D366): ").strip() or DEFAULT_COLORS[2],
        )

    return answers


def build_config(answers: Dict[str, object]) -> dict:
    """config.json contents from wizard answers."""
    name = answers["business_name"]
    short_name = answers.get("short_name") or name
    primary, secondary, accent = answers.get("colors") or DEFAULT_COLORS
    keywords: List[str] = list(answers.get("catalog_keywords") or DEFAULT_CATALOG_KEYWORDS)

    return {
        "business": {
            "name": name,
            "shortName": short_name,
            "industry": answers.get("industry", ""),
            "productType": answers.get("product_type", ""),
            "catalogName": answers.get("catalog_name") or "catalog.pdf",
        },
        "messages": {
            "welcomeTemplate": answers.get("welcome_template") or DEFAULT_WELCOME_TEMPLATE,
            "catalogCaption": answers.get("catalog_caption") or DEFAULT_CATALOG_CAPTION,
            "locationMessage": answers.get("location_message", ""),
            "catalogKeywords": keywords,
        },
        "location": {
            "address": answers.get("address", ""),
            "url": answers.get("location_url", ""),
        },
        "notifications": {
            "phoneNumber": answers.get("notification_phone", ""),
        },
        "filtering": {
            "startDate": answers.get("start_date", ""),
        },
        "branding": {
            "primaryColor": primary,
            "secondaryColor": secondary,
            "accentColor": accent,
            "dashboardTitle": f"{name} WhatsApp Bot - Dashboard",
            "logoText": f"{short_name} Bot",
        },
    }


def update_env_file(env_path: Path, pdf_path: str) -> None:
    """Set PDF_PATH in .env, keeping every other line."""
    content = env_path.read_text(encoding="utf-8") if env_path.exists() else ""
    line = f'PDF_PATH="{pdf_path}"'

    if re.search(r"^PDF_PATH=.*$", content, flags=re.MULTILINE):
        content = re.sub(r"^PDF_PATH=.*$", lambda _: line, content, flags=re.MULTILINE)
    else:
        if content and not content.endswith("\n"):
            content += "\n"
        content += line + "\n"

    env_path.write_text(content, encoding="utf-8")


def setup_business(root: Path = ROOT, ask: Ask = input) -> Path:
    answers = ask_answers(ask)
    if not answers["business_name"]:
        raise SystemExit("Business name is required.")

    config = build_config(answers)
    config_path = root / "config.json"
    config_path.write_text(json.dumps(config, indent=2, ensure_ascii=False), encoding="utf-8")
    print("\n✅ Configuration saved successfully!")
    print(f"📁 Config file: {config_path}")

    catalog_name = config["business"]["catalogName"]
    update_env_file(root / ".env", catalog_name)

    print("\n📋 Next Steps:")
    print(f"1. Place your catalog PDF file in the bot folder with the name: {catalog_name}")
    print("2. Set GOOGLE_API_KEY and SPREADSHEET_ID in the .env file (or LEAD_SOURCE=file)")
    print("3. Run: python main.py")
    print("4. Scan QR code to connect WhatsApp")
    print("\n🎉 Your bot is ready to use!")
    return config_path


if __name__ == "__main__":
    setup_business()
