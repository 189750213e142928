"""
Lead Bot - Web Server Entry Point
=================================

Run this to start the dashboard and the WhatsApp session:
    python main.py

Then open http://127.0.0.1:3000 in your browser, scan the QR code and
press Start.

First-time setup:
    python setup_business.py

To process leads without the dashboard:
    python run_campaign.py
"""

import logging

import uvicorn

from leadbot.infrastructure.config import get_settings

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)


def main():
    """Start the web server."""
    settings = get_settings()

    print("\n" + "=" * 50)
    print("   Lead Bot - Web Dashboard")
    print("=" * 50)
    print(f"\n   Starting server at http://{settings.host}:{settings.port}")
    print("   Press Ctrl+C to stop\n")

    # No reload: the browser session must not be launched twice
    uvicorn.run(
        "leadbot.web.app:app",
        host=settings.host,
        port=settings.port,
        log_level="info"
    )


if __name__ == "__main__":
    main()
