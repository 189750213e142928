"""
Campaign Runner - Headless Lead Processing
==========================================

Runs the lead bot without the web dashboard:
connects WhatsApp Web, waits for the session, then processes leads every
PROCESS_INTERVAL seconds until Ctrl+C.

    python run_campaign.py          # periodic loop
    python run_campaign.py --once   # a single cycle, then exit

The first run shows WhatsApp Web in a browser window: scan the QR code
there. The session is kept in SESSION_PATH for later runs.
"""

import argparse
import asyncio
import logging
import sys

from leadbot.application.runtime import BotRuntime
from leadbot.domain.errors import ConfigError
from leadbot.infrastructure.config import get_settings, load_business_config
from leadbot.infrastructure.whatsapp import SessionState

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

LOGIN_TIMEOUT_SECONDS = 300


async def wait_until_ready(runtime: BotRuntime, timeout: float = LOGIN_TIMEOUT_SECONDS) -> bool:
    """Poll the session until it is ready, printing login hints along the way."""
    announced = None
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while loop.time() < deadline:
        state = runtime.provider.state
        if state == SessionState.READY:
            return True
        if state != announced:
            announced = state
            if state == SessionState.QR_PENDING:
                print("=" * 60)
                print("SCAN THE QR CODE in the WhatsApp Web window")
                print("=" * 60)
            else:
                print(f"WhatsApp: {state.value}...")
        await asyncio.sleep(2)

    return False


async def run_campaign(once: bool = False) -> int:
    print("\n" + "=" * 60)
    print("   Lead Bot - Campaign Runner")
    print("=" * 60 + "\n")

    try:
        settings = get_settings()
        for issue in settings.validate():
            logger.warning(issue)
        settings.require()
        business = load_business_config(settings.config_file)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return 1

    runtime = BotRuntime(settings, business)
    await runtime.start()

    try:
        print("Launching WhatsApp Web...\n")
        if not await wait_until_ready(runtime):
            print("WhatsApp didn't load. Try again.")
            return 1

        print("\nWhatsApp ready! Starting lead processing...\n")

        if once:
            result = await runtime.processor.run_once()
            print(
                f"\nCycle complete: {result.leads_fetched} leads | "
                f"{result.welcomes_sent} welcomes | {result.catalogs_sent} catalogs | {result.failed} failed"
            )
            return 0

        await runtime.processor.start()
        print(f"Processing every {settings.processing.interval_seconds:.0f}s. Press Ctrl+C to stop.\n")
        # Runs until interrupted
        await asyncio.Event().wait()
        return 0
    finally:
        await runtime.stop()


def main():
    parser = argparse.ArgumentParser(description="Run the WhatsApp lead bot without the dashboard")
    parser.add_argument("--once", action="store_true", help="run a single processing cycle and exit")
    args = parser.parse_args()

    try:
        sys.exit(asyncio.run(run_campaign(once=args.once)))
    except KeyboardInterrupt:
        print("\n\nInterrupted! Progress is saved in the log files.")


if __name__ == "__main__":
    main()
