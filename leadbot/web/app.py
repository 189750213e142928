"""
FastAPI Web Application - Lead Bot Control Panel
================================================

Dashboard and JSON control surface for the lead bot: WhatsApp connection
(QR code), start/stop of lead processing, session reset, catalog upload,
log browsing and analytics.

The runtime is created in the lifespan handler; a missing or broken
configuration stops the server at startup.
"""

import asyncio
import html
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from ..application.analytics import compute_analytics, log_rows
from ..application.runtime import BotRuntime
from ..infrastructure.config import get_settings, load_business_config

logger = logging.getLogger(__name__)

# ── Globals ────────────────────────────────────────────────────────
runtime: Optional[BotRuntime] = None


class StatusResponse(BaseModel):
    status: str
    qrCode: Optional[str] = None
    processing: bool
    cycleState: str
    health: dict


class ActionResponse(BaseModel):
    success: bool
    message: str


def build_runtime() -> BotRuntime:
    """Create the runtime from environment + config.json. Raises ConfigError."""
    settings = get_settings()
    for issue in settings.validate():
        logger.warning(issue)
    settings.require()
    business = load_business_config(settings.config_file)
    return BotRuntime(settings, business)


# ── Lifespan ───────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    global runtime
    runtime = build_runtime()
    await runtime.start()
    logger.info("Lead bot ready")
    try:
        yield
    finally:
        await runtime.stop()
        runtime = None


app = FastAPI(title="Lead Bot", description="WhatsApp Lead Outreach Bot", lifespan=lifespan)


def get_runtime() -> BotRuntime:
    if runtime is None:
        raise HTTPException(status_code=503, detail="Bot is starting up")
    return runtime


# ══════════════════════════════════════════════════════════════════
#  DASHBOARD
# ══════════════════════════════════════════════════════════════════

def render_dashboard(bot: BotRuntime) -> str:
    """Single-page dashboard; all live data is fetched from the JSON endpoints."""
    branding = bot.business.branding
    title = html.escape(branding.dashboard_title)
    logo = html.escape(branding.logo_text)

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
    <script src="https://cdnjs.cloudflare.com/ajax/libs/qrcodejs/1.0.0/qrcode.min.js"></script>
    <style>
        :root {{
            --primary: {branding.primary_color};
            --secondary: {branding.secondary_color};
            --accent: {branding.accent_color};
            --bg: #f0f2f5;
            --card: #ffffff;
            --muted: #667781;
        }}
        * {{ margin: 0; padding: 0; box-sizing: border-box; }}
        body {{ font-family: 'Inter', -apple-system, BlinkMacSystemFont, sans-serif; background: var(--bg); color: #111b21; }}
        header {{ background: var(--primary); color: #fff; padding: 18px 28px; display: flex; justify-content: space-between; align-items: center; }}
        header h1 {{ font-size: 20px; font-weight: 700; }}
        .container {{ max-width: 1200px; margin: 0 auto; padding: 24px; }}
        .grid {{ display: grid; grid-template-columns: repeat(auto-fit, minmax(260px, 1fr)); gap: 20px; margin-bottom: 20px; }}
        .card {{ background: var(--card); border-radius: 12px; padding: 22px; box-shadow: 0 1px 3px rgba(0,0,0,0.08); }}
        .card h2 {{ font-size: 13px; text-transform: uppercase; letter-spacing: 0.5px; color: var(--muted); margin-bottom: 12px; }}
        .stat {{ font-size: 30px; font-weight: 800; color: var(--secondary); }}
        .btn {{ background: var(--accent); color: #fff; border: none; padding: 10px 20px; border-radius: 8px; font-weight: 600; cursor: pointer; margin-right: 8px; }}
        .btn.secondary {{ background: var(--secondary); }}
        .btn.danger {{ background: #e53935; }}
        .badge {{ padding: 4px 10px; border-radius: 6px; font-size: 11px; font-weight: 600; text-transform: uppercase; background: rgba(0,0,0,0.08); }}
        .badge.ready {{ background: rgba(37,211,102,0.18); color: #128C7E; }}
        #qr {{ margin-top: 12px; }}
        table {{ width: 100%; border-collapse: collapse; font-size: 13px; }}
        th, td {{ text-align: left; padding: 8px; border-bottom: 1px solid #e9edef; }}
        th {{ color: var(--muted); font-weight: 600; }}
        #message {{ margin-top: 10px; font-size: 13px; color: var(--muted); }}
    </style>
</head>
<body>
    <header>
        <h1>{logo}</h1>
        <span>{title}</span>
    </header>
    <div class="container">
        <div class="grid">
            <div class="card">
                <h2>WhatsApp</h2>
                <span id="status" class="badge">…</span>
                <span id="cycle" class="badge">idle</span>
                <div id="qr"></div>
            </div>
            <div class="card">
                <h2>Processing</h2>
                <button class="btn" onclick="action('/start')">Start</button>
                <button class="btn secondary" onclick="action('/stop')">Stop</button>
                <button class="btn danger" onclick="if (confirm('Log out and reset the WhatsApp session?')) action('/reset')">Reset</button>
                <div id="message"></div>
            </div>
            <div class="card">
                <h2>Catalog PDF</h2>
                <form id="upload" enctype="multipart/form-data">
                    <input type="file" name="pdf" accept="application/pdf">
                    <button class="btn" type="submit">Upload</button>
                </form>
            </div>
        </div>
        <div class="grid">
            <div class="card"><h2>Sent</h2><div class="stat" id="totalSent">0</div></div>
            <div class="card"><h2>Seen</h2><div class="stat" id="totalSeen">0</div></div>
            <div class="card"><h2>View rate</h2><div class="stat" id="viewRate">0%</div></div>
            <div class="card"><h2>Catalogs</h2><div class="stat" id="totalCatalogs">0</div></div>
            <div class="card"><h2>Failed</h2><div class="stat" id="totalFailed">0</div></div>
        </div>
        <div class="card">
            <h2>Recent messages</h2>
            <table>
                <thead><tr><th>Phone</th><th>Name</th><th>Sent</th><th>Status</th><th>Seen</th></tr></thead>
                <tbody id="logs"></tbody>
            </table>
        </div>
    </div>
    <script>
        let lastQr = null;
        const text = (value) => String(value ?? '').replace(/[&<>"]/g, (c) => ({{'&': '&amp;', '<': '&lt;', '>': '&gt;', '"': '&quot;'}}[c]));

        async function refreshStatus() {{
            const data = await (await fetch('/status')).json();
            const badge = document.getElementById('status');
            badge.textContent = data.status + (data.processing ? ' · processing' : '');
            badge.className = 'badge' + (data.status === 'ready' ? ' ready' : '');
            document.getElementById('cycle').textContent = data.cycleState;
            const qr = document.getElementById('qr');
            if (data.qrCode && data.qrCode !== lastQr) {{
                qr.innerHTML = '';
                new QRCode(qr, {{ text: data.qrCode, width: 220, height: 220 }});
            }} else if (!data.qrCode) {{
                qr.innerHTML = '';
            }}
            lastQr = data.qrCode;
        }}

        async function refreshAnalytics() {{
            const data = await (await fetch('/api/analytics')).json();
            for (const key of ['totalSent', 'totalSeen', 'totalCatalogs', 'totalFailed']) {{
                document.getElementById(key).textContent = data[key];
            }}
            document.getElementById('viewRate').textContent = data.viewRate + '%';
            const logs = await (await fetch('/logs')).json();
            document.getElementById('logs').innerHTML = logs.slice(-50).reverse().map((row) =>
                `<tr><td>${{text(row.phone)}}</td><td>${{text(row.name)}}</td><td>${{text(row.timestamp)}}</td>` +
                `<td>${{text(row.status)}}</td><td>${{text(row.seenTimestamp)}}</td></tr>`
            ).join('');
        }}

        async function action(path) {{
            const response = await fetch(path, {{ method: 'POST' }});
            const data = await response.json();
            document.getElementById('message').textContent = data.message || data.detail;
            refreshStatus();
        }}

        document.getElementById('upload').addEventListener('submit', async (event) => {{
            event.preventDefault();
            const response = await fetch('/upload-pdf', {{ method: 'POST', body: new FormData(event.target) }});
            const data = await response.json();
            document.getElementById('message').textContent = data.message || data.detail;
        }});

        refreshStatus();
        refreshAnalytics();
        setInterval(refreshStatus, 3000);
        setInterval(refreshAnalytics, 30000);
    </script>
</body>
</html>"""


@app.get("/", response_class=HTMLResponse)
async def dashboard():
    return render_dashboard(get_runtime())


# ── Status / Config ────────────────────────────────────────────────

@app.get("/status", response_model=StatusResponse)
async def status():
    return get_runtime().status()


@app.get("/config")
async def config():
    return get_runtime().business.raw


# ── Processing control ─────────────────────────────────────────────

@app.post("/start", response_model=ActionResponse)
async def start_processing():
    bot = get_runtime()
    if bot.processor.processing:
        raise HTTPException(status_code=400, detail="Processing is already in progress")
    if not bot.provider.is_ready():
        raise HTTPException(status_code=400, detail="WhatsApp client not ready")

    logger.info("--- START REQUEST RECEIVED ---")
    await bot.processor.start()
    return ActionResponse(success=True, message="Processing started")


@app.post("/stop", response_model=ActionResponse)
async def stop_processing():
    bot = get_runtime()
    if not bot.processor.processing:
        raise HTTPException(status_code=400, detail="Processing is not currently in progress")

    logger.info("--- STOP REQUEST RECEIVED ---")
    await bot.processor.stop()
    return ActionResponse(success=True, message="Processing stopped")


@app.post("/reset", response_model=ActionResponse)
async def reset_session():
    bot = get_runtime()
    try:
        await bot.reset_session()
    except OSError as e:
        logger.exception(f"FATAL: Failed to reset session directory: {e}")
        raise HTTPException(
            status_code=500,
            detail=(
                "Failed to delete session folder. You may need to stop the bot and "
                f"manually delete the folder: {bot.settings.whatsapp.session_path}"
            ),
        )
    return ActionResponse(success=True, message="Session reset successfully and client is re-initializing.")


# ── Catalog upload ─────────────────────────────────────────────────

@app.post("/upload-pdf", response_model=ActionResponse)
async def upload_pdf(pdf: UploadFile = File(...)):
    bot = get_runtime()
    if not pdf.filename:
        raise HTTPException(status_code=400, detail="No file selected")

    target = bot.settings.catalog_path(bot.business)
    content = await pdf.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    def _store():
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)

    await asyncio.to_thread(_store)
    bot.sender.catalog_path = target
    logger.info(f"Catalog uploaded to {target} ({len(content)} bytes)")
    return ActionResponse(success=True, message="PDF uploaded successfully")


# ── Logs / Analytics ───────────────────────────────────────────────

@app.get("/api/analytics")
async def analytics(startDate: Optional[str] = None, endDate: Optional[str] = None):
    bot = get_runtime()
    try:
        entries = await bot.messages.read_entries()
        catalog_entries = await bot.catalogs.read_entries()
        return compute_analytics(entries, catalog_entries, startDate, endDate)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid date range: {e}")
    except Exception as e:
        logger.exception(f"Analytics failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to read or process logs")


@app.get("/logs")
async def logs(startDate: Optional[str] = None, endDate: Optional[str] = None):
    bot = get_runtime()
    try:
        return log_rows(await bot.messages.read_entries(), startDate, endDate)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid date range: {e}")


@app.get("/catalog-logs")
async def catalog_logs():
    return log_rows(await get_runtime().catalogs.read_entries())


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=3000)
