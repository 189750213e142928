# Lead Bot - WhatsApp Lead Outreach System
# =========================================
# Sends welcome messages and catalogs to sales leads pulled from a spreadsheet
# and keeps an append-only log of what was sent and seen.
#
# ARCHITECTURE LAYERS:
# - Presentation:   FastAPI dashboard + CLI entry points
# - Application:    Processing cycle, dispatcher, health monitor (orchestration)
# - Domain:         Phone normalization, records, error taxonomy (no I/O)
# - Infrastructure: External services (WhatsApp Web, Google Sheets, log files)
#
# The log files are the only persistent state: everything else is rebuilt
# from them when the process restarts.

__version__ = "1.0.0"
