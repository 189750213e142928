"""
Log Store - Append-Only Message Logs
====================================

The log files are the bot's only database. "Has this phone already received
the welcome?" is answered by replaying the log, so the answer survives
crashes and restarts.

Two stores exist, each with its own single-writer queue:

    messages = MessageLogStore("whatsapp_log.csv")
    catalogs = CatalogLogStore("catalog_log.csv")

    await messages.append_entry(LogEntry(phone="9876543210", name="Asha", timestamp=now))
    sent = await messages.load_sent_phones(DELIVERED_STATUSES)
    name = await messages.transition_to_seen("919876543210")

WRITE PATH:
- Rows are queued and written one at a time by a writer task per store,
  under an asyncio.Lock shared with the Seen rewrite
- A failed write goes back to the front of the queue and is retried with
  capped exponential backoff until it succeeds
- The file is created with a header when missing, and a missing trailing
  newline (truncated earlier write) is repaired before appending

READ PATH:
- Parsed rows are cached against the file's (mtime, size); any change,
  including an edit made outside the bot, rebuilds the cache
"""

import asyncio
import logging
import os
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Deque, Dict, Generic, Iterable, List, Optional, Set, Tuple, Type, TypeVar

from ...domain.errors import PersistenceError
from ...domain.models import (
    CATALOG_LOG_COLUMNS,
    MAIN_LOG_COLUMNS,
    CatalogLogEntry,
    LogEntry,
    LogStatus,
    format_timestamp,
    parse_timestamp,
)
from ...domain.phone import normalize_phone

logger = logging.getLogger(__name__)

E = TypeVar("E", LogEntry, CatalogLogEntry)


@dataclass
class _PendingWrite:
    entry: object
    done: asyncio.Future


class LogStore(Generic[E]):
    """
    Append-only comma-delimited log with a single writer at a time.
    Subclasses pick the columns and the row type.
    """

    columns: List[str] = []
    entry_type: Type = None

    def __init__(
        self,
        path,
        clock: Callable[[], datetime] = datetime.now,
        retry_base_delay: float = 0.5,
        retry_max_delay: float = 30.0,
    ):
        self.path = Path(path)
        self._clock = clock
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay

        self._pending: Deque[_PendingWrite] = deque()
        self._lock = asyncio.Lock()
        self._writer: Optional[asyncio.Task] = None

        self._cache_key: Optional[Tuple[int, int]] = None
        self._cache_entries: List[E] = []

    @property
    def header(self) -> str:
        return ",".join(self.columns)

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    def now(self) -> str:
        return format_timestamp(self._clock())

    # ── Write path ─────────────────────────────────────────────────

    async def append_entry(self, entry: E) -> E:
        """
        Queue one row and wait until it is on disk.
        Write failures are retried here; they never reach the caller.

        Rows are written by the store's own writer task, so a caller that is
        cancelled while waiting never strands rows queued by other callers.
        """
        entry = entry.sanitized()
        done = asyncio.get_running_loop().create_future()
        self._pending.append(_PendingWrite(entry, done))
        if self._writer is None or self._writer.done():
            self._writer = asyncio.create_task(self._drain(), name=f"log-writer-{self.path.name}")
        return await done

    async def ensure_initialized(self) -> None:
        """Create the file with its header, or repair a missing trailing newline."""
        async with self._lock:
            await self._with_retry(self._initialize_file)

    async def _drain(self) -> None:
        async with self._lock:
            attempt = 0
            while self._pending:
                item = self._pending.popleft()
                try:
                    await asyncio.to_thread(self._write_row, item.entry)
                except PersistenceError as e:
                    # Keep ordering: the failed row is written before anything queued after it
                    self._pending.appendleft(item)
                    delay = self._backoff(attempt)
                    attempt += 1
                    logger.error(f"{e} - retrying in {delay:.1f}s ({len(self._pending)} pending)")
                    await asyncio.sleep(delay)
                    continue
                except asyncio.CancelledError:
                    # Writer torn down mid-write: the next append starts a new writer for this row
                    self._pending.appendleft(item)
                    raise
                except Exception as e:
                    logger.exception(f"Unexpected error writing to {self.path.name}: {e}")
                    if not item.done.done():
                        item.done.set_exception(e)
                    continue

                attempt = 0
                if not item.done.done():
                    item.done.set_result(item.entry)
                logger.info(
                    f"📝 NEW RECORD ADDED to {self.path.name}: "
                    f"{item.entry.name} ({item.entry.phone}) - Status: {item.entry.status}"
                )

    async def _with_retry(self, func, *args):
        """Run a blocking file operation, retrying PersistenceError with backoff. Caller holds the lock."""
        attempt = 0
        while True:
            try:
                return await asyncio.to_thread(func, *args)
            except PersistenceError as e:
                delay = self._backoff(attempt)
                attempt += 1
                logger.error(f"{e} - retrying in {delay:.1f}s")
                await asyncio.sleep(delay)

    def _backoff(self, attempt: int) -> float:
        return min(self._retry_base_delay * (2 ** attempt), self._retry_max_delay)

    def _initialize_file(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if not self.path.exists() or self.path.stat().st_size == 0:
                with self.path.open("w", encoding="utf-8", newline="") as f:
                    f.write(self.header + "\n")
                logger.info(f"Created {self.path}")
            else:
                self._repair_trailing_newline()
        except OSError as e:
            raise PersistenceError(f"Failed to initialize {self.path}: {e}") from e
        finally:
            self._invalidate_cache()

    def _repair_trailing_newline(self) -> None:
        with self.path.open("rb+") as f:
            f.seek(0, os.SEEK_END)
            if f.tell() == 0:
                return
            f.seek(-1, os.SEEK_END)
            if f.read(1) != b"\n":
                f.write(b"\n")
                logger.warning(f"Repaired missing trailing newline in {self.path.name}")

    def _write_row(self, entry: E) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if not self.path.exists() or self.path.stat().st_size == 0:
                with self.path.open("w", encoding="utf-8", newline="") as f:
                    f.write(self.header + "\n")
            else:
                self._repair_trailing_newline()

            with self.path.open("a", encoding="utf-8", newline="") as f:
                f.write(",".join(entry.to_row()) + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise PersistenceError(f"Failed to write to {self.path.name}: {e}") from e
        finally:
            self._invalidate_cache()

    # ── Read path ──────────────────────────────────────────────────

    async def read_entries(self) -> List[E]:
        """Replay every well-formed row (header and blank/short rows skipped)."""
        return await asyncio.to_thread(self._read_entries)

    async def load_sent_phones(self, statuses: Optional[Iterable[str]] = None) -> Set[str]:
        """
        Normalized phones having at least one row whose status is in `statuses`.
        All rows count when `statuses` is None.
        """
        wanted = {getattr(s, "value", s) for s in statuses} if statuses is not None else None
        entries = await self.read_entries()
        return {
            normalize_phone(entry.phone)
            for entry in entries
            if wanted is None or entry.status in wanted
        }

    async def load_statuses(self) -> Dict[str, Set[str]]:
        """Every status recorded per normalized phone."""
        statuses: Dict[str, Set[str]] = {}
        for entry in await self.read_entries():
            statuses.setdefault(normalize_phone(entry.phone), set()).add(entry.status)
        return statuses

    def _read_entries(self) -> List[E]:
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            return []

        key = (stat.st_mtime_ns, stat.st_size)
        if key == self._cache_key:
            return list(self._cache_entries)

        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []

        entries = self._parse(text)
        self._cache_key = key
        self._cache_entries = entries
        logger.debug(f"[CACHE] {self.path.name} reloaded: {len(entries)} rows")
        return list(entries)

    def _parse(self, text: str) -> List[E]:
        entries = []
        for line in text.split("\n")[1:]:
            if not line.strip():
                continue
            entry = self.entry_type.from_row(line.rstrip("\r").split(","))
            if entry is None:
                logger.warning(f"[WARN] Skipping malformed row in {self.path.name}: {line}")
                continue
            entries.append(entry)
        return entries

    def _invalidate_cache(self) -> None:
        self._cache_key = None


class MessageLogStore(LogStore[LogEntry]):
    """
    Main log: Phone,Name,Timestamp,Status,SeenTimestamp,TimeToSee,LastUpdated

    Rows are only ever appended, except the Sent -> Seen transition which
    rewrites the most recent Sent row of a phone in place.
    """

    columns = MAIN_LOG_COLUMNS
    entry_type = LogEntry

    def __init__(self, path, **kwargs):
        super().__init__(path, **kwargs)
        # Phones already transitioned to Seen (idempotency guard)
        self._seen: Set[str] = set()

    def reset_seen_tracking(self) -> None:
        self._seen.clear()

    async def log_status(self, phone: str, name: str, status: LogStatus) -> LogEntry:
        now = self.now()
        return await self.append_entry(
            LogEntry(phone=phone, name=name, timestamp=now, status=status.value, last_updated=now)
        )

    async def transition_to_seen(self, phone: str) -> Optional[str]:
        """
        Mark the most recent Sent row for `phone` as Seen.

        Returns:
            The customer name from that row, or None when the phone has no
            Sent row or was already transitioned. Calling twice is a no-op.
        """
        key = normalize_phone(phone)
        if key in self._seen:
            logger.debug(f"Seen status already recorded for {key}")
            return None

        async with self._lock:
            if key in self._seen:
                return None
            return await self._with_retry(self._rewrite_as_seen, key)

    def _rewrite_as_seen(self, key: str) -> Optional[str]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("Log file not found. Skipping seen update.")
            return None
        except OSError as e:
            raise PersistenceError(f"Failed to read {self.path.name}: {e}") from e

        lines = [line.rstrip("\r") for line in text.split("\n")]
        header, rows = lines[0], [line for line in lines[1:] if line.strip()]

        target = None
        for index in range(len(rows) - 1, -1, -1):
            entry = LogEntry.from_row(rows[index].split(","))
            if entry is None or normalize_phone(entry.phone) != key:
                continue
            if entry.status == LogStatus.SEEN.value:
                self._seen.add(key)
                logger.info(f"[INFO] {key} already marked as Seen. Skipping.")
                return None
            if entry.status == LogStatus.SENT.value and target is None:
                target = (index, entry)

        if target is None:
            logger.debug(f"No Sent row to update for {key}")
            return None

        index, entry = target
        moment = self._clock()
        sent_at = parse_timestamp(entry.timestamp)
        seen_at = format_timestamp(moment)
        updated = replace(
            entry,
            status=LogStatus.SEEN.value,
            seen_timestamp=seen_at,
            time_to_see=round((moment - sent_at).total_seconds()) if sent_at else None,
            last_updated=seen_at,
        )
        rows[index] = ",".join(updated.to_row())

        # Older files carry the four-column header; upgrade it with the rewrite
        if header.strip() != self.header:
            header = self.header

        self._replace_file(header, rows)
        self._seen.add(key)
        logger.info(f"[SUCCESS] Updated log row for {key} from Sent to Seen at {seen_at}")
        return entry.name

    def _replace_file(self, header: str, rows: List[str]) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8", newline="") as f:
                f.write(header + "\n")
                for row in rows:
                    f.write(row + "\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise PersistenceError(f"Failed to rewrite {self.path.name}: {e}") from e
        finally:
            self._invalidate_cache()


class CatalogLogStore(LogStore[CatalogLogEntry]):
    """Catalog log: Phone,Name,Timestamp,Status. Append-only, no transitions."""

    columns = CATALOG_LOG_COLUMNS
    entry_type = CatalogLogEntry

    async def log_sent(self, phone: str, name: str) -> CatalogLogEntry:
        return await self.append_entry(
            CatalogLogEntry(phone=phone, name=name, timestamp=self.now(), status=LogStatus.SENT.value)
        )
