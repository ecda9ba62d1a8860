"""
Retry ledger: durable, file-backed queue of failed record batches.

File layout is newline-delimited JSON, one self-describing entry per line::

    {"entry_id":"led_…","reason":"store-write-failure: …","recorded_at":1718000000.0,"batch":[{…},…]}\\n

Every append is written, flushed and fsync'd before ``persist`` returns, so a
crash can only ever lose the entry being written. A trailing line without its
newline terminator is a torn write: readers skip it and the next append
truncates it away. A complete line that fails to parse is skipped with a
warning instead of failing the whole read.
"""

from __future__ import annotations

import hashlib
import json
import os
import threading
import time
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from flashsync.core.types import FlashRecord, RetryLedgerEntry
from flashsync.exceptions import LedgerIOFailure
from flashsync.utils.logging import get_logger

logger = get_logger("flashsync.retry.ledger")

_NEWLINE = b"\n"


class RetryLedger:
    """
    Append-only retry ledger backed by a local file.

    ``persist`` appends, ``drain_for_retry`` reads everything without removing
    it, and ``clear`` empties the ledger once the caller has confirmed a
    successful replay. All file access is serialized with one lock, so the
    three failure call sites of a tick cannot interleave their writes.

    Examples:
        >>> ledger = RetryLedger(".flashsync/ledger.jsonl")
        >>> ledger.persist(records, "publish-failure")
        >>> for entry in ledger.drain_for_retry():
        ...     replay(entry.batch)
        >>> ledger.clear()
    """

    def __init__(self, path: str | Path, *, warn_entries: int = 100):
        """
        Initialize the ledger.

        Args:
            path: Ledger file path (parent directories are created on first write)
            warn_entries: Log a warning once the ledger holds this many entries
        """
        self.path = Path(path)
        self.warn_entries = warn_entries
        self._lock = threading.Lock()

    def persist(self, batch: Iterable[FlashRecord], reason: str) -> RetryLedgerEntry | None:
        """
        Append one entry durably.

        Args:
            batch: Records that failed
            reason: Stage/diagnostic tag (e.g. ``store-write-failure: timeout``)

        Returns:
            The written entry, or None when the batch was empty

        Raises:
            LedgerIOFailure: If the entry could not be made durable
        """
        records = list(batch)
        if not records:
            logger.debug(f"Ledger: nothing to persist for reason '{reason}'")
            return None

        entry = RetryLedgerEntry(batch=records, reason=reason)
        entry.entry_id = self._generate_id(entry)
        line = entry.to_json().encode("utf-8") + _NEWLINE

        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                created = not self.path.exists()
                self._repair_tail()
                with open(self.path, "ab") as f:
                    f.write(line)
                    f.flush()
                    os.fsync(f.fileno())
                if created:
                    self._fsync_dir()
            except OSError as e:
                raise LedgerIOFailure(f"Cannot append to retry ledger {self.path}: {e}", path=str(self.path)) from e

            count = len(self._read_entries())

        logger.warning(f"Ledgered {len(records)} records ({reason}); ledger now holds {count} entries")
        if count >= self.warn_entries:
            logger.warning(
                f"Retry ledger {self.path} holds {count} entries (threshold {self.warn_entries}); "
                f"failures are persisting and need operator attention"
            )
        return entry

    def drain_for_retry(self) -> list[RetryLedgerEntry]:
        """
        Return every stored entry, oldest first, without removing them.

        Raises:
            LedgerIOFailure: If the ledger file exists but cannot be read
        """
        with self._lock:
            return self._read_entries()

    def clear(self) -> None:
        """
        Empty the ledger.

        Raises:
            LedgerIOFailure: If the ledger file cannot be replaced
        """
        with self._lock:
            if not self.path.exists():
                return
            tmp_path = self.path.with_name(self.path.name + ".tmp")
            try:
                with open(tmp_path, "wb") as f:
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
                self._fsync_dir()
            except OSError as e:
                raise LedgerIOFailure(f"Cannot clear retry ledger {self.path}: {e}", path=str(self.path)) from e
        logger.info(f"Cleared retry ledger {self.path}")

    def stats(self) -> dict[str, Any]:
        """
        Ledger statistics.

        Returns:
            Dictionary with entry count, record count and counts per reason
        """
        entries = self.drain_for_retry()
        by_reason: dict[str, int] = {}
        for entry in entries:
            tag = entry.reason.split(":", 1)[0].strip()
            by_reason[tag] = by_reason.get(tag, 0) + 1

        return {
            "path": str(self.path),
            "total_entries": len(entries),
            "total_records": sum(len(entry.batch) for entry in entries),
            "entries_by_reason": by_reason,
            "oldest_recorded_at": min((e.recorded_at or 0.0 for e in entries), default=None),
        }

    def __len__(self) -> int:
        return len(self.drain_for_retry())

    # Private helpers (callers hold self._lock)

    def _read_entries(self) -> list[RetryLedgerEntry]:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise LedgerIOFailure(f"Cannot read retry ledger {self.path}: {e}", path=str(self.path)) from e

        lines = raw.split(_NEWLINE)
        # Anything after the last newline is a torn write
        tail = lines.pop()
        if tail.strip():
            logger.warning(f"Retry ledger {self.path}: skipping partially written trailing entry ({len(tail)} bytes)")

        entries: list[RetryLedgerEntry] = []
        for lineno, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                entries.append(RetryLedgerEntry.from_json(line.decode("utf-8")))
            except (UnicodeDecodeError, json.JSONDecodeError, ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Retry ledger {self.path}: skipping malformed entry on line {lineno}: {e}")
        return entries

    def _repair_tail(self) -> None:
        """Truncate a torn trailing write so the next append starts on a fresh line."""
        try:
            size = self.path.stat().st_size
        except FileNotFoundError:
            return
        if size == 0:
            return

        with open(self.path, "rb+") as f:
            f.seek(-1, os.SEEK_END)
            if f.read(1) == _NEWLINE:
                return
            f.seek(0)
            content = f.read()
            keep = content.rfind(_NEWLINE) + 1
            f.truncate(keep)
            f.flush()
            os.fsync(f.fileno())
        logger.warning(f"Retry ledger {self.path}: truncated {size - keep} bytes of a torn trailing entry")

    def _fsync_dir(self) -> None:
        if not hasattr(os, "O_DIRECTORY"):
            return
        try:
            fd = os.open(self.path.parent, os.O_RDONLY | os.O_DIRECTORY)
        except OSError:
            return
        try:
            os.fsync(fd)
        except OSError as e:
            logger.debug(f"fsync of ledger directory failed: {e}")
        finally:
            os.close(fd)

    def _generate_id(self, entry: RetryLedgerEntry) -> str:
        """Generate a unique ID for a ledger entry."""
        ids = ",".join(str(record.id) for record in entry.batch)
        content = f"{entry.reason}_{entry.recorded_at}_{time.monotonic_ns()}_{ids}"
        return f"led_{hashlib.sha256(content.encode()).hexdigest()[:16]}"
