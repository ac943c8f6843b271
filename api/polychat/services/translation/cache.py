"""Two-tier caching for translation results.

Fast tier: in-memory store with lazy expiry and approximate LFU eviction
(default: 1000 entries, 24h max age).
Durable tier: optional SQLite store, written best-effort in a worker thread.
"""

import asyncio
import contextlib
import hashlib
import heapq
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Set

from polychat.metrics.translation_metrics import (
    translation_cache_entries,
    translation_cache_evictions_total,
    translation_cache_lookups_total,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_SECONDS = 24 * 60 * 60


@dataclass
class CacheEntry:
    """A cached translation and its usage bookkeeping."""

    original_text: str
    translated_text: str
    source_language: str
    target_language: str
    confidence: float
    created_at: float
    hit_count: int = 0
    detected_language: Optional[str] = None

    def is_expired(self, now: float, max_age: float) -> bool:
        return now - self.created_at > max_age


def normalize_text(text: str) -> str:
    return text.strip().casefold()


def make_cache_key(text: str, source_lang: Optional[str], target_lang: str) -> str:
    """Derive a stable cache key for a text and language pair.

    Each component is length-prefixed before hashing, so no choice of text can
    make two different (text, source, target) triples hash the same input.
    """
    parts = (
        (source_lang or "auto").strip().lower(),
        (target_lang or "").strip().lower(),
        normalize_text(text),
    )
    payload = "".join(f"{len(part)}:{part}" for part in parts)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class SQLiteTranslationStore:
    """Persistent SQLite store for translations.

    Keeps translations across restarts. Every call opens its own connection so
    the store can be used from worker threads.
    """

    def __init__(self, db_path: str):
        """Initialize the SQLite store.

        Args:
            db_path: Path to SQLite database file.
        """
        self.db_path = db_path
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS translations (
                    cache_key TEXT PRIMARY KEY,
                    original_text TEXT NOT NULL,
                    translated_text TEXT NOT NULL,
                    source_language TEXT NOT NULL,
                    target_language TEXT NOT NULL,
                    detected_language TEXT,
                    confidence REAL NOT NULL,
                    created_at REAL NOT NULL
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_translations_created_at
                ON translations(created_at)
            """)
            conn.commit()
        finally:
            conn.close()

    def get(self, key: str) -> Optional[CacheEntry]:
        """Fetch a stored translation by cache key, expired or not."""
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT original_text, translated_text, source_language,
                       target_language, detected_language, confidence, created_at
                FROM translations WHERE cache_key = ?
                """,
                (key,),
            )
            row = cursor.fetchone()
        finally:
            conn.close()

        if row is None:
            return None
        return CacheEntry(
            original_text=row[0],
            translated_text=row[1],
            source_language=row[2],
            target_language=row[3],
            detected_language=row[4],
            confidence=row[5],
            created_at=row[6],
        )

    def set(self, key: str, entry: CacheEntry) -> None:
        """Insert or replace a translation."""
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute(
                """
                INSERT OR REPLACE INTO translations
                (cache_key, original_text, translated_text, source_language,
                 target_language, detected_language, confidence, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    key,
                    entry.original_text,
                    entry.translated_text,
                    entry.source_language,
                    entry.target_language,
                    entry.detected_language,
                    entry.confidence,
                    entry.created_at,
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def cleanup_expired(self, cutoff: float) -> int:
        """Remove rows created before ``cutoff``.

        Returns:
            Number of rows removed.
        """
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.execute(
                "DELETE FROM translations WHERE created_at < ?", (cutoff,)
            )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    def count(self) -> int:
        conn = sqlite3.connect(self.db_path)
        try:
            return conn.execute("SELECT COUNT(*) FROM translations").fetchone()[0]
        finally:
            conn.close()


class TranslationCache:
    """Two-tier translation cache.

    The in-memory tier is authoritative for capacity and expiry behavior:
    - Entries older than ``max_age_seconds`` read as absent and are physically
      removed by the periodic sweep.
    - Inserting past ``max_entries`` evicts the least-hit entries, removing the
      overflow plus ``eviction_fraction`` of capacity in one pass.

    The durable tier is optional. Reads fall through to it on a memory miss and
    promote hits; writes are scheduled in the background and never raise.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        durable_store: Optional[SQLiteTranslationStore] = None,
        eviction_fraction: float = 0.1,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the cache.

        Args:
            max_entries: Capacity of the in-memory tier.
            max_age_seconds: Age after which entries are treated as absent.
            durable_store: Optional persistent tier.
            eviction_fraction: Share of capacity removed on top of the overflow.
            clock: Time source in seconds (injectable for tests).
        """
        self.max_entries = max_entries
        self.max_age_seconds = max_age_seconds
        self.durable_store = durable_store
        self.eviction_fraction = eviction_fraction
        self._clock = clock

        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._pending_writes: Set[asyncio.Task] = set()
        self._sweeper_task: Optional[asyncio.Task] = None

        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.durable_writes = 0
        self.durable_failures = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def get(
        self, text: str, source_lang: Optional[str], target_lang: str
    ) -> Optional[CacheEntry]:
        """Look up a translation.

        Checks memory first, then the durable tier. Durable hits are promoted.

        Args:
            text: Original text.
            source_lang: Source language code (or "auto").
            target_lang: Target language code.

        Returns:
            The live cache entry if present and fresh, None otherwise.
        """
        key = make_cache_key(text, source_lang, target_lang)
        now = self._clock()

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and not entry.is_expired(now, self.max_age_seconds):
                entry.hit_count += 1
                self.hits += 1
                translation_cache_lookups_total.labels(tier="memory", result="hit").inc()
                return entry

        if self.durable_store is not None:
            try:
                stored = await asyncio.to_thread(self.durable_store.get, key)
            except Exception as e:
                logger.warning(f"Durable translation cache read failed: {e}")
                stored = None

            if stored is not None and not stored.is_expired(now, self.max_age_seconds):
                with self._lock:
                    stored.hit_count += 1
                    self._insert(key, stored)
                    self.hits += 1
                translation_cache_lookups_total.labels(tier="durable", result="hit").inc()
                return stored

        with self._lock:
            self.misses += 1
        translation_cache_lookups_total.labels(tier="all", result="miss").inc()
        return None

    async def put(
        self,
        text: str,
        translated_text: str,
        source_lang: Optional[str],
        target_lang: str,
        confidence: float,
        detected_language: Optional[str] = None,
    ) -> None:
        """Store a translation.

        The memory write happens before this returns; the durable write is
        scheduled and its failures are only logged.
        """
        key = make_cache_key(text, source_lang, target_lang)
        entry = CacheEntry(
            original_text=text,
            translated_text=translated_text,
            source_language=(source_lang or "auto").strip().lower(),
            target_language=target_lang.strip().lower(),
            confidence=max(0.0, min(1.0, float(confidence))),
            created_at=self._clock(),
            detected_language=detected_language,
        )

        with self._lock:
            self._insert(key, entry)

        if self.durable_store is not None:
            task = asyncio.create_task(self._write_durable(key, entry))
            self._pending_writes.add(task)
            task.add_done_callback(self._pending_writes.discard)

    def _insert(self, key: str, entry: CacheEntry) -> None:
        existing = self._entries.pop(key, None)
        if existing is not None:
            entry.hit_count = max(entry.hit_count, existing.hit_count)
        self._entries[key] = entry
        if len(self._entries) > self.max_entries:
            self._evict_least_used()
        translation_cache_entries.set(len(self._entries))

    def _evict_least_used(self) -> None:
        overflow = len(self._entries) - self.max_entries
        margin = int(self.max_entries * self.eviction_fraction)
        to_remove = min(len(self._entries), overflow + margin)

        # nsmallest is stable, so ties go to the oldest insertions
        victims = heapq.nsmallest(
            to_remove, self._entries.items(), key=lambda item: item[1].hit_count
        )
        for key, _ in victims:
            del self._entries[key]

        self.evictions += len(victims)
        translation_cache_evictions_total.inc(len(victims))
        logger.info(f"Evicted {len(victims)} entries from translation cache")

    async def _write_durable(self, key: str, entry: CacheEntry) -> None:
        try:
            await asyncio.to_thread(self.durable_store.set, key, entry)
            self.durable_writes += 1
        except Exception as e:
            self.durable_failures += 1
            logger.warning(f"Failed to save translation to durable cache: {e}")

    async def flush(self) -> None:
        """Wait for scheduled durable writes to finish."""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    def cleanup_expired(self) -> int:
        """Remove expired entries from the in-memory tier.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        with self._lock:
            expired = [
                key
                for key, entry in self._entries.items()
                if entry.is_expired(now, self.max_age_seconds)
            ]
            for key in expired:
                del self._entries[key]
            translation_cache_entries.set(len(self._entries))

        if expired:
            logger.info(f"Cleaned up {len(expired)} expired translation cache entries")
        return len(expired)

    async def sweep(self) -> int:
        """Reclaim expired entries from both tiers."""
        removed = self.cleanup_expired()
        if self.durable_store is not None:
            cutoff = self._clock() - self.max_age_seconds
            try:
                removed += await asyncio.to_thread(
                    self.durable_store.cleanup_expired, cutoff
                )
            except Exception as e:
                logger.warning(f"Durable translation cache sweep failed: {e}")
        return removed

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Translation cache sweep crashed")

    def start_sweeper(self, interval: float = 300) -> None:
        """Start the periodic expiry sweep on the running event loop."""
        if self._sweeper_task is None or self._sweeper_task.done():
            self._sweeper_task = asyncio.create_task(self._sweep_loop(interval))

    async def stop(self) -> None:
        """Stop the sweeper and drain pending durable writes."""
        if self._sweeper_task is not None:
            self._sweeper_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper_task
            self._sweeper_task = None
        await self.flush()

    def clear(self) -> None:
        """Clear all in-memory entries and reset statistics."""
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0
            self.evictions = 0
            self.durable_writes = 0
            self.durable_failures = 0
            translation_cache_entries.set(0)
        logger.info("Translation cache cleared")

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dict with request counts, hit rate and tier sizes.
        """
        with self._lock:
            total_requests = self.hits + self.misses
            return {
                "total_requests": total_requests,
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": self.hits / total_requests if total_requests > 0 else 0,
                "memory_entries": len(self._entries),
                "max_entries": self.max_entries,
                "evictions": self.evictions,
                "durable_enabled": self.durable_store is not None,
                "durable_writes": self.durable_writes,
                "durable_failures": self.durable_failures,
            }
