"""Content-addressed synthesis cache.

Artifacts live in the cache directory as ``<digest>.<ext>``; an aiosqlite
index next to them remembers the audio ref, phoneme track and duration for
each digest. The cache is provider-agnostic: the first synthesis of a text
wins and is reused for identical text afterwards.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import re
import time
from pathlib import Path
from typing import Callable

import aiosqlite

from nox_stream.synthesis.base import Phoneme, SynthesisResult

logger = logging.getLogger(__name__)

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS synthesis_cache (
    digest TEXT PRIMARY KEY,
    audio_path TEXT NOT NULL,
    audio_ref TEXT NOT NULL,
    phonemes JSON,
    duration REAL,
    created_at REAL,
    last_used_at REAL
);

CREATE INDEX IF NOT EXISTS idx_synthesis_cache_last_used
    ON synthesis_cache(last_used_at);
"""

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Collapse runs of whitespace and strip the ends."""
    return _WHITESPACE.sub(" ", text).strip()


def text_digest(text: str) -> str:
    """Stable content digest of the normalized text."""
    return hashlib.md5(normalize_text(text).encode("utf-8")).hexdigest()


class SynthesisCache:
    """Async cache of synthesized audio keyed by text digest."""

    def __init__(
        self,
        cache_dir: str | Path,
        *,
        max_entries: int = 0,
        max_age_s: float = 0.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self._db_path = self.cache_dir / "index.db"
        self.max_entries = max_entries
        self.max_age_s = max_age_s
        self._clock = clock
        self._conn: aiosqlite.Connection | None = None

    async def open(self) -> None:
        """Create the cache directory and open the index."""
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self._db_path))
        self._conn.row_factory = aiosqlite.Row
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()
        logger.info("Synthesis cache opened: %s", self.cache_dir)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("Synthesis cache closed")

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Synthesis cache not open. Call open() first.")
        return self._conn

    async def get(self, digest: str) -> SynthesisResult | None:
        """Return the cached result for ``digest``, or None on a miss."""
        async with self.conn.execute(
            "SELECT * FROM synthesis_cache WHERE digest = ?", (digest,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None

        if not Path(row["audio_path"]).is_file():
            logger.info("Cached artifact for %s is gone, dropping entry", digest)
            await self.conn.execute(
                "DELETE FROM synthesis_cache WHERE digest = ?", (digest,)
            )
            await self.conn.commit()
            return None

        await self.conn.execute(
            "UPDATE synthesis_cache SET last_used_at = ? WHERE digest = ?",
            (self._clock(), digest),
        )
        await self.conn.commit()
        phonemes = tuple(Phoneme.from_wire(p) for p in json.loads(row["phonemes"] or "[]"))
        return SynthesisResult(
            audio_path=row["audio_path"],
            audio_ref=row["audio_ref"],
            phonemes=phonemes,
            duration=row["duration"] or 0.0,
        )

    async def put(self, digest: str, result: SynthesisResult) -> None:
        """Persist ``result`` under ``digest``; empty results are not stored."""
        if result.is_empty:
            return
        now = self._clock()
        await self.conn.execute(
            """INSERT INTO synthesis_cache
               (digest, audio_path, audio_ref, phonemes, duration, created_at, last_used_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(digest) DO UPDATE SET
               audio_path=excluded.audio_path, audio_ref=excluded.audio_ref,
               phonemes=excluded.phonemes, duration=excluded.duration,
               last_used_at=excluded.last_used_at
            """,
            (
                digest,
                result.audio_path,
                result.audio_ref,
                json.dumps([p.to_wire() for p in result.phonemes]),
                result.duration,
                now,
                now,
            ),
        )
        await self.conn.commit()
        if self.max_entries and await self.count() > self.max_entries:
            await self.evict()

    async def count(self) -> int:
        async with self.conn.execute("SELECT COUNT(*) FROM synthesis_cache") as cursor:
            row = await cursor.fetchone()
        return int(row[0])

    async def evict(self) -> int:
        """Drop entries older than ``max_age_s`` and beyond ``max_entries``.

        Age is measured from last use; the least recently used entries go
        first when the cache is over capacity. Returns the number removed.
        """
        doomed: list[aiosqlite.Row] = []
        if self.max_age_s > 0:
            cutoff = self._clock() - self.max_age_s
            async with self.conn.execute(
                "SELECT digest, audio_path FROM synthesis_cache WHERE last_used_at < ?",
                (cutoff,),
            ) as cursor:
                doomed.extend(await cursor.fetchall())

        if self.max_entries > 0:
            overflow = await self.count() - len(doomed) - self.max_entries
            if overflow > 0:
                seen = {row["digest"] for row in doomed}
                async with self.conn.execute(
                    "SELECT digest, audio_path FROM synthesis_cache ORDER BY last_used_at ASC"
                ) as cursor:
                    for row in await cursor.fetchall():
                        if overflow <= 0:
                            break
                        if row["digest"] in seen:
                            continue
                        doomed.append(row)
                        overflow -= 1

        if not doomed:
            return 0

        await self.conn.executemany(
            "DELETE FROM synthesis_cache WHERE digest = ?",
            [(row["digest"],) for row in doomed],
        )
        await self.conn.commit()
        await asyncio.to_thread(_unlink_all, [row["audio_path"] for row in doomed])
        logger.info("Evicted %d synthesis cache entries", len(doomed))
        return len(doomed)


def _unlink_all(paths: list[str]) -> None:
    for path in paths:
        Path(path).unlink(missing_ok=True)
