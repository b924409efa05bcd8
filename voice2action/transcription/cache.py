"""Content-addressed cache for transcription results."""

import hashlib
import json
import logging
import math
import time
from collections import deque
from datetime import datetime
from typing import Any, Deque, Dict, Iterable, Optional, Tuple

import numpy as np

from ..models.audio import TranscriptionOptions
from ..models.transcription import TranscriptResult
from ..storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

FINGERPRINT_CHUNKS = 10


def audio_fingerprint(audio_data: bytes) -> str:
    """Hash of the raw bytes, their length and coarse per-chunk RMS energy.

    Audio is read as 16-bit little-endian samples and split into roughly ten
    byte chunks. Returns the first 16 hex characters of the SHA-256 digest.
    """
    digest = hashlib.sha256()
    digest.update(audio_data)
    digest.update(str(len(audio_data)).encode())

    chunk_size = max(1, len(audio_data) // FINGERPRINT_CHUNKS)
    for offset in range(0, len(audio_data), chunk_size):
        chunk = audio_data[offset:offset + chunk_size]
        usable = len(chunk) - len(chunk) % 2
        samples = np.frombuffer(chunk[:usable], dtype="<i2").astype(np.float64)
        energy = float(np.sum(samples * samples))
        rms = math.sqrt(energy / (len(chunk) / 2))
        digest.update(str(math.floor(rms)).encode())

    return digest.hexdigest()[:16]


def options_fingerprint(options: Optional[TranscriptionOptions]) -> str:
    """First 8 hex characters of the MD5 of the result-affecting options."""
    options = options or TranscriptionOptions()
    options_key = json.dumps(
        {
            "language": options.language or "auto",
            "temperature": options.temperature or 0,
            "responseFormat": options.response_format or "verbose_json",
        },
        separators=(",", ":"),
    )
    return hashlib.md5(options_key.encode()).hexdigest()[:8]


class TranscriptionCache:
    """Caches transcripts keyed by audio content and options.

    Backing store failures never reach the caller: reads degrade to a miss and
    writes are dropped with an error log.
    """

    def __init__(self, store: KeyValueStore, default_ttl: int = 3600,
                 key_prefix: str = "transcription:cache:"):
        """Initialize transcription cache.

        Args:
            store: Key/value backend
            default_ttl: Seconds an entry lives; refreshed on every hit
            key_prefix: Namespace for all keys written by this cache
        """
        self.store = store
        self.default_ttl = default_ttl
        self.key_prefix = key_prefix

        self.hits = 0
        self.misses = 0
        self._lookup_times: Deque[float] = deque(maxlen=1000)

    def generate_cache_key(self, audio_data: bytes, options: Optional[TranscriptionOptions] = None) -> str:
        return f"{audio_fingerprint(audio_data)}:{options_fingerprint(options)}"

    def _store_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> Optional[TranscriptResult]:
        """Look up a cached result, extending its TTL on a hit."""
        started = time.perf_counter()
        try:
            cached = await self.store.get(self._store_key(key))
            if cached is None:
                self.misses += 1
                logger.debug(f"Cache miss: {key}")
                return None

            result = TranscriptResult.from_dict(json.loads(cached))
            self.hits += 1
            # Sliding expiration
            await self.store.set(self._store_key(key), cached, self.default_ttl)
            result.from_cache = True
            logger.debug(f"Cache hit: {key} ({len(result.transcript)} chars)")
            return result
        except Exception as e:
            self.misses += 1
            logger.error(f"Cache lookup failed for {key}: {e}")
            return None
        finally:
            self._lookup_times.append((time.perf_counter() - started) * 1000)

    async def set(self, key: str, result: TranscriptResult, ttl: Optional[int] = None) -> None:
        """Store a result without its per-call processing time."""
        payload = result.to_cache_dict()
        payload["cached_at"] = datetime.now().isoformat()
        try:
            await self.store.set(self._store_key(key), json.dumps(payload), ttl or self.default_ttl)
            logger.debug(f"Cached transcript {key} (confidence {result.confidence:.2f})")
        except Exception as e:
            logger.error(f"Cache set failed for {key}: {e}")

    async def delete(self, key: str) -> None:
        try:
            await self.store.delete(self._store_key(key))
        except Exception as e:
            logger.error(f"Cache delete failed for {key}: {e}")

    async def clear(self) -> int:
        """Remove every entry written by this cache. Returns the number removed."""
        try:
            keys = await self.store.keys(f"{self.key_prefix}*")
            if keys:
                await self.store.delete(*keys)
                logger.info(f"Cache cleared: {len(keys)} keys deleted")
            return len(keys)
        except Exception as e:
            logger.error(f"Cache clear failed: {e}")
            return 0

    async def get_total_keys(self) -> int:
        try:
            return len(await self.store.keys(f"{self.key_prefix}*"))
        except Exception as e:
            logger.error(f"Failed to count cache keys: {e}")
            return 0

    async def preload(self, phrases: Iterable[Tuple[bytes, str]]) -> int:
        """Seed the cache with known audio/transcript pairs for 24 hours.

        Returns:
            Number of phrases written
        """
        count = 0
        for audio_data, transcript in phrases:
            result = TranscriptResult(transcript=transcript, confidence=0.95,
                                      language="en", processing_time=0.0)
            await self.set(self.generate_cache_key(audio_data), result, ttl=86400)
            count += 1
        logger.info(f"Cache preload completed: {count} phrases")
        return count

    def get_stats(self) -> Dict[str, Any]:
        total = self.hits + self.misses
        hit_rate = (self.hits / total) * 100 if total else 0.0
        average_ms = (sum(self._lookup_times) / len(self._lookup_times)
                      if self._lookup_times else 0.0)
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(hit_rate, 2),
            "average_lookup_time_ms": round(average_ms, 2),
        }
