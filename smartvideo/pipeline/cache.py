"""
Prompt cache — memoizes synthesizer output by content fingerprint.

Entries expire lazily: the read that finds an expired entry deletes it.
A ttl of zero or less is already expired. Only prompts and timelines are
cached; remote job handles never are.

Two stores share the same contract:
  - PromptCache:      thread-safe in-process dict (default)
  - RedisPromptCache: Redis SET ... EX, used when REDIS_URL is reachable
"""

import os
import re
import json
import time
import hashlib
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from .models import MarketInsight, ProductMatch, ProductTruth, SceneSpec, TimelineEntry

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

DEFAULT_TTL_SECONDS = float(os.getenv("PROMPT_CACHE_TTL", str(30 * 60)))
REDIS_URL = os.getenv("REDIS_URL", "")
REDIS_PREFIX = "smartvideo:prompts:"


def fingerprint(
    truth: ProductTruth,
    market: Optional[MarketInsight] = None,
    match: Optional[ProductMatch] = None,
) -> str:
    """Stable SHA-256 over everything the synthesizer reads."""
    payload = {
        "truth": truth.model_dump(mode="json"),
        "market": market.model_dump(mode="json") if market else None,
        "assets": [a.url for a in match.compatible_assets] if match else [],
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:32]


def cache_key(product_name: str, truth_fingerprint: str) -> str:
    slug = re.sub(r"\s+", "_", product_name.strip().lower())
    return f"prompt_{slug}_{truth_fingerprint}"


@dataclass(frozen=True)
class CacheEntry:
    key: str
    prompts: tuple[SceneSpec, ...]
    timeline: tuple[TimelineEntry, ...]
    created_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return self.ttl <= 0 or now - self.created_at > self.ttl


class PromptCache:
    """In-process cache. Entries are immutable; inserts overwrite atomically."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expired(self._clock()):
                del self._entries[key]
                return None
            return entry

    def put(
        self,
        key: str,
        prompts: list[SceneSpec],
        timeline: list[TimelineEntry],
        ttl: float = DEFAULT_TTL_SECONDS,
    ) -> CacheEntry:
        entry = CacheEntry(
            key=key,
            prompts=tuple(prompts),
            timeline=tuple(timeline),
            created_at=self._clock(),
            ttl=ttl,
        )
        with self._lock:
            self._entries[key] = entry
        return entry

    def clear(self, key: Optional[str] = None):
        with self._lock:
            if key:
                self._entries.pop(key, None)
            else:
                self._entries.clear()

    def stats(self) -> dict:
        with self._lock:
            return {"backend": "memory", "size": len(self._entries), "keys": list(self._entries)}


class RedisPromptCache:
    """Same contract as PromptCache, backed by Redis key expiry."""

    def __init__(self, client, prefix: str = REDIS_PREFIX, clock: Callable[[], float] = time.time):
        self._r = client
        self._prefix = prefix
        self._clock = clock

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> Optional[CacheEntry]:
        raw = self._r.get(self._key(key))
        if raw is None:
            return None
        data = json.loads(raw)
        entry = CacheEntry(
            key=key,
            prompts=tuple(SceneSpec(**p) for p in data["prompts"]),
            timeline=tuple(TimelineEntry(**t) for t in data["timeline"]),
            created_at=data["created_at"],
            ttl=data["ttl"],
        )
        # Redis expiry is second-granular; enforce the exact ttl on read.
        if entry.expired(self._clock()):
            self._r.delete(self._key(key))
            return None
        return entry

    def put(
        self,
        key: str,
        prompts: list[SceneSpec],
        timeline: list[TimelineEntry],
        ttl: float = DEFAULT_TTL_SECONDS,
    ) -> CacheEntry:
        entry = CacheEntry(
            key=key,
            prompts=tuple(prompts),
            timeline=tuple(timeline),
            created_at=self._clock(),
            ttl=ttl,
        )
        if ttl <= 0:
            self._r.delete(self._key(key))
            return entry
        payload = json.dumps({
            "prompts": [p.model_dump(mode="json") for p in prompts],
            "timeline": [t.model_dump(mode="json") for t in timeline],
            "created_at": entry.created_at,
            "ttl": ttl,
        })
        self._r.set(self._key(key), payload, ex=max(1, int(ttl + 0.999)))
        return entry

    def clear(self, key: Optional[str] = None):
        if key:
            self._r.delete(self._key(key))
            return
        keys = list(self._r.scan_iter(match=f"{self._prefix}*"))
        if keys:
            self._r.delete(*keys)

    def stats(self) -> dict:
        keys = [
            (k.decode() if isinstance(k, bytes) else k)[len(self._prefix):]
            for k in self._r.scan_iter(match=f"{self._prefix}*")
        ]
        return {"backend": "redis", "size": len(keys), "keys": keys}


def build_prompt_cache(redis_url: Optional[str] = None):
    """Redis-backed cache when REDIS_URL is set and reachable, else in-memory."""
    url = redis_url if redis_url is not None else REDIS_URL
    if url:
        import redis

        client = redis.from_url(url, decode_responses=False)
        try:
            client.ping()
            logger.info(f"Prompt cache using Redis: {url[:30]}...")
            return RedisPromptCache(client)
        except redis.RedisError as e:
            logger.warning(f"Redis connection failed: {e} — falling back to in-memory prompt cache")
    return PromptCache()
