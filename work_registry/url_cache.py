"""
In-process cache of signed retrieval URLs.

Entries are reused while at least ``refresh_margin`` (10%) of the larger of
the requested TTL and the TTL the entry was signed with remains, so a URL
handed to a client always has a usable lifetime left.
Expired entries are swept lazily on a small fraction of calls.
"""
from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import structlog

from .signing import CredentialIssuer

logger = structlog.get_logger()

DEFAULT_TTL_SECONDS = 30 * 60


@dataclass(frozen=True)
class CachedUrl:
    url: str
    expires_at: float
    ttl: int


class SignedUrlCache:
    """Keyed, TTL-aware cache in front of a CredentialIssuer.

    Thread safe: a lock guards lookups and stores. Signing runs outside the
    lock, so two concurrent misses for the same key may both sign; the later
    store wins and both URLs are valid.
    """

    def __init__(
        self,
        issuer: CredentialIssuer,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        refresh_margin: float = 0.10,
        sweep_probability: float = 0.01,
        clock: Callable[[], float] = time.time,
        rng: Callable[[], float] = random.random,
    ):
        self.issuer = issuer
        self.default_ttl = default_ttl
        self.refresh_margin = refresh_margin
        self.sweep_probability = sweep_probability
        self.clock = clock
        self.rng = rng
        self._entries: Dict[str, CachedUrl] = {}
        self._lock = threading.Lock()

    @staticmethod
    def cache_key(bucket: str, path: str) -> str:
        return f"{bucket}/{path}"

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def peek(self, bucket: str, path: str) -> Optional[CachedUrl]:
        with self._lock:
            return self._entries.get(self.cache_key(bucket, path))

    def get_signed_url(self, bucket: str, path: str, ttl: Optional[int] = None) -> str:
        """Return a cached URL with enough lifetime left, or sign a fresh one.

        Raises:
            SigningError: Propagated from the issuer; failures are never cached.
        """
        ttl = ttl or self.default_ttl
        key = self.cache_key(bucket, path)
        now = self.clock()

        if self.rng() < self.sweep_probability:
            self.sweep(now)

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                margin = self.refresh_margin * max(ttl, entry.ttl)
                if entry.expires_at > now + margin:
                    return entry.url

        url = self.issuer.sign(bucket, path, ttl)
        with self._lock:
            self._entries[key] = CachedUrl(url=url, expires_at=now + ttl, ttl=ttl)
        logger.debug("signed_url_issued", key=key, ttl=ttl)
        return url

    def sweep(self, now: Optional[float] = None) -> int:
        """Evict expired entries. Returns how many were removed."""
        now = self.clock() if now is None else now
        with self._lock:
            expired = [k for k, v in self._entries.items() if v.expires_at < now]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("signed_url_cache_swept", evicted=len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
