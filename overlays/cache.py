"""Result cache and per-field request registry.

Results live in a Django cache alias keyed by `(field_id, window_hash,
palette_key)`. Each field additionally remembers the key of its newest
stored result, so storing a newer result supersedes the older entry instead
of leaving both alive until their TTL.

Tokens are process-local: issuing a token for a field cancels whatever token
was outstanding for it, and `put` refuses results whose token is no longer
the latest one.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass

from django.conf import settings
from django.core.cache import caches

from .cancellation import CancellationToken
from .metrics import (
    overlay_cache_hit_total,
    overlay_cache_miss_total,
    overlay_stale_discarded_total,
)
from .resolver import OverlayResult

logger = logging.getLogger(__name__)

CACHE_ALIAS = getattr(settings, "OVERLAY_CACHE_ALIAS", "default")
CACHE_TTL_SECONDS = int(getattr(settings, "OVERLAY_CACHE_TTL_SECONDS", 3600))


@dataclass(frozen=True)
class OverlayCacheKey:
    field_id: str
    window_hash: str
    palette_key: str

    def as_string(self) -> str:
        return (
            f"overlays:result:{self.field_id}:"
            f"{self.window_hash}:{self.palette_key}"
        )


@dataclass(frozen=True, eq=False)
class CacheEntry:
    key: OverlayCacheKey
    result: OverlayResult
    created_at: float
    token_sequence: int


def _field_index_key(field_id: str) -> str:
    return f"overlays:field:{field_id}"


class OverlayCache:
    def __init__(
        self,
        cache_alias: str | None = None,
        ttl_seconds: int | None = None,
    ) -> None:
        self.cache = caches[cache_alias or CACHE_ALIAS]
        self.ttl_seconds = (
            CACHE_TTL_SECONDS if ttl_seconds is None else int(ttl_seconds)
        )
        self._lock = threading.Lock()
        self._sequence = 0
        self._tokens: dict[str, CancellationToken] = {}

    def get(self, key: OverlayCacheKey) -> CacheEntry | None:
        entry = self.cache.get(key.as_string())
        if entry is None:
            overlay_cache_miss_total.labels(layer="result").inc()
            logger.debug("overlays.cache miss key=%s", key.as_string())
            return None
        overlay_cache_hit_total.labels(layer="result").inc()
        logger.debug("overlays.cache hit key=%s", key.as_string())
        return entry

    def put(
        self,
        key: OverlayCacheKey,
        result: OverlayResult,
        token: CancellationToken | None = None,
    ) -> bool:
        """Store `result` under `key`.

        Returns False without writing when `token` was cancelled or a newer
        token has been issued for the field since.
        """

        if token is not None and not self.is_current(token):
            overlay_stale_discarded_total.labels(stage="cache").inc()
            logger.info(
                "overlays.cache discarded stale result field=%s sequence=%s",
                token.field_id,
                token.sequence,
            )
            return False

        index_key = _field_index_key(key.field_id)
        previous = self.cache.get(index_key)
        if previous and previous != key.as_string():
            self.cache.delete(previous)

        entry = CacheEntry(
            key=key,
            result=result,
            created_at=time.time(),
            token_sequence=token.sequence if token is not None else 0,
        )
        self.cache.set(key.as_string(), entry, self.ttl_seconds)
        self.cache.set(index_key, key.as_string(), self.ttl_seconds)
        return True

    def invalidate(self, field_id: str) -> bool:
        """Drop the field's cached result. Returns True if one existed."""

        index_key = _field_index_key(field_id)
        previous = self.cache.get(index_key)
        self.cache.delete(index_key)
        if not previous:
            return False
        self.cache.delete(previous)
        logger.info("overlays.cache invalidated field=%s", field_id)
        return True

    def issue_token(self, field_id: str) -> CancellationToken:
        """Start a new request for `field_id`, cancelling the previous one."""

        with self._lock:
            self._sequence += 1
            previous = self._tokens.get(field_id)
            if previous is not None:
                previous.cancel()
            token = CancellationToken(field_id=field_id, sequence=self._sequence)
            self._tokens[field_id] = token
        if previous is not None:
            logger.info(
                "overlays.cache superseded field=%s sequence=%s by=%s",
                field_id,
                previous.sequence,
                token.sequence,
            )
        return token

    def is_current(self, token: CancellationToken) -> bool:
        with self._lock:
            return (
                not token.cancelled
                and self._tokens.get(token.field_id) is token
            )

    def release(self, token: CancellationToken) -> None:
        """Forget `token` once its request has finished."""

        with self._lock:
            if self._tokens.get(token.field_id) is token:
                del self._tokens[token.field_id]
