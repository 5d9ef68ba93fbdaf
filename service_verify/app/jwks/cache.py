"""
Process-wide signing key cache with single-flight refresh.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from shared.errors import DiscoveryError, DiscoveryFailureCause
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..discovery.client import OIDCDiscoveryClient, ProviderMetadata
from .keys import SigningKeySet


@dataclass(frozen=True)
class CacheEntry:
    """One successful refresh; replaced wholesale, never updated in place."""

    metadata: ProviderMetadata
    key_set: SigningKeySet
    fetched_at: float
    expires_at: float


class SigningKeyCache:
    """Keeps the provider's signing keys fresh for the validation path.

    One instance is created at startup and shared by all requests on the
    event loop. Concurrent callers that need a refresh share one in-flight
    fetch task; each caller awaits it through ``asyncio.shield`` so a
    cancelled request never cancels the refresh the others are waiting on.
    """

    def __init__(
        self,
        discovery: OIDCDiscoveryClient,
        issuer_url: str,
        *,
        ttl: float = 3600.0,
        grace: float = 43200.0,
        forced_refresh_cooldown: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.discovery = discovery
        self.issuer_url = issuer_url
        self.ttl = ttl
        self.grace = grace
        self.forced_refresh_cooldown = forced_refresh_cooldown
        self.metrics = metrics
        self.logger = get_logger("verifier.jwks")
        self._clock = clock

        self._entry: Optional[CacheEntry] = None
        self._inflight: Optional["asyncio.Task[CacheEntry]"] = None
        self._last_forced_refresh: Optional[float] = None

    @property
    def entry(self) -> Optional[CacheEntry]:
        return self._entry

    async def get_keys(self) -> SigningKeySet:
        """Return the current key set, refreshing it when the TTL has elapsed.

        If the refresh fails, a previous set still inside the grace window
        is returned; otherwise the ``DiscoveryError`` propagates.
        """
        entry = self._entry
        if entry is not None and self._clock() < entry.expires_at:
            return entry.key_set

        try:
            entry = await self._refresh("ttl" if entry is not None else "cold")
        except DiscoveryError as exc:
            return self._fallback(exc)
        return entry.key_set

    async def refresh_for_key(self, key_id: str) -> SigningKeySet:
        """Force a refresh because a token names a key the cache lacks.

        Returns the refreshed set, or the current one when the key already
        arrived through another caller's refresh or when the forced-refresh
        cooldown is still running.
        """
        entry = self._entry
        if entry is not None and key_id in entry.key_set:
            return entry.key_set

        if self._inflight is None:
            now = self._clock()
            if (
                entry is not None
                and self._last_forced_refresh is not None
                and now - self._last_forced_refresh < self.forced_refresh_cooldown
            ):
                self.logger.info(
                    "Forced JWKS refresh suppressed by cooldown",
                    kid=key_id,
                    cooldown=self.forced_refresh_cooldown,
                )
                return entry.key_set
            self._last_forced_refresh = now

        self.logger.info("Unknown signing key, forcing JWKS refresh", kid=key_id)
        try:
            entry = await self._refresh("unknown_kid")
        except DiscoveryError as exc:
            return self._fallback(exc)
        return entry.key_set

    async def warmup(self) -> None:
        """Eagerly load keys so the first request does not pay the cost."""
        try:
            await self._refresh("warmup")
        except DiscoveryError as exc:
            self.logger.warning("JWKS warmup failed", error=str(exc), cause=exc.cause.value)

    def snapshot(self) -> Dict[str, Any]:
        """Cache state for health reporting."""
        entry = self._entry
        if entry is None:
            return {"status": "empty", "refreshing": self._inflight is not None}

        now = self._clock()
        if now < entry.expires_at:
            status = "fresh"
        elif now < entry.expires_at + self.grace:
            status = "stale"
        else:
            status = "expired"
        return {
            "status": status,
            "key_ids": list(entry.key_set.key_ids),
            "age_seconds": round(now - entry.fetched_at, 3),
            "refreshing": self._inflight is not None,
        }

    def clear(self) -> None:
        """Drop the cached entry; the next request refetches."""
        self._entry = None
        self._last_forced_refresh = None
        self.logger.info("JWKS cache cleared")

    def _fallback(self, exc: DiscoveryError) -> SigningKeySet:
        entry = self._entry
        if entry is not None and self._clock() < entry.expires_at + self.grace:
            self.logger.warning(
                "Using stale JWKS cache due to refresh failure",
                cause=exc.cause.value,
                error=exc.message,
                key_ids=list(entry.key_set.key_ids),
            )
            return entry.key_set
        raise exc

    async def _refresh(self, trigger: str) -> CacheEntry:
        task = self._inflight
        if task is None:
            task = asyncio.get_running_loop().create_task(self._fetch_entry(trigger))
            self._inflight = task
            task.add_done_callback(self._refresh_done)
        return await asyncio.shield(task)

    def _refresh_done(self, task: "asyncio.Task[CacheEntry]") -> None:
        if self._inflight is task:
            self._inflight = None
        # Mark the exception retrieved even when every waiter was cancelled
        if not task.cancelled():
            task.exception()

    async def _fetch_entry(self, trigger: str) -> CacheEntry:
        started = time.perf_counter()
        try:
            metadata = await self.discovery.fetch(self.issuer_url)
            key_set = await self.discovery.fetch_keys(metadata.jwks_uri)
            if not len(key_set):
                raise DiscoveryError(
                    DiscoveryFailureCause.MISSING_FIELD,
                    "JWKS contains no usable signing keys",
                    details={"url": metadata.jwks_uri},
                )
        except DiscoveryError:
            self._record(trigger, "error", time.perf_counter() - started)
            raise

        now = self._clock()
        entry = CacheEntry(
            metadata=metadata,
            key_set=key_set,
            fetched_at=now,
            expires_at=now + self.ttl,
        )
        self._entry = entry
        self._record(trigger, "ok", time.perf_counter() - started)
        self.logger.info(
            "JWKS refreshed successfully",
            trigger=trigger,
            keys_count=len(key_set),
            key_ids=list(key_set.key_ids),
        )
        return entry

    def _record(self, trigger: str, result: str, duration: float) -> None:
        if self.metrics is not None:
            self.metrics.record_jwks_refresh(trigger, result, duration)
