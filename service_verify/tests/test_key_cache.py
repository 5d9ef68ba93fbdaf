"""
Unit tests for SigningKeyCache.
"""

import asyncio

import pytest

from service_verify.app.discovery.client import OIDCDiscoveryClient
from service_verify.app.jwks.cache import SigningKeyCache
from shared.errors import DiscoveryError, DiscoveryFailureCause
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig
from shared.test_helpers import FakeClock, MockIdentityProvider


TTL = 600
GRACE = 3600


class TestSigningKeyCache:
    """Test cases for SigningKeyCache."""

    @pytest.fixture
    def provider(self):
        return MockIdentityProvider()

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("verifier")

    @pytest.fixture
    def cache(self, provider, clock, metrics):
        discovery = OIDCDiscoveryClient(
            provider.client(),
            retry_config=RetryConfig(max_attempts=1, base_delay=0, jitter=False),
        )
        return SigningKeyCache(
            discovery,
            provider.issuer_url,
            ttl=TTL,
            grace=GRACE,
            forced_refresh_cooldown=30,
            clock=clock,
            metrics=metrics,
        )

    @pytest.mark.asyncio
    async def test_cold_get_fetches_metadata_and_keys(self, cache, provider):
        key_set = await cache.get_keys()

        assert key_set.key_ids == ("k1",)
        assert provider.discovery_requests == 1
        assert provider.jwks_requests == 1
        assert cache.entry.expires_at == cache.entry.fetched_at + TTL

    @pytest.mark.asyncio
    async def test_fresh_entry_served_from_cache(self, cache, provider, clock):
        first = await cache.get_keys()
        clock.advance(TTL - 1)

        second = await cache.get_keys()

        assert second is first
        assert provider.jwks_requests == 1

    @pytest.mark.asyncio
    async def test_expired_entry_triggers_refresh(self, cache, provider, clock):
        first = await cache.get_keys()
        provider.add_key("k2")
        clock.advance(TTL)

        second = await cache.get_keys()

        assert second is not first
        assert second.key_ids == ("k1", "k2")
        assert provider.jwks_requests == 2

    @pytest.mark.asyncio
    async def test_refresh_failure_serves_previous_set_within_grace(self, cache, provider, clock):
        first = await cache.get_keys()
        provider.fail_status = 503
        clock.advance(TTL + GRACE - 1)

        assert await cache.get_keys() is first
        assert provider.discovery_requests == 2

    @pytest.mark.asyncio
    async def test_refresh_failure_beyond_grace_propagates(self, cache, provider, clock):
        await cache.get_keys()
        provider.fail_status = 503
        clock.advance(TTL + GRACE)

        with pytest.raises(DiscoveryError) as exc_info:
            await cache.get_keys()

        assert exc_info.value.cause is DiscoveryFailureCause.HTTP_STATUS

    @pytest.mark.asyncio
    async def test_cold_failure_propagates(self, cache, provider):
        provider.fail_network = True

        with pytest.raises(DiscoveryError) as exc_info:
            await cache.get_keys()

        assert exc_info.value.cause is DiscoveryFailureCause.NETWORK
        assert cache.entry is None

    @pytest.mark.asyncio
    async def test_empty_key_set_is_refresh_failure(self, cache, provider):
        provider.keys.clear()

        with pytest.raises(DiscoveryError) as exc_info:
            await cache.get_keys()

        assert exc_info.value.cause is DiscoveryFailureCause.MISSING_FIELD
        assert cache.entry is None

    @pytest.mark.asyncio
    async def test_concurrent_cold_misses_share_one_fetch(self, cache, provider):
        provider.latency = 0.02

        results = await asyncio.gather(*(cache.get_keys() for _ in range(10)))

        assert provider.discovery_requests == 1
        assert provider.jwks_requests == 1
        assert all(result is results[0] for result in results)

    @pytest.mark.asyncio
    async def test_concurrent_misses_after_ttl_share_one_fetch(self, cache, provider, clock):
        first = await cache.get_keys()
        provider.add_key("k2")
        provider.latency = 0.02
        clock.advance(TTL)

        results = await asyncio.gather(*(cache.get_keys() for _ in range(10)))

        assert provider.discovery_requests == 2
        assert provider.jwks_requests == 2
        assert all(result is results[0] for result in results)
        assert results[0] is not first
        assert results[0].key_ids == ("k1", "k2")

    @pytest.mark.asyncio
    async def test_concurrent_forced_refreshes_join_one_fetch(self, cache, provider):
        await cache.get_keys()
        provider.rotate("k2")
        provider.latency = 0.02

        results = await asyncio.gather(*(cache.refresh_for_key("k2") for _ in range(10)))

        assert provider.jwks_requests == 2
        assert all(result.key_ids == ("k2",) for result in results)

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_shared_refresh(self, cache, provider):
        provider.latency = 0.05

        first = asyncio.ensure_future(cache.get_keys())
        second = asyncio.ensure_future(cache.get_keys())
        await asyncio.sleep(0.01)
        first.cancel()

        key_set = await second

        with pytest.raises(asyncio.CancelledError):
            await first
        assert key_set.key_ids == ("k1",)
        assert provider.discovery_requests == 1
        assert cache.entry is not None

    @pytest.mark.asyncio
    async def test_refresh_for_key_follows_rotation(self, cache, provider):
        await cache.get_keys()
        provider.rotate("k2")

        key_set = await cache.refresh_for_key("k2")

        assert key_set.key_ids == ("k2",)
        assert provider.jwks_requests == 2

    @pytest.mark.asyncio
    async def test_refresh_for_known_key_does_not_fetch(self, cache, provider):
        await cache.get_keys()

        await cache.refresh_for_key("k1")

        assert provider.jwks_requests == 1

    @pytest.mark.asyncio
    async def test_forced_refresh_cooldown(self, cache, provider, clock):
        await cache.get_keys()

        await cache.refresh_for_key("bogus")
        await cache.refresh_for_key("bogus")
        assert provider.jwks_requests == 2

        clock.advance(31)
        await cache.refresh_for_key("bogus")
        assert provider.jwks_requests == 3

    @pytest.mark.asyncio
    async def test_forced_refresh_failure_keeps_current_set(self, cache, provider):
        first = await cache.get_keys()
        provider.fail_status = 500

        assert await cache.refresh_for_key("k2") is first

    @pytest.mark.asyncio
    async def test_warmup_swallows_discovery_failure(self, cache, provider):
        provider.fail_status = 500

        await cache.warmup()

        assert cache.snapshot() == {"status": "empty", "refreshing": False}

    @pytest.mark.asyncio
    async def test_snapshot_reports_staleness(self, cache, clock):
        await cache.warmup()
        assert cache.snapshot()["status"] == "fresh"

        clock.advance(TTL)
        assert cache.snapshot()["status"] == "stale"

        clock.advance(GRACE)
        assert cache.snapshot()["status"] == "expired"

    @pytest.mark.asyncio
    async def test_clear_forces_refetch(self, cache, provider):
        await cache.get_keys()
        cache.clear()

        await cache.get_keys()

        assert provider.jwks_requests == 2

    @pytest.mark.asyncio
    async def test_refreshes_are_counted(self, cache, metrics):
        await cache.get_keys()

        value = metrics.registry.get_sample_value(
            "jwks_refreshes_total", {"trigger": "cold", "result": "ok"}
        )
        assert value == 1.0
