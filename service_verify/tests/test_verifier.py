"""
Unit tests for TokenVerifier.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from service_verify.app.discovery.client import OIDCDiscoveryClient
from service_verify.app.jwks.cache import SigningKeyCache
from service_verify.app.validation.models import FailureReason
from service_verify.app.validation.token_validator import TokenValidator
from service_verify.app.verifier import TokenVerifier, parse_bearer_token
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig
from shared.test_helpers import FakeClock, MockIdentityProvider, generate_key_pair, sign_token


@pytest.mark.parametrize(
    "header, expected",
    [
        ("Bearer abc.def.ghi", "abc.def.ghi"),
        ("bearer abc.def.ghi", "abc.def.ghi"),
        ("  Bearer   abc.def.ghi  ", "abc.def.ghi"),
        ("Bearer ", None),
        ("Bearer", None),
        ("Basic dXNlcjpwYXNz", None),
        ("abc.def.ghi", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_bearer_token(header, expected):
    assert parse_bearer_token(header) == expected


class TestTokenVerifier:
    """Test cases for TokenVerifier."""

    @pytest.fixture
    def provider(self):
        return MockIdentityProvider()

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("verifier")

    @pytest.fixture
    def cache(self, provider, metrics):
        discovery = OIDCDiscoveryClient(
            provider.client(),
            retry_config=RetryConfig(max_attempts=1, base_delay=0, jitter=False),
        )
        return SigningKeyCache(
            discovery,
            provider.issuer_url,
            ttl=3600,
            forced_refresh_cooldown=0,
            clock=FakeClock(),
            metrics=metrics,
        )

    @pytest.fixture
    def verifier(self, provider, cache, metrics):
        return TokenVerifier(
            cache,
            TokenValidator(provider.issuer, provider.audience),
            metrics=metrics,
        )

    @pytest.mark.asyncio
    async def test_valid_token_yields_identity(self, verifier, provider):
        result = await verifier.authenticate(f"Bearer {provider.issue_token()}")

        assert result.authenticated is True
        assert result.identity == "john.doe@example.com"
        assert result.claims.subject == "user-1"
        assert result.reason is None

    @pytest.mark.asyncio
    async def test_valid_token_without_identity_claims_is_still_valid(self, verifier, provider):
        token = provider.issue_token(email=None, name=None)

        result = await verifier.verify_token(token)

        assert result.authenticated is True
        assert result.identity is None

    @pytest.mark.asyncio
    async def test_identity_preference_is_honoured(self, cache, provider):
        verifier = TokenVerifier(
            cache,
            TokenValidator(provider.issuer, provider.audience),
            identity_claims=("name", "email"),
        )

        result = await verifier.verify_token(provider.issue_token())

        assert result.identity == "John Doe"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("header", [None, "", "Basic Zm9vOmJhcg==", "Bearer   "])
    async def test_missing_header_skips_key_lookup_and_crypto(self, header):
        cache = MagicMock()
        cache.get_keys = AsyncMock()
        validator = MagicMock()
        verifier = TokenVerifier(cache, validator)

        result = await verifier.authenticate(header)

        assert result.authenticated is False
        assert result.reason is FailureReason.MISSING_AUTH_HEADER
        cache.get_keys.assert_not_awaited()
        validator.validate.assert_not_called()

    @pytest.mark.asyncio
    async def test_key_rotation_forces_exactly_one_refresh(self, verifier, provider):
        assert (await verifier.verify_token(provider.issue_token())).authenticated
        new_key = provider.rotate("k2")

        result = await verifier.verify_token(provider.issue_token(key=new_key))

        assert result.authenticated is True
        assert provider.jwks_requests == 2
        assert provider.discovery_requests == 2

    @pytest.mark.asyncio
    async def test_concurrent_tokens_for_rotated_key_share_one_refresh(self, verifier, provider):
        assert (await verifier.verify_token(provider.issue_token())).authenticated
        new_key = provider.rotate("k2")
        provider.latency = 0.02
        token = provider.issue_token(key=new_key)

        results = await asyncio.gather(*(verifier.verify_token(token) for _ in range(10)))

        assert all(result.authenticated for result in results)
        assert provider.jwks_requests == 2
        assert provider.discovery_requests == 2

    @pytest.mark.asyncio
    async def test_never_published_key_rejected_after_one_refresh(self, verifier, provider):
        await verifier.verify_token(provider.issue_token())
        stranger = generate_key_pair("k9")

        result = await verifier.verify_token(sign_token(stranger, provider.claims()))

        assert result.reason is FailureReason.UNKNOWN_SIGNING_KEY
        assert provider.jwks_requests == 2

    @pytest.mark.asyncio
    async def test_discovery_failure_rejects(self, verifier, provider):
        provider.fail_status = 502

        result = await verifier.verify_token(provider.issue_token())

        assert result.authenticated is False
        assert result.reason is FailureReason.DISCOVERY_FAILURE

    @pytest.mark.asyncio
    async def test_concurrent_cold_requests_fetch_once(self, verifier, provider):
        provider.latency = 0.02
        token = provider.issue_token()

        results = await asyncio.gather(*(verifier.verify_token(token) for _ in range(8)))

        assert all(result.authenticated for result in results)
        assert provider.discovery_requests == 1
        assert provider.jwks_requests == 1

    @pytest.mark.asyncio
    async def test_outcomes_are_counted(self, verifier, provider, metrics):
        await verifier.verify_token(provider.issue_token())
        await verifier.verify_token(provider.issue_token(expires_in=-3600))

        registry = metrics.registry
        assert registry.get_sample_value("token_verifications_total", {"outcome": "accepted"}) == 1.0
        assert registry.get_sample_value("token_verifications_total", {"outcome": "token_expired"}) == 1.0
