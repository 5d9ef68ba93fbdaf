"""
Token Verifier service.
"""

from datetime import timedelta
from typing import Optional

import httpx
from fastapi import Request

from shared.base_service import BaseService
from shared.circuit_breaker import CircuitBreaker
from shared.config import VerifierSettings, load_settings
from shared.errors import AuthenticationError
from shared.retry import RetryConfig

from .discovery.client import OIDCDiscoveryClient
from .jwks.cache import SigningKeyCache
from .validation.token_validator import TokenValidator
from .verifier import TokenVerifier


class VerifyService(BaseService):
    """Verify service implementation."""

    def __init__(self, settings: VerifierSettings, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__("verifier", settings)

        self.discovery = OIDCDiscoveryClient(
            http_client,
            timeout=settings.http_timeout_seconds,
            retry_config=RetryConfig(
                max_attempts=settings.discovery_max_attempts,
                base_delay=settings.discovery_backoff_seconds,
            ),
            circuit_breaker=CircuitBreaker(
                failure_threshold=settings.breaker_failure_threshold,
                recovery_timeout=settings.breaker_recovery_seconds,
                name="oidc-provider",
            ),
            metrics=self.metrics,
        )
        self.key_cache = SigningKeyCache(
            self.discovery,
            settings.issuer_url,
            ttl=settings.jwks_cache_ttl_seconds,
            grace=settings.jwks_grace_seconds,
            forced_refresh_cooldown=settings.forced_refresh_cooldown_seconds,
            metrics=self.metrics,
        )
        self.verifier = TokenVerifier(
            self.key_cache,
            TokenValidator(
                settings.issuer,
                settings.audience,
                clock_skew=timedelta(seconds=settings.clock_skew_seconds),
            ),
            identity_claims=settings.identity_claims,
            metrics=self.metrics,
        )

        self._setup_verify_routes()

    def _setup_verify_routes(self):
        """Set up verification routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "verifier",
                "message": "Bearer token verifier",
                "issuer": self.config.issuer,
                "version": "1.0.0"
            }

        @self.app.api_route("/verify", methods=["GET", "POST"])
        async def verify_token(request: Request):
            """Verify the bearer token in the Authorization header."""
            result = await self.verifier.authenticate(request.headers.get("Authorization"))

            if not result.authenticated:
                raise AuthenticationError(
                    "Token validation failed",
                    details={"reason": result.reason.value}
                )

            return {
                "authenticated": True,
                "identity": result.identity,
                "subject": result.claims.subject
            }

    async def startup(self) -> None:
        await self.key_cache.warmup()

    async def shutdown(self) -> None:
        await self.discovery.close()

    async def _check_dependencies(self):
        """Report signing key cache and provider circuit state."""
        return {
            "jwks": self.key_cache.snapshot(),
            "identity_provider": self.discovery.circuit_breaker.get_state(),
        }


def create_app(settings: Optional[VerifierSettings] = None, http_client: Optional[httpx.AsyncClient] = None):
    """Create FastAPI application.

    Raises ``ConfigurationError`` when required settings are missing, so a
    misconfigured process never starts serving.
    """
    service = VerifyService(settings or load_settings(), http_client)
    return service.app


if __name__ == "__main__":
    service = VerifyService(load_settings())
    service.run()
