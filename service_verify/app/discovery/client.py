"""
OpenID Connect discovery client.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import DiscoveryError, DiscoveryFailureCause
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, retry_on_exception

from ..jwks.keys import KeyParseError, SigningKey, SigningKeySet


WELL_KNOWN_PATH = "/.well-known/openid-configuration"


@dataclass(frozen=True)
class ProviderMetadata:
    """Subset of the discovery document the verifier relies on."""

    issuer: str
    jwks_uri: str
    raw: Mapping[str, Any]


def discovery_url(issuer_url: str) -> str:
    """Build the discovery document URL for an issuer base URL."""
    return f"{issuer_url.rstrip('/')}{WELL_KNOWN_PATH}"


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, DiscoveryError) and exc.transient


class OIDCDiscoveryClient:
    """Fetches provider metadata and signing keys over HTTP.

    The client is stateless apart from its HTTP connection pool and circuit
    breaker; callers own caching.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        *,
        timeout: float = 5.0,
        retry_config: Optional[RetryConfig] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.logger = get_logger("verifier.discovery")
        self.metrics = metrics
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name="oidc-provider")

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._timeout = timeout

        self._get_json = retry_on_exception(
            (DiscoveryError,),
            config=retry_config or RetryConfig(),
            retry_if=_is_transient,
        )(self._get_json_once)

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def fetch(self, issuer_url: str) -> ProviderMetadata:
        """Fetch and parse the provider's discovery document."""
        url = discovery_url(issuer_url)
        document = await self._fetch_document("metadata", url)

        issuer = document.get("issuer")
        jwks_uri = document.get("jwks_uri")
        for name, value in (("jwks_uri", jwks_uri), ("issuer", issuer)):
            if not isinstance(value, str) or not value:
                self._record("metadata", "missing_field")
                raise DiscoveryError(
                    DiscoveryFailureCause.MISSING_FIELD,
                    f"Discovery document missing '{name}'",
                    details={"url": url, "field": name},
                )

        self._record("metadata", "ok")
        return ProviderMetadata(issuer=issuer, jwks_uri=jwks_uri, raw=MappingProxyType(document))

    async def fetch_keys(self, jwks_uri: str) -> SigningKeySet:
        """Fetch the JWKS document and build the signing key set.

        Entries that cannot be used for signature verification are skipped.
        An empty result is returned as-is; deciding whether that is usable
        is up to the caller.
        """
        document = await self._fetch_document("jwks", jwks_uri)

        if "keys" not in document:
            self._record("jwks", "missing_field")
            raise DiscoveryError(
                DiscoveryFailureCause.MISSING_FIELD,
                "JWKS response missing 'keys' array",
                details={"url": jwks_uri, "field": "keys"},
            )
        entries = document["keys"]
        if not isinstance(entries, list):
            self._record("jwks", "parse_error")
            raise DiscoveryError(
                DiscoveryFailureCause.PARSE,
                "JWKS 'keys' is not an array",
                details={"url": jwks_uri},
            )

        keys = []
        for entry in entries:
            try:
                keys.append(SigningKey.from_jwk(entry))
            except KeyParseError as exc:
                self.logger.warning("Skipping unusable JWK", url=jwks_uri, error=str(exc))

        key_set = SigningKeySet(keys)
        self._record("jwks", "ok")
        self.logger.info(
            "JWKS fetched",
            url=jwks_uri,
            keys_count=len(key_set),
            key_ids=list(key_set.key_ids),
        )
        return key_set

    async def _fetch_document(self, document: str, url: str) -> Dict[str, Any]:
        try:
            return await self._get_json(url)
        except DiscoveryError as exc:
            self._record(document, exc.cause.value)
            self.logger.error(
                "Discovery request failed",
                document=document,
                url=url,
                cause=exc.cause.value,
                error=exc.message,
            )
            raise

    async def _get_json_once(self, url: str) -> Dict[str, Any]:
        try:
            return await self.circuit_breaker.call(self._request_json, url)
        except CircuitBreakerOpenException as exc:
            raise DiscoveryError(
                DiscoveryFailureCause.NETWORK,
                "Identity provider circuit is open",
                details={"url": url, "circuit": self.circuit_breaker.get_state()},
            ) from exc

    async def _request_json(self, url: str) -> Dict[str, Any]:
        try:
            response = await self._client.get(url, timeout=self._timeout)
        except httpx.TimeoutException as exc:
            raise DiscoveryError(
                DiscoveryFailureCause.NETWORK,
                "Timed out contacting identity provider",
                details={"url": url},
                transient=True,
            ) from exc
        except httpx.HTTPError as exc:
            raise DiscoveryError(
                DiscoveryFailureCause.NETWORK,
                f"Could not reach identity provider: {exc}",
                details={"url": url},
                transient=True,
            ) from exc

        if not response.is_success:
            status = response.status_code
            raise DiscoveryError(
                DiscoveryFailureCause.HTTP_STATUS,
                f"Identity provider returned HTTP {status}",
                details={"url": url, "status_code": status},
                transient=status >= 500 or status == 429,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise DiscoveryError(
                DiscoveryFailureCause.PARSE,
                "Identity provider returned invalid JSON",
                details={"url": url},
            ) from exc

        if not isinstance(payload, dict):
            raise DiscoveryError(
                DiscoveryFailureCause.PARSE,
                "Identity provider document is not a JSON object",
                details={"url": url},
            )
        return payload

    def _record(self, document: str, result: str) -> None:
        if self.metrics is not None:
            self.metrics.record_discovery_request(document, result)
