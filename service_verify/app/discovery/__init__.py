"""
Provider discovery package.

Retrieves the OpenID Connect discovery document from
``<issuer_url>/.well-known/openid-configuration`` and the JSON Web Key Set
it references. Fetching is stateless: caching belongs to ``app.jwks``.

Key points:
- Every request carries a timeout.
- Transient failures (network, 5xx, 429) are retried with bounded backoff.
- A circuit breaker fails fast while the provider is down.
"""
