"""
Signing key package.

Contains the signing key model built from a JSON Web Key Set (JWKS) and the
cache that keeps the current key set fresh.

Key points:
- Cache keys for a bounded TTL to avoid hammering the IdP.
- Refreshes are single-flight: concurrent misses share one fetch.
- An unknown key id triggers one forced refresh to follow key rotation.
- Keys are selected by exact kid match.
"""
