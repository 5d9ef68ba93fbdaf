"""
Token Verifier application package.

Verifies bearer tokens issued by an OpenID Connect provider and extracts
the caller's identity:

- app.discovery: Fetches the provider's discovery document and JWKS.
- app.jwks: Signing key model and the process-wide signing key cache.
- app.validation: Pure token validation (signature, lifetime, issuer,
  audience) returning a tagged outcome.
- app.identity: Maps validated claims to an identity string.
- app.verifier: Request path tying the above together.
- app.main: FastAPI entrypoint that wires routes and lifecycle.

Module import must not perform network calls. All IO happens in route
handlers or explicit startup hooks.
"""
