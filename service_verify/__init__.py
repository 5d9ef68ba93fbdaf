"""Token Verifier service."""
