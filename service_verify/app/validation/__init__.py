"""
Token validation package.

Validates JWTs issued by the upstream identity provider against a given
signing key set:

- Token structure and key id lookup.
- Signature verification with the matched key's algorithm.
- Expiry and not-before with clock skew tolerance.
- Exact issuer match and audience membership.

Validation never raises for bad tokens; it returns ``Validated`` or
``Rejected`` with a ``FailureReason``.
"""
